"""
FCM Client wrapper

Sends device pushes through the FCM HTTP v1 API and classifies failures
so that dead tokens can be retired. Requests are authorized with a
short-lived OAuth2 access token minted from a service account.
"""

import asyncio
import json
from typing import Optional

import httpx
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import service_account

from app.core.config import settings
from app.core.logging import get_logger
from app.models.notification import PushPlatform
from app.services.interfaces import PushResult

logger = get_logger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"

# Only these mean the token itself will never work again
UNREGISTERED = "UNREGISTERED"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
TOKEN_FIELD = "message.token"


def classify_failure(status_code: int, body: dict) -> PushResult:
    """
    Permanent when FCM reports the token unregistered or names the token
    as the invalid field. Anything else (oversized payload, bad data key,
    quota, auth) says nothing about the device.
    """
    if status_code == 404:
        return PushResult.PERMANENT_FAILURE
    error = body.get("error") or {}
    details = error.get("details") or []

    if any(detail.get("errorCode") == UNREGISTERED for detail in details):
        return PushResult.PERMANENT_FAILURE

    is_invalid_argument = error.get("status") == INVALID_ARGUMENT or any(
        detail.get("errorCode") == INVALID_ARGUMENT for detail in details
    )
    if is_invalid_argument:
        for detail in details:
            for violation in detail.get("fieldViolations") or []:
                if violation.get("field") == TOKEN_FIELD:
                    return PushResult.PERMANENT_FAILURE
    return PushResult.TRANSIENT_FAILURE


class ServiceAccountTokenSource:
    """
    Keeps a service-account access token fresh.
    google-auth refreshes synchronously, so the refresh runs in a thread.
    """

    def __init__(self, credentials):
        self.credentials = credentials
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls) -> "ServiceAccountTokenSource":
        if settings.fcm_service_account_json:
            info = json.loads(settings.fcm_service_account_json)
            credentials = service_account.Credentials.from_service_account_info(info, scopes=[FCM_SCOPE])
        else:
            credentials = service_account.Credentials.from_service_account_file(
                settings.fcm_service_account_file, scopes=[FCM_SCOPE]
            )
        return cls(credentials)

    @property
    def project_id(self) -> Optional[str]:
        return getattr(self.credentials, "project_id", None)

    async def get_token(self, stale: Optional[str] = None) -> str:
        """
        Current access token. Passing the token a request was just rejected
        with forces a refresh unless another caller already replaced it.
        """
        async with self._lock:
            expired = not self.credentials.valid
            rejected = stale is not None and stale == self.credentials.token
            if expired or rejected:
                await asyncio.to_thread(self.credentials.refresh, google_requests.Request())
                logger.info("FCM access token refreshed")
            return self.credentials.token


class FcmPushProvider:
    def __init__(
        self,
        project_id: str,
        token_source: ServiceAccountTokenSource,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = settings.fcm_endpoint.format(project_id=project_id)
        self.token_source = token_source
        self.timeout = settings.fcm_timeout_seconds
        self.transport = transport

    def _build_message(self, token: str, platform: str, title: str, body: str, data: dict[str, str]) -> dict:
        message: dict = {
            "token": token,
            "notification": {"title": title, "body": body},
            "data": data,
        }
        if platform == PushPlatform.ANDROID.value:
            message["android"] = {"priority": "high"}
        elif platform == PushPlatform.IOS.value:
            message["apns"] = {"payload": {"aps": {"sound": "default"}}}
        return {"message": message}

    async def deliver(self, token: str, platform: str, title: str, body: str, data: dict[str, str]) -> PushResult:
        payload = self._build_message(token, platform, title, body, data)
        try:
            access_token = await self.token_source.get_token()
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await self._post(client, payload, access_token)
                if response.status_code == 401:
                    # Revoked or expired early; one retry with a fresh token
                    access_token = await self.token_source.get_token(stale=access_token)
                    response = await self._post(client, payload, access_token)
        except httpx.HTTPError as e:
            logger.warning(f"FCM request failed: {e}")
            return PushResult.TRANSIENT_FAILURE
        except google_exceptions.GoogleAuthError as e:
            logger.error(f"FCM credentials could not be refreshed: {e}")
            return PushResult.TRANSIENT_FAILURE

        if response.is_success:
            return PushResult.OK

        try:
            body_json = response.json()
        except ValueError:
            body_json = {}
        if not isinstance(body_json, dict):
            body_json = {}
        result = classify_failure(response.status_code, body_json)
        logger.warning(f"FCM rejected push ({response.status_code}, {result.value}): {response.text[:200]}")
        return result

    async def _post(self, client: httpx.AsyncClient, payload: dict, access_token: str) -> httpx.Response:
        return await client.post(
            self.url,
            json=payload,
            headers={"Authorization": f"Bearer {access_token}"},
        )


class LoggingPushProvider:
    """Used when FCM is not configured"""

    async def deliver(self, token: str, platform: str, title: str, body: str, data: dict[str, str]) -> PushResult:
        logger.info(f"Push ({platform}) to token {token[:12]}...: {title} - {body}")
        return PushResult.OK
