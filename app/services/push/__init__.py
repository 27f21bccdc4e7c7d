from app.core.config import settings
from app.core.logging import get_logger
from app.services.interfaces import PushProvider
from app.services.push.fcm_client import FcmPushProvider, LoggingPushProvider, ServiceAccountTokenSource

logger = get_logger(__name__)


def build_push_provider() -> PushProvider:
    """FCM when a service account is configured, otherwise log-only delivery"""
    if not settings.push_enabled:
        return LoggingPushProvider()

    try:
        token_source = ServiceAccountTokenSource.from_settings()
    except (OSError, ValueError) as e:
        logger.error(f"FCM service account could not be loaded, push disabled: {e}")
        return LoggingPushProvider()

    project_id = settings.fcm_project_id or token_source.project_id
    if not project_id:
        logger.error("FCM project id is neither configured nor present in the service account, push disabled")
        return LoggingPushProvider()
    return FcmPushProvider(project_id, token_source)


__all__ = ["FcmPushProvider", "LoggingPushProvider", "ServiceAccountTokenSource", "build_push_provider"]
