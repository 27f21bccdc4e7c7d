"""
Logging configuration

Standard library logging with a request id injected into every record.
"""

import logging
import sys
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.config import settings

REQUEST_ID_HEADER = "X-Request-ID"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] [%(request_id)s]: %(message)s"


class RequestIDFilter(logging.Filter):
    """Attach the current request id to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        return True


def setup_logging() -> None:
    """Configure the root logger once at startup"""
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())

    for handler in root.handlers:
        if getattr(handler, "_chat_backend", False):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIDFilter())
    handler._chat_backend = True
    root.addHandler(handler)

    # SQL echo is controlled by settings.db_echo, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger. Example: logger = get_logger(__name__)"""
    return logging.getLogger(name)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or generate X-Request-ID for each HTTP request"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
