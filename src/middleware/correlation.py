"""Request Correlation ID Middleware.

Tags every wizard request with a correlation ID so that the log lines of one
page load (guard decision, gate redirect, store write) can be read together.
The ID is taken from the ``X-Correlation-ID`` request header when present,
otherwise generated, and echoed back on the response.

Usage:
    from fastapi import FastAPI
    from middleware.correlation import CorrelationIdMiddleware

    app = FastAPI()
    app.add_middleware(CorrelationIdMiddleware)
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar, Token
from typing import Any, Callable, Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar(
    "correlation_id",
    default=None,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

DEFAULT_LOG_FORMAT = (
    "%(asctime)s [%(correlation_id)s] %(levelname)s "
    "%(name)s: %(message)s"
)


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID of the request being handled, or None."""
    return _correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> Token[Optional[str]]:
    """Set the correlation ID for the current context.

    Returns:
        Token that can be used to reset the context.
    """
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token: Token[Optional[str]]) -> None:
    _correlation_id_ctx.reset(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets the correlation ID for the duration of each request."""

    def __init__(
        self,
        app,
        header_name: str = CORRELATION_ID_HEADER,
        generator: Optional[Callable[[], str]] = None,
    ):
        """Initialize middleware.

        Args:
            app: ASGI application.
            header_name: Header carrying the correlation ID.
            generator: ID factory used when the header is missing.
        """
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: uuid.uuid4().hex)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        correlation_id = request.headers.get(self.header_name) or self.generator()
        token = set_correlation_id(correlation_id)
        try:
            request.state.correlation_id = correlation_id
            response = await call_next(request)
            response.headers[self.header_name] = correlation_id
            return response
        finally:
            reset_correlation_id(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds ``correlation_id`` to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


def configure_correlation_logging(
    level: Union[int, str] = logging.INFO,
    log_format: Optional[str] = None,
) -> logging.Handler:
    """Attach a correlation-aware stream handler to the root logger.

    Calling it again replaces the handler it installed previously.

    Args:
        level: Logging level (name or number).
        log_format: Format string; must include %(correlation_id)s.

    Returns:
        The installed handler.
    """
    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_wizard_correlation", False):
            root_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    handler._wizard_correlation = True

    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return handler
