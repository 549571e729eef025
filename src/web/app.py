"""
FastAPI application for the dental benefits wizard.

Routes:
- /api/wizard/... : apply and renew questionnaires (see web.routers.wizard)
- GET /health     : liveness check with the number of loaded flows
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import WizardSettings, get_settings
from middleware.correlation import CorrelationIdMiddleware, configure_correlation_logging
from wizard import (
    InvalidStepValues,
    SubmissionNotFound,
    UnknownFlowError,
    UnknownStepError,
    WizardError,
    get_flow_registry,
)
from web.routers.wizard import router as wizard_router

logger = logging.getLogger(__name__)


def configure_logging(settings: WizardSettings) -> None:
    """Route all log output through the correlation-aware handler."""
    configure_correlation_logging(level=settings.log_level)


def _error(status_code: int, code: str, message: str, **details) -> JSONResponse:
    content = {"error": code, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def submission_not_found_handler(request: Request, exc: SubmissionNotFound):
    """The submission is gone; the user has to start over."""
    logger.info(f"Submission not found: {exc}")
    return _error(
        404,
        "SUBMISSION_NOT_FOUND",
        "Your session has ended. Please start over.",
        reason=exc.reason,
    )


async def unknown_flow_handler(request: Request, exc: UnknownFlowError):
    logger.warning(f"Unknown flow requested: {exc}")
    return _error(404, "UNKNOWN_FLOW", str(exc))


async def unknown_step_handler(request: Request, exc: UnknownStepError):
    logger.warning(f"Unknown step requested: {exc}")
    return _error(404, "UNKNOWN_STEP", str(exc), step=exc.step_id)


async def invalid_step_values_handler(request: Request, exc: InvalidStepValues):
    logger.warning(f"Rejected step values: {exc}")
    return _error(422, "INVALID_STEP_VALUES", str(exc), step=exc.step_id, fields=exc.fields)


async def wizard_error_handler(request: Request, exc: WizardError):
    logger.error(f"Wizard error: {exc}")
    return _error(500, "WIZARD_ERROR", "Something went wrong. Please try again.")


def create_app(settings: Optional[WizardSettings] = None) -> FastAPI:
    """
    Build the application.

    Flow descriptors are loaded here so that a malformed descriptor stops
    startup instead of failing a user's page load.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    registry = get_flow_registry()
    logger.info(f"Starting {settings.name} ({settings.environment}) with {len(registry)} flows")

    app = FastAPI(title=settings.name)
    app.add_middleware(CorrelationIdMiddleware)

    app.add_exception_handler(SubmissionNotFound, submission_not_found_handler)
    app.add_exception_handler(UnknownFlowError, unknown_flow_handler)
    app.add_exception_handler(UnknownStepError, unknown_step_handler)
    app.add_exception_handler(InvalidStepValues, invalid_step_values_handler)
    app.add_exception_handler(WizardError, wizard_error_handler)

    app.include_router(wizard_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "flows": len(get_flow_registry())}

    return app
