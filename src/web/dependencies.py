"""
FastAPI Dependency Injection for the wizard routes.

Provides dependency injection for:
- WizardSettings
- The flow descriptor registry
- The session backend and the current browser session
- A WizardEngine bound to that session

Usage in endpoints:
    @router.get("/{context}/{submission_id}/{flow_slug}/{step_id}")
    async def load_step(
        engine: WizardEngine = Depends(get_engine),
        session: WizardSession = Depends(get_wizard_session),
    ):
        ...
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from fastapi import Depends, Request
from starlette.responses import Response

from config.settings import WizardSettings, get_settings
from database.session_persistence import get_session_persistence
from wizard import FlowRegistry, SubmissionStore, WizardEngine, get_flow_registry

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("wizard.audit")


def get_registry() -> FlowRegistry:
    """Get the process-wide flow registry."""
    return get_flow_registry()


def get_session_backend():
    """Get the session backend (SQLite persistence unless overridden)."""
    return get_session_persistence()


@dataclass
class WizardSession:
    """One browser session's data for the duration of a request."""
    session_id: str
    cookie_name: str
    backend: Any
    data: Dict[str, Any] = field(default_factory=dict)
    secure: bool = False

    def commit(self, response: Response) -> Response:
        """Persist the session data and set the session cookie on ``response``."""
        self.backend.save_session(self.session_id, self.data)
        response.set_cookie(
            self.cookie_name,
            self.session_id,
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
        return response


def get_wizard_session(
    request: Request,
    settings: WizardSettings = Depends(get_settings),
    backend=Depends(get_session_backend),
) -> WizardSession:
    """Load the caller's session, starting a new one when the cookie is missing or stale."""
    cookie_name = settings.session_cookie_name
    session_id = request.cookies.get(cookie_name)
    record = backend.load_session(session_id) if session_id else None
    if record is None:
        session_id = uuid.uuid4().hex
        logger.debug(f"Starting new wizard session {session_id}")
        data: Dict[str, Any] = {}
    else:
        data = record.data
    return WizardSession(
        session_id=session_id,
        cookie_name=cookie_name,
        backend=backend,
        data=data,
        secure=settings.is_production,
    )


def log_audit_event(event: str, payload: Dict[str, Any]) -> None:
    """Audit hook writing one log line per wizard event."""
    audit_logger.info(f"{event}: {payload}")


def get_engine(
    session: WizardSession = Depends(get_wizard_session),
    registry: FlowRegistry = Depends(get_registry),
    settings: WizardSettings = Depends(get_settings),
) -> WizardEngine:
    """Get a WizardEngine bound to the current session."""
    store = SubmissionStore(session.data, ttl_minutes=settings.session_ttl_minutes)
    return WizardEngine(registry, store, audit_hook=log_audit_event)
