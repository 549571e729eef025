"""
Wizard Results and Errors

Navigation decisions are returned as values: ``Ok`` carries the state the
page may use, ``Redirect`` names the step the user must be sent to and why.
Only conditions the user cannot recover from by navigating are raised as
exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from wizard.models import FlowKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedirectReason(str, Enum):
    """Why a redirect was produced."""
    FLOW_MISMATCH = "flow_mismatch"            # Wrong or unset application type
    MISSING_STEP_DATA = "missing_step_data"    # A required answer is absent
    INCONSISTENT_STATE = "inconsistent_state"  # Answers contradict each other
    SUBMITTED = "submitted"                    # Terminal: only confirmation is allowed
    NOT_SUBMITTED = "not_submitted"            # Confirmation requested too early
    NAVIGATION = "navigation"                  # Ordinary next/previous step
    EDIT_COMPLETE = "edit_complete"            # Edit sub-flow saved or cancelled


# Redirect reasons that indicate a problem with the stored state
_LOG_LEVELS: Dict[RedirectReason, int] = {
    RedirectReason.FLOW_MISMATCH: logging.WARNING,
    RedirectReason.MISSING_STEP_DATA: logging.WARNING,
    RedirectReason.INCONSISTENT_STATE: logging.ERROR,
    RedirectReason.SUBMITTED: logging.INFO,
    RedirectReason.NOT_SUBMITTED: logging.WARNING,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Navigation is legal; ``value`` is the state the page may use."""
    value: T

    @property
    def is_redirect(self) -> bool:
        return False


@dataclass(frozen=True)
class Redirect:
    """
    Navigation must go elsewhere.

    Attributes:
        step_id: Target step (opaque identifier from the flow descriptor).
        reason: Why the redirect happened.
        flow_key: Flow the step belongs to (None for steps outside any flow).
        child_id: Set when the step is scoped to one child.
        shared: True when the step lives outside the flow's path.
        detail: Short human-readable explanation for logs.
    """
    step_id: str
    reason: RedirectReason = RedirectReason.NAVIGATION
    flow_key: Optional[FlowKey] = None
    child_id: Optional[str] = None
    shared: bool = False
    detail: str = ""

    @property
    def is_redirect(self) -> bool:
        return True

    def log(self, submission_id: Optional[str] = None) -> "Redirect":
        """Log the redirect at a severity matching its reason and return it."""
        level = _LOG_LEVELS.get(self.reason)
        if level is not None:
            child = f" child {self.child_id}" if self.child_id else ""
            logger.log(
                level,
                f"Redirecting submission {submission_id or '-'}{child} to '{self.step_id}' "
                f"({self.reason.value}): {self.detail}",
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "reason": self.reason.value,
            "flow": str(self.flow_key) if self.flow_key else None,
            "child_id": self.child_id,
            "shared": self.shared,
            "detail": self.detail,
        }


Result = Union[Ok[T], Redirect]


# =============================================================================
# EXCEPTIONS
# =============================================================================

class WizardError(Exception):
    """Base class for wizard errors."""


class SubmissionNotFound(WizardError):
    """The submission id is invalid, unknown or expired. The user must start over."""

    def __init__(self, submission_id: str, reason: str = "not found"):
        self.submission_id = submission_id
        self.reason = reason
        super().__init__(f"Submission {submission_id} {reason}")


class FlowDescriptorError(WizardError):
    """A flow descriptor is malformed. Raised when descriptors are loaded."""

    def __init__(self, source: str, errors: list):
        self.source = source
        self.errors = list(errors)
        joined = "; ".join(self.errors)
        super().__init__(f"Invalid flow descriptor {source}: {joined}")


class UnknownFlowError(WizardError):
    """No descriptor is registered for the requested flow key."""


class UnknownStepError(WizardError):
    """The requested step is not part of the flow."""

    def __init__(self, flow_key: FlowKey, step_id: str):
        self.flow_key = flow_key
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' is not part of flow {flow_key}")


class InvalidStepValues(WizardError):
    """A form save tried to write fields the step does not own."""

    def __init__(self, step_id: str, fields: list):
        self.step_id = step_id
        self.fields = sorted(fields)
        super().__init__(f"Step '{step_id}' cannot write fields: {', '.join(self.fields)}")
