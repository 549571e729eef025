"""Wizard state machine and validation gates for the dental benefits portal.

Each apply/renew questionnaire is described by a YAML flow descriptor
(see ``wizard/flows``); a single engine drives all of them:

- SubmissionStore: session-scoped submission records
- NavigationGuard: flow ownership and the submitted/unsubmitted lock
- StepResolver: next/previous step from reachability predicates
- ValidationGate: completeness checks before review and submit
- ChildrenValidator: per-child checks and age ranges
- EditModeReconciler: shadow state for edits started from review
"""

from functools import lru_cache
from typing import Any, MutableMapping, Optional

from config.settings import WizardSettings, get_settings

from .models import (
    AgeCategory,
    ApplicantType,
    Child,
    Context,
    FlowKey,
    Submission,
    SubmissionInfo,
    Variant,
)
from .results import (
    FlowDescriptorError,
    InvalidStepValues,
    Ok,
    Redirect,
    RedirectReason,
    Result,
    SubmissionNotFound,
    UnknownFlowError,
    UnknownStepError,
    WizardError,
)
from .descriptors import FlowDescriptor, FlowDescriptorLoader, FlowRegistry
from .store import SubmissionStore
from .guard import NavigationGuard
from .resolver import StepResolver
from .gate import ReviewableSubmission, ValidationGate
from .children import ChildrenValidator, ReviewableChild
from .edit_mode import EditModeReconciler
from .paths import DefaultPathResolver, PathResolver
from .engine import AuditHook, CompletionReport, StepPage, WizardEngine


@lru_cache(maxsize=1)
def get_flow_registry() -> FlowRegistry:
    """Load the shipped flow descriptors once per process."""
    return FlowDescriptorLoader(get_settings()).load_all()


def get_wizard_engine(
    session: MutableMapping[str, Any],
    settings: Optional[WizardSettings] = None,
    audit_hook: Optional[AuditHook] = None,
) -> WizardEngine:
    """Build an engine around one user's session mapping."""
    settings = settings or get_settings()
    store = SubmissionStore(session, ttl_minutes=settings.session_ttl_minutes)
    return WizardEngine(get_flow_registry(), store, audit_hook=audit_hook)


__all__ = [
    # Models
    "AgeCategory",
    "ApplicantType",
    "Child",
    "Context",
    "FlowKey",
    "Submission",
    "SubmissionInfo",
    "Variant",
    # Results and errors
    "FlowDescriptorError",
    "InvalidStepValues",
    "Ok",
    "Redirect",
    "RedirectReason",
    "Result",
    "SubmissionNotFound",
    "UnknownFlowError",
    "UnknownStepError",
    "WizardError",
    # Descriptors
    "FlowDescriptor",
    "FlowDescriptorLoader",
    "FlowRegistry",
    # Components
    "ChildrenValidator",
    "CompletionReport",
    "DefaultPathResolver",
    "EditModeReconciler",
    "NavigationGuard",
    "PathResolver",
    "ReviewableChild",
    "ReviewableSubmission",
    "StepPage",
    "StepResolver",
    "SubmissionStore",
    "ValidationGate",
    "WizardEngine",
    # Factories
    "get_flow_registry",
    "get_wizard_engine",
]
