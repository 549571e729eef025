"""
Wizard Routes - apply and renew questionnaires

Every page load runs the navigation guard (review pages also run the
validation gate); every form save resolves the next step. When the engine
answers with a Redirect the route replies ``303 See Other`` with the target
path in ``Location`` and the reason in ``X-Wizard-Redirect-Reason``.

Routes:
- POST   /api/wizard/{context}/start - Start a submission
- POST   /api/wizard/{context}/{id}/type - Choose the applicant type
- DELETE /api/wizard/{context}/{id} - Clear a submission
- GET    /api/wizard/{context}/{id}/{step} - Load a shared step
- POST   /api/wizard/{context}/{id}/{step} - Save a shared step
- GET    /api/wizard/{context}/{id}/{flow}/{step} - Load a flow step
- POST   /api/wizard/{context}/{id}/{flow}/{step} - Save a flow step
- POST   /api/wizard/{context}/{id}/{flow}/submit - Submit
- POST   /api/wizard/{context}/{id}/{flow}/edit/save - Save an edit
- POST   /api/wizard/{context}/{id}/{flow}/edit/cancel - Cancel an edit
- POST   /api/wizard/{context}/{id}/{flow}/edit/{step} - Edit a step from review
- POST   /api/wizard/{context}/{id}/{flow}/children/add - Add a child
- POST   /api/wizard/{context}/{id}/{flow}/children/{child}/remove - Remove a child
- GET    /api/wizard/{context}/{id}/{flow}/children/{child}/{step} - Load a child step
- POST   /api/wizard/{context}/{id}/{flow}/children/{child}/{step} - Save a child step
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field

from wizard import (
    ApplicantType,
    Context,
    DefaultPathResolver,
    FlowKey,
    Redirect,
    StepPage,
    Variant,
    WizardEngine,
)
from web.dependencies import WizardSession, get_engine, get_wizard_session

logger = logging.getLogger(__name__)

PREFIX = "/api/wizard"

router = APIRouter(prefix=PREFIX, tags=["Wizard"])

paths = DefaultPathResolver(prefix=PREFIX)


# =============================================================================
# Request Models
# =============================================================================

class StartRequest(BaseModel):
    """Request to start a submission."""
    variant: Variant = Field(Variant.FULL, description="Questionnaire variant")
    fields: Dict[str, Any] = Field(default_factory=dict, description="Initial answers, e.g. the on-file client application")


class ApplicationTypeRequest(BaseModel):
    """Request to choose who the submission is for."""
    applicant_type: ApplicantType
    variant: Optional[Variant] = None
    values: Dict[str, Any] = Field(default_factory=dict, description="Answers collected before the flow is known")


class StepValues(BaseModel):
    """Answers posted from a step's form."""
    values: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================

def _flow_key(context: Context, flow_slug: str) -> FlowKey:
    try:
        return FlowKey.from_slug(context, flow_slug)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown flow '{flow_slug}'")


def _redirect(session: WizardSession, redirect: Redirect, submission_id: str, context: Context):
    url = paths.path_for(redirect, submission_id, context.value)
    response = RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
    response.headers["X-Wizard-Redirect-Reason"] = redirect.reason.value
    return session.commit(response)


def _page(session: WizardSession, page: StepPage, context: Context):
    submission = page.submission
    payload: Dict[str, Any] = {
        "submission_id": submission.id,
        "flow": str(page.flow_key) if page.flow_key else None,
        "step": page.step.id,
        "kind": page.step.kind.value,
        "values": page.values,
        "edit_mode": page.edit_mode,
        "progress": page.progress,
        "completion": page.completion.to_dict() if page.completion else None,
        "back": paths.path_for(page.back, submission.id, context.value) if page.back else None,
    }
    if page.child is not None:
        payload["child"] = {
            "id": page.child.child.id,
            "child_number": page.child.child_number,
            "is_new": page.child.is_new,
        }
    if page.reviewable is not None:
        payload["review"] = page.reviewable.to_dict()
    if submission.submission_info is not None:
        payload["submission_info"] = submission.submission_info.to_dict()
    return session.commit(JSONResponse(payload))


def _respond(session: WizardSession, result, submission_id: str, context: Context):
    if result.is_redirect:
        return _redirect(session, result, submission_id, context)
    return _page(session, result.value, context)


# =============================================================================
# Submission lifecycle
# =============================================================================

@router.post("/{context}/start", status_code=201)
async def start_submission(
    context: Context,
    body: StartRequest,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Start a new submission in the caller's session."""
    submission = engine.start(context, variant=body.variant, fields=body.fields)
    response = JSONResponse(
        {"submission_id": submission.id, "context": context.value, "variant": submission.variant.value},
        status_code=201,
    )
    return session.commit(response)


@router.post("/{context}/{submission_id}/type")
async def choose_application_type(
    context: Context,
    submission_id: str,
    body: ApplicationTypeRequest,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Record the applicant type and go to the flow's first question."""
    redirect = engine.choose_application_type(
        submission_id,
        body.applicant_type,
        variant=body.variant,
        values=body.values,
    )
    return _redirect(session, redirect, submission_id, context)


@router.delete("/{context}/{submission_id}", status_code=204)
async def clear_submission(
    context: Context,
    submission_id: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Drop a submission from the session."""
    engine.clear(submission_id)
    return session.commit(Response(status_code=204))


# =============================================================================
# Shared steps
# =============================================================================

@router.get("/{context}/{submission_id}/{step_id}")
async def load_shared_step(
    context: Context,
    submission_id: str,
    step_id: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    result = engine.load_shared_step(submission_id, step_id)
    return _respond(session, result, submission_id, context)


@router.post("/{context}/{submission_id}/{step_id}")
async def save_shared_step(
    context: Context,
    submission_id: str,
    step_id: str,
    body: StepValues,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.save_shared_step(submission_id, step_id, body.values)
    return _redirect(session, redirect, submission_id, context)


# =============================================================================
# Submit and edit mode
# =============================================================================

@router.post("/{context}/{submission_id}/{flow_slug}/submit")
async def submit(
    context: Context,
    submission_id: str,
    flow_slug: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Validate and submit; redirects to confirmation or to the first incomplete step."""
    redirect = engine.submit(submission_id, _flow_key(context, flow_slug))
    return _redirect(session, redirect, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/edit/save")
async def save_edit(
    context: Context,
    submission_id: str,
    flow_slug: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.save_edit(submission_id, _flow_key(context, flow_slug))
    return _redirect(session, redirect, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/edit/cancel")
async def cancel_edit(
    context: Context,
    submission_id: str,
    flow_slug: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.cancel_edit(submission_id, _flow_key(context, flow_slug))
    return _redirect(session, redirect, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/edit/{step_id}")
async def enter_edit(
    context: Context,
    submission_id: str,
    flow_slug: str,
    step_id: str,
    child_id: Optional[str] = Query(None),
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Start editing one answer from the review page."""
    redirect = engine.enter_edit(submission_id, _flow_key(context, flow_slug), step_id, child_id=child_id)
    return _redirect(session, redirect, submission_id, context)


# =============================================================================
# Children
# =============================================================================

@router.post("/{context}/{submission_id}/{flow_slug}/children/add")
async def add_child(
    context: Context,
    submission_id: str,
    flow_slug: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.add_child(submission_id, _flow_key(context, flow_slug))
    return _redirect(session, redirect, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/children/{child_id}/remove")
async def remove_child(
    context: Context,
    submission_id: str,
    flow_slug: str,
    child_id: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.remove_child(submission_id, _flow_key(context, flow_slug), child_id)
    return _redirect(session, redirect, submission_id, context)


@router.get("/{context}/{submission_id}/{flow_slug}/children/{child_id}/{step_id}")
async def load_child_step(
    context: Context,
    submission_id: str,
    flow_slug: str,
    child_id: str,
    step_id: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    result = engine.load_step(submission_id, _flow_key(context, flow_slug), step_id, child_id=child_id)
    return _respond(session, result, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/children/{child_id}/{step_id}")
async def save_child_step(
    context: Context,
    submission_id: str,
    flow_slug: str,
    child_id: str,
    step_id: str,
    body: StepValues,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    redirect = engine.save_step(
        submission_id,
        _flow_key(context, flow_slug),
        step_id,
        body.values,
        child_id=child_id,
    )
    return _redirect(session, redirect, submission_id, context)


# =============================================================================
# Flow steps
# =============================================================================

@router.get("/{context}/{submission_id}/{flow_slug}/{step_id}")
async def load_step(
    context: Context,
    submission_id: str,
    flow_slug: str,
    step_id: str,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Load a flow step (review steps run the validation gate)."""
    result = engine.load_step(submission_id, _flow_key(context, flow_slug), step_id)
    return _respond(session, result, submission_id, context)


@router.post("/{context}/{submission_id}/{flow_slug}/{step_id}")
async def save_step(
    context: Context,
    submission_id: str,
    flow_slug: str,
    step_id: str,
    body: StepValues,
    engine: WizardEngine = Depends(get_engine),
    session: WizardSession = Depends(get_wizard_session),
):
    """Save a flow step and go to the next one."""
    redirect = engine.save_step(submission_id, _flow_key(context, flow_slug), step_id, body.values)
    return _redirect(session, redirect, submission_id, context)
