"""
Wizard Engine

Orchestrates the store, guard, gate, resolver and edit-mode reconciler for
page loads and form saves. One engine is built per request around the
session-scoped SubmissionStore; the descriptor registry is shared.

Usage:
    registry = FlowDescriptorLoader(get_settings()).load_all()
    engine = WizardEngine(registry, SubmissionStore(session))

    submission = engine.start(Context.RENEW)
    redirect = engine.choose_application_type(submission.id, ApplicantType.ADULT_CHILD)
    result = engine.load_step(submission.id, flow_key, "confirm-marital-status")
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from wizard.children import ChildLookup, ChildrenValidator
from wizard.descriptors import FlowDescriptor, FlowRegistry, StepDescriptor, StepKind
from wizard.edit_mode import EditModeReconciler
from wizard.gate import ReviewableSubmission, ValidationGate
from wizard.guard import NavigationGuard
from wizard.models import ApplicantType, Child, Context, FlowKey, Submission, SubmissionInfo, Variant
from wizard.predicates import EvaluationContext
from wizard.resolver import StepResolver
from wizard.results import (
    InvalidStepValues,
    Ok,
    Redirect,
    RedirectReason,
    Result,
    UnknownFlowError,
    UnknownStepError,
)
from wizard.store import SubmissionStore

logger = logging.getLogger(__name__)

# Receives (event name, payload); failures are logged and ignored
AuditHook = Callable[[str, Dict[str, Any]], None]

# Maps a reviewable submission to the downstream payload and returns the
# confirmation code issued for it (None to let the engine generate one)
SubmissionMapper = Callable[[ReviewableSubmission], Optional[str]]


@dataclass
class CompletionReport:
    """Which question steps are done, for the applicant and for each child."""
    steps: Dict[str, bool] = field(default_factory=dict)
    children: Dict[str, Dict[str, bool]] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return all(self.steps.values()) and all(all(c.values()) for c in self.children.values())

    def to_dict(self) -> Dict[str, Any]:
        return {"complete": self.complete, "steps": self.steps, "children": self.children}


@dataclass
class StepPage:
    """Everything a page needs after a successful load."""
    submission: Submission
    flow_key: Optional[FlowKey]
    step: StepDescriptor
    values: Dict[str, Any] = field(default_factory=dict)
    child: Optional[ChildLookup] = None
    reviewable: Optional[ReviewableSubmission] = None
    back: Optional[Redirect] = None
    progress: float = 0.0
    completion: Optional[CompletionReport] = None

    @property
    def edit_mode(self) -> bool:
        if self.child is not None:
            return self.child.edit_mode
        return self.submission.edit_mode


def generate_confirmation_code() -> str:
    return uuid.uuid4().hex[:12].upper()


class WizardEngine:
    """Page-load and form-save orchestration for all flows."""

    def __init__(
        self,
        registry: FlowRegistry,
        store: SubmissionStore,
        audit_hook: Optional[AuditHook] = None,
    ):
        self.registry = registry
        self.settings = registry.settings
        self.store = store
        self.audit_hook = audit_hook
        self.guard = NavigationGuard()
        self.children = ChildrenValidator(self.settings)
        self.gate = ValidationGate(self.settings, self.children)
        self.resolver = StepResolver(self.settings)
        self.reconciler = EditModeReconciler()

    # =========================================================================
    # STARTING A FLOW
    # =========================================================================

    def start(
        self,
        context: Context,
        variant: Variant = Variant.FULL,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Submission:
        """Create an empty submission (renewals may pass the on-file client application)."""
        submission = self.store.start(context, variant=variant, fields=fields)
        self._audit("submission_started", submission)
        return submission

    def choose_application_type(
        self,
        submission_id: str,
        applicant_type: ApplicantType,
        variant: Optional[Variant] = None,
        values: Optional[Mapping[str, Any]] = None,
    ) -> Redirect:
        """
        Record who the submission is for and move to the flow's first question.

        ``values`` carries answers collected before the flow is known
        (eligibility requirements, the signed-in applicant's profile).

        Raises:
            UnknownFlowError: If no flow exists for the chosen combination.
        """
        submission = self.store.load(submission_id)
        locked = self._submitted_lock(submission)
        if locked is not None:
            return locked
        variant = variant or submission.variant

        if applicant_type == ApplicantType.DELEGATE:
            flow = self._delegate_flow(submission.context, variant)
            self.store.save(submission_id, {"applicant_type": applicant_type, "fields": dict(values or {})})
            self._audit("application_type_chosen", submission, applicant_type=applicant_type.value)
            return Redirect(
                step_id=flow.delegate_step,
                reason=RedirectReason.NAVIGATION,
                flow_key=flow.key,
                shared=flow.is_shared(flow.delegate_step),
            )

        flow = self.registry.get(FlowKey(submission.context, applicant_type, variant))
        submission = self.store.save(submission_id, {
            "applicant_type": applicant_type,
            "variant": variant,
            "fields": dict(values or {}),
        })
        self._audit("application_type_chosen", submission, applicant_type=applicant_type.value, variant=variant.value)
        return self.resolver.resolve_next(flow, submission, flow.entry_step)

    # =========================================================================
    # PAGE LOADS
    # =========================================================================

    def load_step(
        self,
        submission_id: str,
        flow_key: FlowKey,
        step_id: str,
        child_id: Optional[str] = None,
    ) -> Result:
        """
        Load a page.

        Review steps run the validation gate; every other step only runs the
        navigation guard.

        Returns:
            Ok(StepPage) or the Redirect to follow.

        Raises:
            SubmissionNotFound: If the submission is gone.
        """
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)

        guarded = self.guard.check(flow, submission, step_id)
        if guarded.is_redirect:
            return guarded

        if child_id is not None:
            return self._load_child_step(flow, submission, step_id, child_id)

        step = flow.step(step_id)
        if step is None:
            # a child step requested without a child
            return Redirect(
                step_id=flow.children.index_step,
                reason=RedirectReason.NAVIGATION,
                flow_key=flow.key,
                shared=flow.is_shared(flow.children.index_step),
            )
        if step.kind == StepKind.REVIEW:
            return self._load_review(flow, submission)

        self._audit("page_viewed", submission, step=step_id)
        return Ok(StepPage(
            submission=submission,
            flow_key=flow.key,
            step=step,
            values=self._values(submission, step),
            back=self._back(flow, submission, step),
            progress=self.resolver.progress(flow, submission),
            completion=self._completion(flow, submission),
        ))

    def load_review(self, submission_id: str, flow_key: FlowKey) -> Result:
        """Load the flow's review page."""
        flow = self.registry.get(flow_key)
        return self.load_step(submission_id, flow_key, flow.review_step)

    def completion(self, submission_id: str, flow_key: FlowKey) -> Result:
        """
        Report which steps of a flow are done.

        Returns:
            Ok(CompletionReport) or the guard's Redirect.
        """
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.review_step)
        if guarded.is_redirect:
            return guarded
        return Ok(self._completion(flow, submission))

    # =========================================================================
    # SHARED STEPS
    # =========================================================================

    def load_shared_step(self, submission_id: str, step_id: str) -> Result:
        """
        Load a step that lives outside any one flow's routes.

        Once an applicant type is chosen the submission's own flow decides;
        before that the step is shown if some flow of the submission's
        context shows it ahead of its entry step.
        """
        submission = self.store.load(submission_id)
        flow = self._shared_flow(submission, step_id)
        if submission.flow_key == flow.key:
            return self.load_step(submission_id, flow.key, step_id)

        guarded = self.guard.check(flow, submission, step_id)
        if guarded.is_redirect:
            return guarded
        step = flow.step(step_id)
        self._audit("page_viewed", submission, step=step_id)
        return Ok(StepPage(
            submission=submission,
            flow_key=None,
            step=step,
            values=self._values(submission, step),
        ))

    def save_shared_step(self, submission_id: str, step_id: str, values: Mapping[str, Any]) -> Redirect:
        """Save a shared step and move on within the submission's flow (or towards its entry step)."""
        submission = self.store.load(submission_id)
        flow = self._shared_flow(submission, step_id)
        if submission.flow_key == flow.key:
            return self.save_step(submission_id, flow.key, step_id, values)

        guarded = self.guard.check(flow, submission, step_id)
        if guarded.is_redirect:
            return guarded
        step = flow.step(step_id)
        unknown = set(values) - set(step.writes)
        if unknown:
            raise InvalidStepValues(step_id, list(unknown))

        self._write(submission, values, None)
        self.store.put(submission)
        self._audit("step_saved", submission, step=step_id, fields=sorted(values))
        if flow.index_of(step_id) < flow.index_of(flow.entry_step):
            redirect = self.resolver.resolve_next(flow, submission, step_id)
            return Redirect(step_id=redirect.step_id, reason=redirect.reason, shared=True)
        return Redirect(step_id=flow.entry_step, reason=RedirectReason.NAVIGATION, shared=True)

    # =========================================================================
    # FORM SAVES
    # =========================================================================

    def save_step(
        self,
        submission_id: str,
        flow_key: FlowKey,
        step_id: str,
        values: Mapping[str, Any],
        child_id: Optional[str] = None,
    ) -> Redirect:
        """
        Save a step's answers and resolve where to go next.

        In edit mode answers go to shadow fields; the edit continues along
        the step's edit chain and is merged once the chain ends.

        Raises:
            InvalidStepValues: If ``values`` names fields the step does not write.
        """
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)

        guarded = self.guard.check(flow, submission, step_id)
        if guarded.is_redirect:
            return guarded

        child: Optional[Child] = None
        if child_id is not None:
            lookup = self.children.load_child(flow, submission, child_id)
            if lookup.is_redirect:
                return lookup
            child = lookup.value.child
            step = flow.child_step(step_id)
        else:
            step = flow.step(step_id)

        if step is None or step.kind != StepKind.QUESTION:
            raise InvalidStepValues(step_id, list(values))
        unknown = set(values) - set(step.writes)
        if unknown:
            raise InvalidStepValues(step_id, list(unknown))

        self._write(submission, values, child)
        self.store.put(submission)
        self._audit("step_saved", submission, step=step_id, child_id=child_id, fields=sorted(values))

        if submission.edit_mode:
            return self._continue_edit(flow, submission, step, child)
        if child is not None:
            return self.resolver.resolve_next_child_step(flow, submission, child, step_id)
        return self.resolver.resolve_next(flow, submission, step_id)

    def previous_step(
        self,
        submission_id: str,
        flow_key: FlowKey,
        step_id: str,
        child_id: Optional[str] = None,
    ) -> Redirect:
        """Where the back button of ``step_id`` leads."""
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)
        if child_id is not None:
            lookup = self.children.load_child(flow, submission, child_id)
            if lookup.is_redirect:
                return lookup
            return self.resolver.resolve_previous_child_step(flow, submission, lookup.value.child, step_id)
        return self.resolver.resolve_previous(flow, submission, step_id)

    # =========================================================================
    # CHILDREN
    # =========================================================================

    def load_child(self, submission_id: str, flow_key: FlowKey, child_id: str) -> Result:
        """
        Resolve one child for a child-scoped page.

        Returns:
            Ok(ChildLookup) or a Redirect (guard failure, or the children
            index for an invalid or unknown child id).
        """
        flow = self._children_flow(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.children.index_step)
        if guarded.is_redirect:
            return guarded
        return self.children.load_child(flow, submission, child_id)

    def add_child(self, submission_id: str, flow_key: FlowKey) -> Redirect:
        """Append an empty child and send the user to its first step."""
        flow = self._children_flow(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.children.index_step)
        if guarded.is_redirect:
            return guarded

        child = Child()
        submission.children.append(child)
        self.store.put(submission)
        self._audit("child_added", submission, child_id=child.id)
        return self.resolver.first_child_step(flow, submission, child)

    def remove_child(self, submission_id: str, flow_key: FlowKey, child_id: str) -> Redirect:
        """Remove a child and return to the children index."""
        flow = self._children_flow(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.children.index_step)
        if guarded.is_redirect:
            return guarded

        lookup = self.children.load_child(flow, submission, child_id)
        if lookup.is_redirect:
            return lookup
        submission.children.remove(lookup.value.child)
        self.store.put(submission)
        self._audit("child_removed", submission, child_id=child_id)
        return Redirect(
            step_id=flow.children.index_step,
            reason=RedirectReason.NAVIGATION,
            flow_key=flow.key,
            shared=flow.is_shared(flow.children.index_step),
        )

    # =========================================================================
    # EDIT MODE
    # =========================================================================

    def enter_edit(
        self,
        submission_id: str,
        flow_key: FlowKey,
        step_id: str,
        child_id: Optional[str] = None,
    ) -> Redirect:
        """Start editing one answer from the review page."""
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)

        result = self.reconciler.enter(flow, submission)
        if result.is_redirect:
            return result
        guarded = self.guard.check(flow, submission, step_id)
        if guarded.is_redirect:
            return guarded

        self.store.put(submission)
        self._audit("edit_started", submission, step=step_id, child_id=child_id)
        return Redirect(
            step_id=step_id,
            reason=RedirectReason.NAVIGATION,
            flow_key=flow.key,
            child_id=child_id,
            shared=False if child_id else flow.is_shared(step_id),
        )

    def save_edit(self, submission_id: str, flow_key: FlowKey) -> Redirect:
        """Merge the shadow answers and return to review."""
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.review_step)
        if guarded.is_redirect:
            return guarded

        outcome = self.reconciler.save(flow, submission)
        self.store.put(outcome.submission)
        self._audit("edit_saved", outcome.submission, changed=outcome.changed)
        return outcome.redirect

    def cancel_edit(self, submission_id: str, flow_key: FlowKey) -> Redirect:
        """Discard the shadow answers and return to review."""
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)
        guarded = self.guard.check(flow, submission, flow.review_step)
        if guarded.is_redirect:
            return guarded

        outcome = self.reconciler.cancel(flow, submission)
        self.store.put(outcome.submission)
        self._audit("edit_cancelled", outcome.submission)
        return outcome.redirect

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(
        self,
        submission_id: str,
        flow_key: FlowKey,
        mapper: Optional[SubmissionMapper] = None,
    ) -> Redirect:
        """
        Validate and hand the submission off, then lock it.

        Args:
            submission_id: Submission to submit.
            flow_key: Flow of the review page the submit came from.
            mapper: Receives the reviewable submission; may return the
                confirmation code issued downstream.

        Returns:
            Redirect to confirmation, or to the first invalid step.
        """
        flow = self.registry.get(flow_key)
        submission = self.store.load(submission_id)

        guarded = self.guard.check(flow, submission, flow.review_step)
        if guarded.is_redirect:
            return guarded

        if submission.edit_mode:
            self.reconciler.discard(submission)
            self.store.put(submission)

        result = self._validate(flow, submission)
        if result.is_redirect:
            return result

        code = mapper(result.value) if mapper else None
        info = SubmissionInfo(
            confirmation_code=code or generate_confirmation_code(),
            submitted_on=self.store.clock().isoformat(),
        )
        submission = self.store.save(submission_id, {"submission_info": info, "edit_mode": False})
        logger.info(f"Submission {submission_id} submitted for {flow.key}")
        self._audit("submitted", submission, confirmation_code=info.confirmation_code)
        return Redirect(
            step_id=flow.confirmation_step,
            reason=RedirectReason.NAVIGATION,
            flow_key=flow.key,
            shared=flow.is_shared(flow.confirmation_step),
        )

    def clear(self, submission_id: str) -> None:
        self.store.clear(submission_id)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _load_review(self, flow: FlowDescriptor, submission: Submission) -> Result:
        result = self._validate(flow, submission)
        if result.is_redirect:
            return result
        step = flow.step(flow.review_step)
        self._audit("page_viewed", submission, step=step.id)
        return Ok(StepPage(
            submission=submission,
            flow_key=flow.key,
            step=step,
            reviewable=result.value,
            back=self._back(flow, submission, step),
            progress=1.0,
            completion=self._completion(flow, submission),
        ))

    def _validate(self, flow: FlowDescriptor, submission: Submission) -> Result:
        result = self.gate.validate(flow, submission)
        if result.is_redirect and flow.reset_edit_mode_on_failure and submission.edit_mode:
            self.reconciler.discard(submission)
            self.store.put(submission)
            logger.info(f"Submission {submission.id} left edit mode after failing validation")
        return result

    def _load_child_step(self, flow: FlowDescriptor, submission: Submission, step_id: str, child_id: str) -> Result:
        step = flow.child_step(step_id)
        if step is None:
            return Redirect(
                step_id=flow.children.index_step if flow.children else flow.entry_step,
                reason=RedirectReason.NAVIGATION,
                flow_key=flow.key,
                detail=f"'{step_id}' is not a child step",
            )
        lookup = self.children.load_child(flow, submission, child_id)
        if lookup.is_redirect:
            return lookup
        child = lookup.value.child
        self._audit("page_viewed", submission, step=step_id, child_id=child_id)
        return Ok(StepPage(
            submission=submission,
            flow_key=flow.key,
            step=step,
            values=self._values(submission, step, child),
            child=lookup.value,
            back=self.resolver.resolve_previous_child_step(flow, submission, child, step_id),
            progress=self.resolver.progress(flow, submission),
            completion=self._completion(flow, submission),
        ))

    def _continue_edit(
        self,
        flow: FlowDescriptor,
        submission: Submission,
        step: StepDescriptor,
        child: Optional[Child],
    ) -> Redirect:
        preview = self.reconciler.preview(submission)
        preview_child = preview.find_child(child.id) if child is not None else None
        for next_id in step.edit_chain:
            next_step = flow.child_step(next_id) if child is not None else flow.step(next_id)
            if next_step is None:
                continue
            if self.resolver.can_land(next_step, EvaluationContext(preview, self.settings, preview_child)):
                return Redirect(
                    step_id=next_id,
                    reason=RedirectReason.NAVIGATION,
                    flow_key=flow.key,
                    child_id=child.id if child is not None else None,
                    shared=False if child is not None else flow.is_shared(next_id),
                )
        outcome = self.reconciler.save(flow, submission)
        self.store.put(outcome.submission)
        self._audit("edit_saved", outcome.submission, changed=outcome.changed)
        return outcome.redirect

    def _write(self, submission: Submission, values: Mapping[str, Any], child: Optional[Child]) -> None:
        if submission.edit_mode:
            self.reconciler.write(submission, values, child)
            return
        target = child.fields if child is not None else submission.fields
        for name, value in values.items():
            if value is None:
                target.pop(name, None)
            else:
                target[name] = value

    def _values(self, submission: Submission, step: StepDescriptor, child: Optional[Child] = None) -> Dict[str, Any]:
        return {name: self.reconciler.effective_value(submission, name, child) for name in step.writes}

    def _back(self, flow: FlowDescriptor, submission: Submission, step: StepDescriptor) -> Optional[Redirect]:
        if step.id == flow.first_step or step.kind == StepKind.CONFIRMATION:
            return None
        return self.resolver.resolve_previous(flow, submission, step.id)

    def _completion(self, flow: FlowDescriptor, submission: Submission) -> CompletionReport:
        return CompletionReport(
            steps=self.resolver.completed_steps(flow, submission),
            children={
                child.id: self.resolver.completed_child_steps(flow, submission, child)
                for child in submission.children
            },
        )

    def _submitted_lock(self, submission: Submission) -> Optional[Redirect]:
        """Confirmation redirect for a submitted submission, checked before writes outside any flow route."""
        if not submission.is_submitted:
            return None
        flow = self.registry.find(submission.flow_key)
        if flow is None:
            raise UnknownFlowError(f"Submitted submission {submission.id} has no flow")
        return self.guard.check(flow, submission, flow.entry_step)

    def _children_flow(self, flow_key: FlowKey) -> FlowDescriptor:
        flow = self.registry.get(flow_key)
        if flow.children is None:
            raise UnknownFlowError(f"Flow {flow_key} has no children")
        return flow

    def _shared_flow(self, submission: Submission, step_id: str) -> FlowDescriptor:
        flow = self.registry.find(submission.flow_key)
        if flow is not None and flow.is_shared(step_id):
            return flow
        candidates = [
            f for f in self.registry
            if f.key.context == submission.context and f.is_shared(step_id)
        ]
        if not candidates:
            raise UnknownStepError(submission.flow_key, step_id)
        for candidate in candidates:
            if candidate.key.variant == submission.variant:
                return candidate
        return candidates[0]

    def _delegate_flow(self, context: Context, variant: Variant) -> FlowDescriptor:
        candidates: List[FlowDescriptor] = [
            f for f in self.registry
            if f.key.context == context and f.delegate_step
        ]
        for flow in candidates:
            if flow.key.variant == variant:
                return flow
        if candidates:
            return candidates[0]
        raise UnknownFlowError(f"No {context.value} flow handles delegate applications")

    def _audit(self, event: str, submission: Submission, **payload: Any) -> None:
        if self.audit_hook is None:
            return
        data = {"submission_id": submission.id, "context": submission.context.value, **payload}
        try:
            self.audit_hook(event, data)
        except Exception as e:
            logger.warning(f"Audit hook failed for '{event}' on submission {submission.id}: {e}")
