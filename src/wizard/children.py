"""
Children Sub-list Validator

Validates each child of a submission independently against the flow's
child steps and age range. Redirects produced here are scoped to the
offending child unless the flow routes that failure to a flow-level page.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional

from config.settings import WizardSettings
from wizard.checks import canonical_fields, failing_check, is_reachable
from wizard.descriptors import Check, ChildrenSpec, FlowDescriptor, StepDescriptor
from wizard.models import AgeCategory, Child, Submission
from wizard.predicates import EvaluationContext, child_age_category, date_of_birth_usable
from wizard.results import Ok, Redirect, RedirectReason, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewableChild:
    """A child whose answers passed validation."""
    id: str
    child_number: int
    age_category: Optional[AgeCategory]
    state: Any  # instance of the flow's child review model

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "child_number": self.child_number,
            "age_category": self.age_category.value if self.age_category else None,
            **self.state.model_dump(),
        }


@dataclass
class ChildLookup:
    """One child resolved for a child-scoped page."""
    child: Child
    child_number: int
    is_new: bool
    edit_mode: bool


class ChildrenValidator:
    """Validates the children sub-list of a submission."""

    def __init__(self, settings: WizardSettings):
        self.settings = settings

    def validate(self, flow: FlowDescriptor, submission: Submission) -> Result:
        """
        Validate every child in list order.

        Returns:
            Ok(list of ReviewableChild) or the Redirect for the first failure.
        """
        spec = flow.children
        if spec is None:
            return Ok([])

        if not submission.children:
            if spec.required:
                return Redirect(
                    step_id=spec.index_step,
                    reason=RedirectReason.MISSING_STEP_DATA,
                    flow_key=flow.key,
                    shared=flow.is_shared(spec.index_step),
                    detail="flow requires at least one child",
                ).log(submission.id)
            return Ok([])

        reviewed: List[ReviewableChild] = []
        for number, child in enumerate(submission.children, start=1):
            ctx = EvaluationContext(submission, self.settings, child)
            redirect = self._validate_child(flow, spec, child, ctx)
            if redirect is not None:
                return redirect.log(submission.id)
            reviewed.append(ReviewableChild(
                id=child.id,
                child_number=number,
                age_category=child_age_category(child, ctx),
                state=flow.child_review_model(**canonical_fields(child.fields)),
            ))
        return Ok(reviewed)

    def is_new_child(self, flow: FlowDescriptor, submission: Submission, child: Child) -> bool:
        """A child is new until every reachable child step is complete."""
        if flow.children is None:
            return False
        ctx = EvaluationContext(submission, self.settings, child)
        for step in flow.children.steps:
            if is_reachable(step, ctx) and failing_check(step, ctx, child.fields) is not None:
                return True
        return False

    def load_child(self, flow: FlowDescriptor, submission: Submission, child_id: str) -> Result:
        """
        Resolve the child a child-scoped page is about.

        Unknown or malformed child ids redirect to the children index.

        Returns:
            Ok(ChildLookup) or Redirect to the children index.
        """
        spec = flow.children
        if spec is None:
            raise ValueError(f"Flow {flow.key} has no children")

        child: Optional[Child] = None
        try:
            uuid.UUID(str(child_id))
            child = submission.find_child(child_id)
        except ValueError:
            logger.warning(f"Invalid child id '{child_id}' for submission {submission.id}")

        if child is None:
            return Redirect(
                step_id=spec.index_step,
                reason=RedirectReason.NAVIGATION,
                flow_key=flow.key,
                shared=flow.is_shared(spec.index_step),
                detail=f"child {child_id} not found",
            )

        is_new = self.is_new_child(flow, submission, child)
        return Ok(ChildLookup(
            child=child,
            child_number=submission.children.index(child) + 1,
            is_new=is_new,
            edit_mode=submission.edit_mode and not is_new,
        ))

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _validate_child(
        self,
        flow: FlowDescriptor,
        spec: ChildrenSpec,
        child: Child,
        ctx: EvaluationContext,
    ) -> Optional[Redirect]:
        age_checked = False
        for step in spec.steps:
            if is_reachable(step, ctx):
                check = failing_check(step, ctx, child.fields)
                if check is not None:
                    return self._check_redirect(flow, step, check, child)
            if not age_checked and "information" in step.writes:
                age_checked = True
                redirect = self._check_age(flow, spec, child, ctx, step.id)
                if redirect is not None:
                    return redirect
        if not age_checked:
            return self._check_age(flow, spec, child, ctx, None)
        return None

    def _check_redirect(self, flow: FlowDescriptor, step: StepDescriptor, check: Check, child: Child) -> Redirect:
        target = check.redirect or step.id
        child_scoped = flow.child_step(target) is not None
        return Redirect(
            step_id=target,
            reason=check.reason,
            flow_key=flow.key,
            child_id=child.id if child_scoped else None,
            shared=False if child_scoped else flow.is_shared(target),
            detail=check.describe(),
        )

    def _check_age(
        self,
        flow: FlowDescriptor,
        spec: ChildrenSpec,
        child: Child,
        ctx: EvaluationContext,
        owner: Optional[str],
    ) -> Optional[Redirect]:
        """``owner`` is the child step that collects the date of birth."""
        dob = child.date_of_birth
        if dob is not None and not date_of_birth_usable(dob, ctx.as_of):
            return Redirect(
                step_id=owner or spec.index_step,
                reason=RedirectReason.INCONSISTENT_STATE,
                flow_key=flow.key,
                child_id=child.id if owner else None,
                shared=False if owner else flow.is_shared(spec.index_step),
                detail=f"child date of birth '{dob}' is not usable",
            )

        rule = spec.out_of_range
        if rule is None:
            return None
        category = child_age_category(child, ctx)
        if category is None or category in spec.allowed_age_categories:
            return None
        return Redirect(
            step_id=rule.step,
            reason=RedirectReason.INCONSISTENT_STATE,
            flow_key=flow.key,
            child_id=child.id if rule.child_scoped else None,
            shared=False if rule.child_scoped else flow.is_shared(rule.step),
            detail=f"child age category '{category.value}' is not allowed in this flow",
        )
