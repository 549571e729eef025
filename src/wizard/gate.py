"""
Validation Gate

Decides whether a submission is complete enough to show its review page or
to be submitted. Steps are walked in descriptor order; the first failing
check decides where the user is sent, so the order of a descriptor's steps
and checks is significant.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config.settings import WizardSettings
from wizard.checks import canonical_fields, failing_check, is_reachable
from wizard.children import ChildrenValidator, ReviewableChild
from wizard.descriptors import Check, FlowDescriptor, StepDescriptor
from wizard.models import AgeCategory, FlowKey, Submission
from wizard.predicates import EvaluationContext, applicant_age_category
from wizard.results import Ok, Redirect, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewableSubmission:
    """
    Complete view of a submission that passed the gate.

    ``state`` is an instance of the flow's review model: every field the
    flow requires unconditionally is a required model field.
    """
    id: str
    flow_key: FlowKey
    state: Any
    children: List[ReviewableChild]
    age_category: Optional[AgeCategory] = None
    edit_mode: bool = False
    previously_reviewed: Optional[bool] = None
    externally_reviewed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flow": str(self.flow_key),
            "age_category": self.age_category.value if self.age_category else None,
            "edit_mode": self.edit_mode,
            "previously_reviewed": self.previously_reviewed,
            "externally_reviewed": self.externally_reviewed,
            "fields": self.state.model_dump(),
            "children": [c.to_dict() for c in self.children],
        }


class ValidationGate:
    """Walks a flow's checks and produces a ReviewableSubmission or a Redirect."""

    def __init__(self, settings: WizardSettings, children_validator: Optional[ChildrenValidator] = None):
        self.settings = settings
        self.children_validator = children_validator or ChildrenValidator(settings)

    def validate(self, flow: FlowDescriptor, submission: Submission) -> Result:
        """
        Validate a submission against its flow.

        Returns:
            Ok(ReviewableSubmission) when every check passes, otherwise the
            Redirect for the first failing check.
        """
        ctx = EvaluationContext(submission, self.settings)
        children: List[ReviewableChild] = []
        validation_point = flow.children.validation_point if flow.children else None

        for step in flow.steps:
            if is_reachable(step, ctx):
                check = failing_check(step, ctx, submission.fields)
                if check is not None:
                    return self._redirect(flow, step, check).log(submission.id)
            if step.id == validation_point:
                result = self.children_validator.validate(flow, submission)
                if result.is_redirect:
                    return result
                children = result.value

        logger.debug(f"Submission {submission.id} passed validation for {flow.key}")
        return Ok(ReviewableSubmission(
            id=submission.id,
            flow_key=flow.key,
            state=flow.review_model(**canonical_fields(submission.fields)),
            children=children,
            age_category=applicant_age_category(ctx),
            edit_mode=submission.edit_mode,
            previously_reviewed=submission.previously_reviewed,
            externally_reviewed=submission.externally_reviewed,
        ))

    def _redirect(self, flow: FlowDescriptor, step: StepDescriptor, check: Check) -> Redirect:
        target = check.redirect or step.id
        return Redirect(
            step_id=target,
            reason=check.reason,
            flow_key=flow.key,
            shared=flow.is_shared(target),
            detail=f"[{step.id}] {check.describe()}",
        )
