"""
Step Resolver

Computes the next and previous step from the current one by scanning the
flow's step list and skipping steps whose reachability predicates do not
hold for the current submission.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from config.settings import WizardSettings
from wizard.checks import is_reachable, step_complete
from wizard.descriptors import FlowDescriptor, StepDescriptor, StepKind
from wizard.models import Child, Submission
from wizard.predicates import EvaluationContext
from wizard.results import Redirect, RedirectReason

logger = logging.getLogger(__name__)


class StepResolver:
    """Next/previous navigation over a flow descriptor."""

    def __init__(self, settings: WizardSettings):
        self.settings = settings

    # =========================================================================
    # FLOW STEPS
    # =========================================================================

    def resolve_next(self, flow: FlowDescriptor, submission: Submission, step_id: str) -> Redirect:
        """
        First reachable step after ``step_id``.

        Falls back to the review step when nothing after the current step is
        reachable.
        """
        ctx = EvaluationContext(submission, self.settings)
        for step in flow.steps[flow.index_of(step_id) + 1:]:
            if self.can_land(step, ctx):
                return self._to(flow, step.id)
        return self._to(flow, flow.review_step)

    def resolve_previous(self, flow: FlowDescriptor, submission: Submission, step_id: str) -> Redirect:
        """
        Last reachable step before ``step_id``.

        Falls back to the flow's first step.
        """
        ctx = EvaluationContext(submission, self.settings)
        for step in reversed(flow.steps[:flow.index_of(step_id)]):
            if self.can_land(step, ctx):
                return self._to(flow, step.id)
        return self._to(flow, flow.first_step)

    def reachable_steps(self, flow: FlowDescriptor, submission: Submission) -> List[str]:
        """Ids of every navigable step currently reachable, in flow order."""
        ctx = EvaluationContext(submission, self.settings)
        return [step.id for step in flow.steps if self.can_land(step, ctx)]

    def progress(self, flow: FlowDescriptor, submission: Submission) -> float:
        """
        Share of reachable question steps whose checks pass, from 0.0 to 1.0.

        Steps without checks do not count either way.
        """
        completed = self.completed_steps(flow, submission)
        if not completed:
            return 1.0
        return round(sum(completed.values()) / len(completed), 2)

    def completed_steps(self, flow: FlowDescriptor, submission: Submission) -> Dict[str, bool]:
        """
        Completion of each reachable question step, in flow order.

        Hub and review pages use this to mark which sections are done.
        """
        ctx = EvaluationContext(submission, self.settings)
        return self._completion(flow.steps, ctx, submission.fields)

    def completed_child_steps(self, flow: FlowDescriptor, submission: Submission, child: Child) -> Dict[str, bool]:
        """Completion of each reachable child step for ``child``."""
        if flow.children is None:
            return {}
        ctx = EvaluationContext(submission, self.settings, child)
        return self._completion(flow.children.steps, ctx, child.fields)

    # =========================================================================
    # CHILD STEPS
    # =========================================================================

    def resolve_next_child_step(
        self,
        flow: FlowDescriptor,
        submission: Submission,
        child: Child,
        step_id: str,
    ) -> Redirect:
        """Next reachable step for ``child``; the children index once the child is done."""
        spec = flow.children
        ctx = EvaluationContext(submission, self.settings, child)
        steps = spec.steps
        start = self._child_index(steps, step_id) + 1
        for step in steps[start:]:
            if self.can_land(step, ctx):
                return self._to(flow, step.id, child_id=child.id)
        return self._to(flow, spec.index_step)

    def resolve_previous_child_step(
        self,
        flow: FlowDescriptor,
        submission: Submission,
        child: Child,
        step_id: str,
    ) -> Redirect:
        """Previous reachable step for ``child``; the children index before the first one."""
        spec = flow.children
        ctx = EvaluationContext(submission, self.settings, child)
        steps = spec.steps
        for step in reversed(steps[:self._child_index(steps, step_id)]):
            if self.can_land(step, ctx):
                return self._to(flow, step.id, child_id=child.id)
        return self._to(flow, spec.index_step)

    def first_child_step(self, flow: FlowDescriptor, submission: Submission, child: Child) -> Redirect:
        """Where a newly added child starts."""
        spec = flow.children
        ctx = EvaluationContext(submission, self.settings, child)
        for step in spec.steps:
            if self.can_land(step, ctx):
                return self._to(flow, step.id, child_id=child.id)
        return self._to(flow, spec.index_step)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def can_land(self, step: StepDescriptor, ctx: EvaluationContext) -> bool:
        return step.is_navigable and is_reachable(step, ctx)

    def _completion(self, steps: List[StepDescriptor], ctx: EvaluationContext, data: Mapping[str, Any]) -> Dict[str, bool]:
        return {
            step.id: step_complete(step, ctx, data)
            for step in steps
            if step.kind == StepKind.QUESTION and step.checks and is_reachable(step, ctx)
        }

    def _child_index(self, steps: List[StepDescriptor], step_id: str) -> int:
        for i, step in enumerate(steps):
            if step.id == step_id:
                return i
        raise KeyError(f"Child step '{step_id}' not found")

    def _to(self, flow: FlowDescriptor, step_id: str, child_id: Optional[str] = None) -> Redirect:
        return Redirect(
            step_id=step_id,
            reason=RedirectReason.NAVIGATION,
            flow_key=flow.key,
            child_id=child_id,
            shared=False if child_id else flow.is_shared(step_id),
        )
