"""
Navigation Guard

Pure decision run on every page load: may this submission show this step
of this flow right now? The guard never mutates the submission, so
applying it twice gives the same answer.
"""

import logging

from wizard.descriptors import FlowDescriptor
from wizard.models import ApplicantType, Submission, is_absent
from wizard.results import Ok, Redirect, RedirectReason, Result, UnknownStepError

logger = logging.getLogger(__name__)


class NavigationGuard:
    """Checks flow ownership and the submitted/unsubmitted lock."""

    def check(self, flow: FlowDescriptor, submission: Submission, step_id: str) -> Result:
        """
        Decide whether ``step_id`` of ``flow`` may be shown.

        Args:
            flow: Flow the requested route belongs to.
            submission: Current submission.
            step_id: Requested step (a flow step or a child step).

        Returns:
            Ok(submission) or the Redirect to follow.

        Raises:
            UnknownStepError: If the step belongs to neither the flow nor its children.
        """
        if not flow.has_step(step_id) and flow.child_step(step_id) is None:
            raise UnknownStepError(flow.key, step_id)

        if not self._before_entry(flow, step_id):
            mismatch = self._check_flow(flow, submission)
            if mismatch is not None:
                return mismatch.log(submission.id)

        is_confirmation = step_id == flow.confirmation_step
        if submission.is_submitted and not is_confirmation:
            return Redirect(
                step_id=flow.confirmation_step,
                reason=RedirectReason.SUBMITTED,
                flow_key=flow.key,
                shared=flow.is_shared(flow.confirmation_step),
                detail=f"submission is complete; '{step_id}' is locked",
            ).log(submission.id)
        if not submission.is_submitted and is_confirmation:
            return Redirect(
                step_id=flow.first_step,
                reason=RedirectReason.NOT_SUBMITTED,
                flow_key=flow.key,
                shared=flow.is_shared(flow.first_step),
                detail="confirmation requested before submission",
            ).log(submission.id)
        return Ok(submission)

    def _before_entry(self, flow: FlowDescriptor, step_id: str) -> bool:
        """Shared steps up to and including the entry step are shown before a flow is chosen."""
        if step_id == flow.delegate_step:
            return True
        step = flow.step(step_id)
        if step is None or not step.shared:
            return False
        return flow.index_of(step_id) <= flow.index_of(flow.entry_step)

    def _check_flow(self, flow: FlowDescriptor, submission: Submission):
        if submission.applicant_type == ApplicantType.DELEGATE and flow.delegate_step:
            return Redirect(
                step_id=flow.delegate_step,
                reason=RedirectReason.FLOW_MISMATCH,
                flow_key=flow.key,
                shared=flow.is_shared(flow.delegate_step),
                detail="delegate applications are not handled online",
            )
        if submission.flow_key != flow.key:
            return self._to_entry(flow, f"submission flow {submission.flow_key} does not match {flow.key}")
        for path in flow.guard_requires:
            if is_absent(submission.get(path)):
                return self._to_entry(flow, f"'{path}' is required to use this flow")
        return None

    def _to_entry(self, flow: FlowDescriptor, detail: str) -> Redirect:
        return Redirect(
            step_id=flow.entry_step,
            reason=RedirectReason.FLOW_MISMATCH,
            flow_key=flow.key,
            shared=flow.is_shared(flow.entry_step),
            detail=detail,
        )
