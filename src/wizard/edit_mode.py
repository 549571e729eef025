"""
Edit-Mode Reconciler

From the review page a user may revise one answer. While ``edit_mode`` is
on, saves go to shadow keys (``edit_mode_<field>``) so that abandoning the
edit leaves the reviewed answers untouched. Saving the edit merges the
shadow keys into the canonical fields; cancelling discards them. Either way
the user returns to the review page.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

from wizard.descriptors import FlowDescriptor
from wizard.models import SHADOW_PREFIX, Child, Submission
from wizard.results import Ok, Redirect, RedirectReason, Result

logger = logging.getLogger(__name__)


def shadow_key(name: str) -> str:
    return f"{SHADOW_PREFIX}{name}"


def shadow_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Shadow entries of ``fields`` keyed by their canonical name."""
    return {k[len(SHADOW_PREFIX):]: v for k, v in fields.items() if k.startswith(SHADOW_PREFIX)}


@dataclass
class EditOutcome:
    """Result of saving or cancelling an edit."""
    submission: Submission
    redirect: Redirect
    changed: List[str] = field(default_factory=list)


class EditModeReconciler:
    """Shadow-state handling for edits started from the review page."""

    def enter(self, flow: FlowDescriptor, submission: Submission) -> Result:
        """
        Turn edit mode on.

        Returns:
            Ok(submission) with edit_mode set, or a Redirect to confirmation
            when the submission is already submitted.
        """
        if submission.is_submitted:
            return Redirect(
                step_id=flow.confirmation_step,
                reason=RedirectReason.SUBMITTED,
                flow_key=flow.key,
                shared=flow.is_shared(flow.confirmation_step),
                detail="cannot edit a submitted submission",
            ).log(submission.id)
        submission.edit_mode = True
        logger.info(f"Submission {submission.id} entered edit mode")
        return Ok(submission)

    def write(self, submission: Submission, values: Mapping[str, Any], child: Optional[Child] = None) -> None:
        """Store answers: as shadow keys in edit mode, otherwise canonically."""
        target = child.fields if child is not None else submission.fields
        for name, value in values.items():
            key = shadow_key(name) if submission.edit_mode else name
            target[key] = value

    def effective_value(self, submission: Submission, name: str, child: Optional[Child] = None) -> Any:
        """Value a page should display: the shadow value while editing, else the canonical one."""
        fields = child.fields if child is not None else submission.fields
        if submission.edit_mode and shadow_key(name) in fields:
            return fields[shadow_key(name)]
        return fields.get(name)

    def save(self, flow: FlowDescriptor, submission: Submission) -> EditOutcome:
        """Merge shadow answers into canonical fields and return to review."""
        changed = self._merge(submission.fields)
        for child in submission.children:
            changed.extend(f"{child.id}.{name}" for name in self._merge(child.fields))
        submission.edit_mode = False
        logger.info(f"Submission {submission.id} saved edit; changed fields: {changed or 'none'}")
        return EditOutcome(submission, self._to_review(flow, "edit saved"), changed)

    def cancel(self, flow: FlowDescriptor, submission: Submission) -> EditOutcome:
        """Discard shadow answers and return to review."""
        self.discard(submission)
        logger.info(f"Submission {submission.id} cancelled edit")
        return EditOutcome(submission, self._to_review(flow, "edit cancelled"))

    def preview(self, submission: Submission) -> Submission:
        """Copy of the submission as it would look if the edit were saved now."""
        preview = submission.copy()
        self._merge(preview.fields)
        for child in preview.children:
            self._merge(child.fields)
        preview.edit_mode = False
        return preview

    def discard(self, submission: Submission) -> Submission:
        """Drop every shadow key and turn edit mode off."""
        self._clear(submission.fields)
        for child in submission.children:
            self._clear(child.fields)
        submission.edit_mode = False
        return submission

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _merge(self, fields: MutableMapping[str, Any]) -> List[str]:
        """Apply shadow values (None removes the field) and return the names that changed."""
        changed = []
        for name, value in shadow_values(fields).items():
            if fields.get(name) != value:
                changed.append(name)
            if value is None:
                fields.pop(name, None)
            else:
                fields[name] = value
        self._clear(fields)
        return changed

    def _clear(self, fields: MutableMapping[str, Any]) -> None:
        for key in [k for k in fields if k.startswith(SHADOW_PREFIX)]:
            del fields[key]

    def _to_review(self, flow: FlowDescriptor, detail: str) -> Redirect:
        return Redirect(
            step_id=flow.review_step,
            reason=RedirectReason.EDIT_COMPLETE,
            flow_key=flow.key,
            shared=flow.is_shared(flow.review_step),
            detail=detail,
        )
