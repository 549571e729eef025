"""
Submission Store

Keeps one Submission per id inside a user's session mapping. Every
operation is a whole-record read-modify-write; the last writer wins.

The session mapping is whatever the web layer hands in (a dict loaded from
``database.session_persistence`` in production, a plain dict in tests).
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, MutableMapping, Optional

from wizard.models import (
    ApplicantType,
    Child,
    Context,
    Submission,
    SubmissionInfo,
    Variant,
)
from wizard.results import SubmissionNotFound

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "wizard-submission-"

# Idle time before an untouched submission is discarded
DEFAULT_TTL_MINUTES = 20

# Submission attributes a partial save may set
_SAVABLE_ATTRIBUTES = {
    "applicant_type",
    "variant",
    "fields",
    "children",
    "edit_mode",
    "submission_info",
    "previously_reviewed",
    "externally_reviewed",
}


def session_key(submission_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{submission_id}"


def _validate_id(submission_id: str) -> str:
    try:
        return str(uuid.UUID(str(submission_id)))
    except (ValueError, AttributeError, TypeError):
        raise SubmissionNotFound(str(submission_id), "has an invalid id") from None


class SubmissionStore:
    """
    Session-scoped persistence for submissions.

    Args:
        session: Mutable mapping holding this user's session values.
        ttl_minutes: Idle minutes after which a submission expires.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        session: MutableMapping[str, Any],
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session = session
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(
        self,
        context: Context,
        variant: Variant = Variant.FULL,
        applicant_type: Optional[ApplicantType] = None,
        submission_id: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Submission:
        """
        Create an empty submission and store it.

        Args:
            context: apply or renew.
            variant: Questionnaire variant.
            applicant_type: Known applicant type, if already chosen.
            submission_id: Id to use (a new UUID when omitted).
            fields: Initial answers (e.g. the on-file client application).

        Returns:
            The stored Submission.
        """
        submission = Submission(
            id=_validate_id(submission_id) if submission_id else str(uuid.uuid4()),
            context=context,
            variant=variant,
            applicant_type=applicant_type,
            fields=dict(fields or {}),
        )
        self._write(submission)
        logger.info(f"Started {context.value} submission {submission.id}")
        return submission

    def load(self, submission_id: str) -> Submission:
        """
        Load a submission.

        Raises:
            SubmissionNotFound: If the id is malformed, unknown or expired.
        """
        submission_id = _validate_id(submission_id)
        key = session_key(submission_id)
        data = self.session.get(key)
        if data is None:
            logger.warning(f"Submission {submission_id} not found in session")
            raise SubmissionNotFound(submission_id)

        submission = Submission.from_dict(data)
        if self._is_expired(submission):
            del self.session[key]
            logger.info(f"Submission {submission_id} expired after {self.ttl}")
            raise SubmissionNotFound(submission_id, "has expired")
        return submission

    def save(
        self,
        submission_id: str,
        partial: Dict[str, Any],
        remove: Optional[Iterable[str]] = None,
    ) -> Submission:
        """
        Shallow-merge ``partial`` into a stored submission.

        Top-level attributes are replaced; ``fields`` is merged key by key.
        ``remove`` names field keys to drop after the merge.

        Raises:
            SubmissionNotFound: If the submission cannot be loaded.
            ValueError: On unknown attributes or a second submission_info.
        """
        submission = self.load(submission_id)

        unknown = set(partial) - _SAVABLE_ATTRIBUTES
        if unknown:
            raise ValueError(f"Cannot save unknown submission attributes: {sorted(unknown)}")

        for name, value in partial.items():
            if name == "fields":
                submission.fields.update(value or {})
            elif name == "children":
                submission.children = [c if isinstance(c, Child) else Child.from_dict(c) for c in value]
            elif name == "submission_info":
                if submission.submission_info is not None:
                    raise ValueError(f"Submission {submission.id} has already been submitted")
                if isinstance(value, dict):
                    value = SubmissionInfo.from_dict(value)
                submission.submission_info = value
            elif name == "applicant_type":
                submission.applicant_type = ApplicantType(value) if value is not None else None
            elif name == "variant":
                submission.variant = Variant(value)
            else:
                setattr(submission, name, value)

        for field_name in remove or ():
            submission.fields.pop(field_name, None)

        return self._write(submission)

    def put(self, submission: Submission) -> Submission:
        """
        Write a whole submission record back.

        Raises:
            SubmissionNotFound: If the submission is no longer stored.
            ValueError: If the stored record is already submitted and differs.
        """
        stored = self.load(submission.id)
        if stored.submission_info is not None and submission.submission_info != stored.submission_info:
            raise ValueError(f"Submission {submission.id} has already been submitted")
        return self._write(submission)

    def clear(self, submission_id: str) -> None:
        """Remove a submission from the session (no error if absent)."""
        submission_id = _validate_id(submission_id)
        self.session.pop(session_key(submission_id), None)
        logger.info(f"Cleared submission {submission_id}")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _write(self, submission: Submission) -> Submission:
        submission.last_updated_on = self.clock().isoformat()
        self.session[session_key(submission.id)] = submission.to_dict()
        return submission

    def _is_expired(self, submission: Submission) -> bool:
        try:
            last_updated = datetime.fromisoformat(submission.last_updated_on)
        except ValueError:
            logger.warning(f"Submission {submission.id} has an unreadable timestamp")
            return True
        return self.clock() - last_updated > self.ttl
