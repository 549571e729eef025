"""
Wizard Data Model

Submission, Child and flow-key types shared by every wizard component.

A Submission is an open partial record: answers live in ``fields`` keyed by
field name and only become a complete, typed view once the validation gate
has accepted them (see ``gate.ReviewableSubmission``).
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class Context(str, Enum):
    """Which programme the user is in."""
    APPLY = "apply"
    RENEW = "renew"


class ApplicantType(str, Enum):
    """Who the submission is for."""
    ADULT = "adult"
    ADULT_CHILD = "adult-child"
    FAMILY = "family"
    CHILDREN = "children"
    DELEGATE = "delegate"  # No flow; routed to the delegate information step


class Variant(str, Enum):
    """Which questionnaire variant the flow uses."""
    FULL = "full"
    SIMPLIFIED = "simplified"
    INTAKE = "intake"


class AgeCategory(str, Enum):
    """Age bands used for eligibility branching."""
    CHILDREN = "children"  # 0-15
    YOUTH = "youth"        # 16-17
    ADULTS = "adults"      # 18-64
    SENIORS = "seniors"    # 65+


# Prefix for edit-mode shadow keys: "marital_status" -> "edit_mode_marital_status"
SHADOW_PREFIX = "edit_mode_"


def is_absent(value: Any) -> bool:
    """A field is absent when it is missing, None or an empty string."""
    return value is None or (isinstance(value, str) and value.strip() == "")


def get_path(data: Optional[Mapping[str, Any]], path: str) -> Any:
    """
    Read a dotted field path ("contact_information.email") from nested mappings.

    Returns None as soon as any segment is missing.
    """
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat()


# =============================================================================
# FLOW KEY
# =============================================================================

@dataclass(frozen=True)
class FlowKey:
    """Identifies one flow: (context, applicant type, variant)."""
    context: Context
    applicant_type: ApplicantType
    variant: Variant

    @property
    def slug(self) -> str:
        """URL segment for the flow, e.g. 'adult-child-full'."""
        return f"{self.applicant_type.value}-{self.variant.value}"

    @classmethod
    def from_slug(cls, context: str, slug: str) -> "FlowKey":
        """
        Parse a flow slug back into a key.

        Raises:
            ValueError: If the context or slug does not name a known flow.
        """
        applicant_type, _, variant = slug.rpartition("-")
        if not applicant_type:
            raise ValueError(f"Invalid flow slug: {slug}")
        return cls(Context(context), ApplicantType(applicant_type), Variant(variant))

    def __str__(self) -> str:
        return f"{self.context.value}/{self.slug}"


# =============================================================================
# SUBMISSION RECORDS
# =============================================================================

@dataclass
class SubmissionInfo:
    """Terminal marker written once the submission has been handed off."""
    confirmation_code: str
    submitted_on: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_code": self.confirmation_code,
            "submitted_on": self.submitted_on,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionInfo":
        return cls(
            confirmation_code=data["confirmation_code"],
            submitted_on=data["submitted_on"],
        )


@dataclass
class Child:
    """A child member of the submission with its own answers."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    fields: Dict[str, Any] = field(default_factory=dict)
    previously_reviewed: Optional[bool] = None
    externally_reviewed: Optional[bool] = None

    @property
    def date_of_birth(self) -> Optional[str]:
        value = get_path(self.fields, "information.date_of_birth")
        return None if is_absent(value) else value

    @property
    def is_parent(self) -> Optional[bool]:
        return get_path(self.fields, "information.is_parent")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fields": copy.deepcopy(self.fields),
            "previously_reviewed": self.previously_reviewed,
            "externally_reviewed": self.externally_reviewed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Child":
        return cls(
            id=data["id"],
            fields=copy.deepcopy(data.get("fields") or {}),
            previously_reviewed=data.get("previously_reviewed"),
            externally_reviewed=data.get("externally_reviewed"),
        )


@dataclass
class Submission:
    """
    Partially filled questionnaire persisted between page loads.

    ``applicant_type`` stays None until the user picks an application type;
    ``submission_info`` is write-once and marks the submission terminal.
    """
    id: str
    context: Context
    variant: Variant = Variant.FULL
    applicant_type: Optional[ApplicantType] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    children: List[Child] = field(default_factory=list)
    edit_mode: bool = False
    submission_info: Optional[SubmissionInfo] = None
    previously_reviewed: Optional[bool] = None
    externally_reviewed: Optional[bool] = None
    last_updated_on: str = field(default_factory=utc_now_iso)

    @property
    def flow_key(self) -> Optional[FlowKey]:
        if self.applicant_type is None or self.applicant_type == ApplicantType.DELEGATE:
            return None
        return FlowKey(self.context, self.applicant_type, self.variant)

    @property
    def is_submitted(self) -> bool:
        return self.submission_info is not None

    def get(self, path: str) -> Any:
        """Read a dotted path from the canonical fields."""
        return get_path(self.fields, path)

    def find_child(self, child_id: str) -> Optional[Child]:
        for child in self.children:
            if child.id == child_id:
                return child
        return None

    def copy(self) -> "Submission":
        return Submission.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict for the session store."""
        return {
            "id": self.id,
            "context": self.context.value,
            "variant": self.variant.value,
            "applicant_type": self.applicant_type.value if self.applicant_type else None,
            "fields": copy.deepcopy(self.fields),
            "children": [c.to_dict() for c in self.children],
            "edit_mode": self.edit_mode,
            "submission_info": self.submission_info.to_dict() if self.submission_info else None,
            "previously_reviewed": self.previously_reviewed,
            "externally_reviewed": self.externally_reviewed,
            "last_updated_on": self.last_updated_on,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Submission":
        applicant_type = data.get("applicant_type")
        info = data.get("submission_info")
        return cls(
            id=data["id"],
            context=Context(data["context"]),
            variant=Variant(data.get("variant") or Variant.FULL.value),
            applicant_type=ApplicantType(applicant_type) if applicant_type else None,
            fields=copy.deepcopy(data.get("fields") or {}),
            children=[Child.from_dict(c) for c in data.get("children") or []],
            edit_mode=bool(data.get("edit_mode", False)),
            submission_info=SubmissionInfo.from_dict(info) if info else None,
            previously_reviewed=data.get("previously_reviewed"),
            externally_reviewed=data.get("externally_reviewed"),
            last_updated_on=data.get("last_updated_on") or utc_now_iso(),
        )
