"""
Flow Predicates

Named boolean functions that flow descriptors reference for step
reachability, conditional checks and consistency rules.

A predicate reference in a descriptor is one of:
- ``name``          a function registered with ``@predicate("name")``
- ``field:<path>``  truthiness of a submission field (dotted path)
- ``child:<path>``  truthiness of a field on the child being evaluated
- ``not <ref>``     negation of any of the above
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from config.settings import WizardSettings
from wizard.age import age_category_of, age_from_date_string, eligibility_by_age
from wizard.models import AgeCategory, Child, Context, Submission, get_path, is_absent

logger = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    """Everything a predicate may look at."""
    submission: Submission
    settings: WizardSettings
    child: Optional[Child] = None

    @property
    def as_of(self) -> date:
        """Reference date for age calculations."""
        coverage_start = self.submission.get("coverage_start_date")
        if coverage_start:
            try:
                return date.fromisoformat(str(coverage_start)[:10])
            except ValueError:
                logger.warning(f"Ignoring invalid coverage_start_date '{coverage_start}'")
        return self.settings.today()

    @property
    def member(self) -> Any:
        """The child when evaluating a child, otherwise the submission."""
        return self.child if self.child is not None else self.submission


PredicateFn = Callable[[EvaluationContext], bool]

PREDICATES: Dict[str, PredicateFn] = {}


def predicate(name: str) -> Callable[[PredicateFn], PredicateFn]:
    """Register a predicate under ``name``."""
    def decorator(fn: PredicateFn) -> PredicateFn:
        if name in PREDICATES:
            raise ValueError(f"Predicate '{name}' is already registered")
        PREDICATES[name] = fn
        return fn
    return decorator


def is_known_predicate(ref: str) -> bool:
    """Check whether a predicate reference can be evaluated."""
    ref = ref.strip()
    if ref.startswith("not "):
        return is_known_predicate(ref[4:])
    if ref.startswith("field:") or ref.startswith("child:"):
        return bool(ref.split(":", 1)[1])
    return ref in PREDICATES


def evaluate(ref: str, ctx: EvaluationContext) -> bool:
    """
    Evaluate a predicate reference.

    Raises:
        KeyError: If the reference names no registered predicate.
    """
    ref = ref.strip()
    if ref.startswith("not "):
        return not evaluate(ref[4:], ctx)
    if ref.startswith("field:"):
        return bool(ctx.submission.get(ref[len("field:"):]))
    if ref.startswith("child:"):
        if ctx.child is None:
            return False
        return bool(get_path(ctx.child.fields, ref[len("child:"):]))
    return bool(PREDICATES[ref](ctx))


def evaluate_all(refs: List[str], ctx: EvaluationContext) -> bool:
    """True when every reference holds (an empty list always holds)."""
    return all(evaluate(ref, ctx) for ref in refs)


# =============================================================================
# HELPERS
# =============================================================================

def declared_or_client_value(submission: Submission, field_name: str, changed_flag: str) -> Any:
    """
    Value the applicant declared, or the on-file client value.

    Renewal steps ask "has X changed?" first; when the answer is no, or
    nothing was declared, the on-file value stands.
    """
    declared = submission.get(field_name)
    if submission.context == Context.RENEW and (submission.get(changed_flag) is False or declared is None):
        client_value = submission.get(f"client_application.{field_name}")
        if client_value is not None:
            return client_value
    return declared


def applicant_date_of_birth(submission: Submission) -> Optional[str]:
    for path in ("date_of_birth", "applicant_information.date_of_birth", "client_application.date_of_birth"):
        value = submission.get(path)
        if not is_absent(value):
            return value
    return None


def date_of_birth_usable(dob: Any, as_of: date) -> bool:
    """A date of birth is usable when it parses and gives a non-negative age."""
    try:
        age_category_of(dob, as_of)
    except (TypeError, ValueError):
        return False
    return True


def applicant_age_category(ctx: EvaluationContext) -> Optional[AgeCategory]:
    """Applicant age category, or None when no usable date of birth is stored."""
    dob = applicant_date_of_birth(ctx.submission)
    if dob is None:
        return None
    try:
        return age_category_of(dob, ctx.as_of)
    except ValueError:
        logger.warning(f"Submission {ctx.submission.id} has an unusable date of birth")
        return None


def child_age_category(child: Child, ctx: EvaluationContext) -> Optional[AgeCategory]:
    dob = child.date_of_birth
    if dob is None:
        return None
    try:
        return age_category_of(dob, ctx.as_of)
    except ValueError:
        logger.warning(f"Child {child.id} has an unusable date of birth")
        return None


# =============================================================================
# APPLICANT PREDICATES
# =============================================================================

@predicate("is_renewal")
def _is_renewal(ctx: EvaluationContext) -> bool:
    return ctx.submission.context == Context.RENEW


@predicate("within_renewal_period")
def _within_renewal_period(ctx: EvaluationContext) -> bool:
    return ctx.settings.is_within_renewal_period()


@predicate("has_client_application")
def _has_client_application(ctx: EvaluationContext) -> bool:
    return ctx.submission.get("client_application") is not None


@predicate("applicant_date_of_birth_valid")
def _applicant_date_of_birth_valid(ctx: EvaluationContext) -> bool:
    """Absent dates are left to ``present`` checks."""
    dob = applicant_date_of_birth(ctx.submission)
    return dob is None or date_of_birth_usable(dob, ctx.as_of)


@predicate("applicant_is_children")
def _applicant_is_children(ctx: EvaluationContext) -> bool:
    return applicant_age_category(ctx) == AgeCategory.CHILDREN


@predicate("applicant_is_youth")
def _applicant_is_youth(ctx: EvaluationContext) -> bool:
    return applicant_age_category(ctx) == AgeCategory.YOUTH


@predicate("applicant_is_adult")
def _applicant_is_adult(ctx: EvaluationContext) -> bool:
    return applicant_age_category(ctx) == AgeCategory.ADULTS


@predicate("applicant_is_senior")
def _applicant_is_senior(ctx: EvaluationContext) -> bool:
    return applicant_age_category(ctx) == AgeCategory.SENIORS


@predicate("applicant_is_adult_or_senior")
def _applicant_is_adult_or_senior(ctx: EvaluationContext) -> bool:
    return applicant_age_category(ctx) in (AgeCategory.ADULTS, AgeCategory.SENIORS)


@predicate("applicant_age_eligible")
def _applicant_age_eligible(ctx: EvaluationContext) -> bool:
    """Whether the applicant's age band is covered by a started eligibility rule."""
    dob = applicant_date_of_birth(ctx.submission)
    if dob is None:
        return False
    try:
        age = age_from_date_string(dob, ctx.as_of)
    except ValueError:
        return False
    return eligibility_by_age(ctx.settings.eligibility_rules, age, ctx.settings.today()) is not None


@predicate("has_partner")
def _has_partner(ctx: EvaluationContext) -> bool:
    marital_status = declared_or_client_value(ctx.submission, "marital_status", "has_marital_status_changed")
    if marital_status is None:
        marital_status = ctx.submission.get("applicant_information.marital_status")
    return marital_status in ctx.settings.partner_marital_statuses


@predicate("skip_marital_status")
def _skip_marital_status(ctx: EvaluationContext) -> bool:
    """Renewals whose on-file record already settles the co-pay tier skip the marital question."""
    return (
        ctx.submission.context == Context.RENEW
        and bool(ctx.submission.get("client_application.copay_tier_earning_record"))
    )


@predicate("requires_verified_email")
def _requires_verified_email(ctx: EvaluationContext) -> bool:
    method = ctx.submission.get("communication_preferences.preferred_method")
    return method in ctx.settings.email_verification_method_ids


# =============================================================================
# CONSISTENCY RULES
# =============================================================================

@predicate("partner_information_present_when_partnered")
def _partner_present_when_partnered(ctx: EvaluationContext) -> bool:
    if not _has_partner(ctx):
        return True
    return not is_absent(ctx.submission.get("partner_information"))


@predicate("partner_information_absent_when_single")
def _partner_absent_when_single(ctx: EvaluationContext) -> bool:
    if _has_partner(ctx):
        return True
    return is_absent(ctx.submission.get("partner_information"))


@predicate("email_verified_for_preferred_method")
def _email_verified_for_preferred_method(ctx: EvaluationContext) -> bool:
    if not _requires_verified_email(ctx):
        return True
    return ctx.submission.get("email_verified") is True


# =============================================================================
# MEMBER PREDICATES (child when evaluating a child, else the applicant)
# =============================================================================

@predicate("member_previously_reviewed")
def _member_previously_reviewed(ctx: EvaluationContext) -> bool:
    return ctx.member.previously_reviewed is True


@predicate("member_externally_reviewed")
def _member_externally_reviewed(ctx: EvaluationContext) -> bool:
    return ctx.member.externally_reviewed is True


@predicate("member_reviewed")
def _member_reviewed(ctx: EvaluationContext) -> bool:
    return _member_previously_reviewed(ctx) or _member_externally_reviewed(ctx)


@predicate("has_children")
def _has_children(ctx: EvaluationContext) -> bool:
    return len(ctx.submission.children) > 0


@predicate("child_is_parent")
def _child_is_parent(ctx: EvaluationContext) -> bool:
    return ctx.child is not None and ctx.child.is_parent is True
