"""
Age Classification

Converts a date of birth into an age and an age category. Ages are
computed relative to a reference date: the coverage start date when one is
known, otherwise today.
"""

from datetime import date, datetime
from typing import Iterable, Optional, Union

from config.settings import EligibilityRule
from wizard.models import AgeCategory

DateLike = Union[str, date]


def parse_date(value: DateLike) -> date:
    """
    Parse an ISO date string (YYYY-MM-DD, optionally with a time part).

    Raises:
        ValueError: If the string is not a valid date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    return datetime.strptime(text, "%Y-%m-%d").date()


def age_from_date_string(date_of_birth: DateLike, as_of: Optional[DateLike] = None) -> int:
    """
    Compute age in whole years.

    Args:
        date_of_birth: Date of birth.
        as_of: Reference date (defaults to today).

    Returns:
        Age in completed years.
    """
    born = parse_date(date_of_birth)
    reference = parse_date(as_of) if as_of is not None else date.today()
    age = reference.year - born.year
    if (reference.month, reference.day) < (born.month, born.day):
        age -= 1
    return age


def age_category_from_age(age: int) -> AgeCategory:
    """
    Classify an age.

    Raises:
        ValueError: For negative ages.
    """
    if age >= 65:
        return AgeCategory.SENIORS
    if 18 <= age < 65:
        return AgeCategory.ADULTS
    if 16 <= age < 18:
        return AgeCategory.YOUTH
    if 0 <= age < 16:
        return AgeCategory.CHILDREN
    raise ValueError(f"Invalid age [{age}]")


def age_category_of(date_of_birth: DateLike, as_of: Optional[DateLike] = None) -> AgeCategory:
    """Classify a date of birth relative to ``as_of``."""
    return age_category_from_age(age_from_date_string(date_of_birth, as_of))


def eligibility_by_age(
    rules: Iterable[EligibilityRule],
    age: int,
    on: Optional[date] = None,
) -> Optional[EligibilityRule]:
    """
    Find the eligibility rule covering an age.

    Args:
        rules: Configured age bands.
        age: Age in years.
        on: Date to test against each rule's start date (defaults to today).

    Returns:
        The first matching rule that has started, or None if the age is
        not (yet) eligible.
    """
    on = on or date.today()
    for rule in rules:
        if rule.min_age <= age <= rule.max_age and rule.start_date <= on:
            return rule
    return None
