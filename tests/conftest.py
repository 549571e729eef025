"""Pytest configuration and fixtures for test suite."""

import copy
import os
import sys
from datetime import date
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("WIZARD_ENVIRONMENT", "test")
os.environ.setdefault("WIZARD_LOG_LEVEL", "DEBUG")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from config.settings import WizardSettings
from wizard.descriptors import FlowDescriptorLoader
from wizard.engine import WizardEngine
from wizard.models import ApplicantType, Child, Context, Submission, Variant
from wizard.store import SubmissionStore


# Fixed "today" for every age calculation in the suite
TODAY = date(2025, 6, 1)

ADULT_DOB = "1980-03-15"
SENIOR_DOB = "1950-01-20"
YOUTH_DOB = "2008-09-01"
CHILD_DOB = "2015-07-01"


# =============================================================================
# COMPLETE ANSWER SETS
# =============================================================================

def renew_adult_child_fields() -> dict:
    """Answers that pass every check of the public adult-child renewal."""
    return {
        "applicant_information": {
            "first_name": "Alex",
            "last_name": "Tremblay",
            "client_number": "00000000001",
            "date_of_birth": ADULT_DOB,
        },
        "client_application": {
            "marital_status": "single",
            "date_of_birth": ADULT_DOB,
        },
        "has_marital_status_changed": False,
        "has_address_changed": False,
        "contact_information": {
            "is_new_or_updated_phone_number": False,
            "is_new_or_updated_email": False,
        },
        "dental_insurance": False,
        "has_federal_provincial_territorial_benefits_changed": False,
    }


def renew_child_fields(dob: str = CHILD_DOB) -> dict:
    return {
        "information": {
            "first_name": "Sam",
            "last_name": "Tremblay",
            "date_of_birth": dob,
            "is_parent": True,
        },
        "dental_insurance": False,
        "has_federal_provincial_territorial_benefits_changed": False,
    }


def apply_adult_fields() -> dict:
    """Answers that pass every check of the public adult application."""
    return {
        "tax_filing": True,
        "date_of_birth": ADULT_DOB,
        "applicant_information": {
            "first_name": "Jordan",
            "last_name": "Roy",
            "social_insurance_number": "800000002",
            "marital_status": "single",
        },
        "contact_information": {
            "phone_number": "555-555-5555",
            "mailing_address": "1 Main St",
        },
        "communication_preferences": {"preferred_method": "mail"},
        "dental_insurance": False,
        "has_federal_provincial_territorial_benefits": False,
    }


def apply_child_fields(dob: str = CHILD_DOB) -> dict:
    return {
        "information": {
            "first_name": "Robin",
            "last_name": "Roy",
            "date_of_birth": dob,
            "is_parent": True,
        },
        "dental_insurance": False,
        "has_federal_provincial_territorial_benefits": False,
        "dental_benefits": [],
    }


def apply_children_fields() -> dict:
    """Answers that pass every flow-level check of the public children application."""
    fields = apply_adult_fields()
    del fields["dental_insurance"]
    del fields["has_federal_provincial_territorial_benefits"]
    return fields


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with a fixed current date and a throwaway session database."""
    return WizardSettings(
        environment="test",
        current_date=TODAY,
        session_db_path=str(tmp_path / "wizard_sessions.db"),
    )


@pytest.fixture
def registry(settings):
    """All packaged flow descriptors."""
    return FlowDescriptorLoader(settings).load_all()


@pytest.fixture
def session():
    """A bare session mapping."""
    return {}


@pytest.fixture
def store(session):
    return SubmissionStore(session)


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def engine(registry, store, audit_events):
    """Engine recording audit events into ``audit_events``."""
    return WizardEngine(registry, store, audit_hook=lambda event, payload: audit_events.append((event, payload)))


@pytest.fixture
def make_submission(store):
    """
    Factory storing a submission for a given flow.

    Usage:
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD,
                                     fields=renew_adult_child_fields(),
                                     children=[renew_child_fields()])
    """
    def _make(
        context: Context,
        applicant_type: ApplicantType = None,
        variant: Variant = Variant.FULL,
        fields: dict = None,
        children: list = None,
    ) -> Submission:
        submission = store.start(
            context,
            variant=variant,
            applicant_type=applicant_type,
            fields=copy.deepcopy(fields or {}),
        )
        if children:
            submission.children = [Child(fields=copy.deepcopy(c)) for c in children]
            store.put(submission)
        return submission

    return _make
