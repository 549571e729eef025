"""
Tests for the navigation guard.
"""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from wizard.guard import NavigationGuard
from wizard.models import ApplicantType, Context, FlowKey, SubmissionInfo, Variant
from wizard.results import RedirectReason, UnknownStepError

RENEW_ADULT_CHILD = FlowKey(Context.RENEW, ApplicantType.ADULT_CHILD, Variant.FULL)
RENEW_CHILDREN_SIMPLIFIED = FlowKey(Context.RENEW, ApplicantType.CHILDREN, Variant.SIMPLIFIED)


@pytest.fixture
def guard():
    return NavigationGuard()


def submitted(submission):
    submission.submission_info = SubmissionInfo("ABC123", "2025-06-01T12:00:00")
    return submission


class TestFlowOwnership:
    """A submission may only load steps of its own flow."""

    def test_matching_flow_is_ok(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD)
        result = guard.check(flow, submission, "confirm-address")
        assert not result.is_redirect
        assert result.value is submission

    def test_type_not_chosen_goes_to_entry(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW)
        result = guard.check(flow, submission, "confirm-address")
        assert result.is_redirect
        assert result.step_id == flow.entry_step
        assert result.reason == RedirectReason.FLOW_MISMATCH
        assert result.shared

    def test_other_applicant_type_goes_to_entry(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT)
        assert guard.check(flow, submission, "dental-insurance").step_id == "type-renewal"

    def test_other_variant_goes_to_entry(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD, Variant.SIMPLIFIED)
        assert guard.check(flow, submission, "dental-insurance").reason == RedirectReason.FLOW_MISMATCH

    def test_delegate_goes_to_delegate_step(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.DELEGATE)
        result = guard.check(flow, submission, "confirm-address")
        assert result.step_id == "renewal-delegate"
        assert result.reason == RedirectReason.FLOW_MISMATCH

    def test_delegate_step_itself_is_allowed(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.DELEGATE)
        assert not guard.check(flow, submission, "renewal-delegate").is_redirect

    def test_pre_entry_steps_exempt(self, guard, registry, make_submission):
        """Steps up to the type choice are shown before any flow is chosen."""
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW)
        assert not guard.check(flow, submission, "terms-and-conditions").is_redirect
        assert not guard.check(flow, submission, "type-renewal").is_redirect

    def test_shared_step_after_entry_is_guarded(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW)
        assert guard.check(flow, submission, "applicant-information").is_redirect

    def test_guard_requires_client_application(self, guard, registry, make_submission):
        flow = registry.get(RENEW_CHILDREN_SIMPLIFIED)
        submission = make_submission(Context.RENEW, ApplicantType.CHILDREN, Variant.SIMPLIFIED)
        result = guard.check(flow, submission, "parent-or-guardian")
        assert result.step_id == flow.entry_step
        assert "client_application" in result.detail

        submission.fields["client_application"] = {"marital_status": "single"}
        assert not guard.check(flow, submission, "parent-or-guardian").is_redirect

    def test_child_steps_are_known(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD)
        assert not guard.check(flow, submission, "information").is_redirect

    def test_unknown_step_raises(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD)
        with pytest.raises(UnknownStepError):
            guard.check(flow, submission, "no-such-step")


class TestSubmittedLock:
    """Submitted submissions may only show confirmation."""

    def test_every_step_of_every_flow_redirects_to_confirmation(self, guard, registry, make_submission):
        for flow in registry:
            submission = submitted(make_submission(flow.key.context, flow.key.applicant_type, flow.key.variant))
            submission.fields["client_application"] = {"marital_status": "single"}
            for step in flow.steps:
                if step.id == flow.confirmation_step:
                    continue
                result = guard.check(flow, submission, step.id)
                assert result.is_redirect, f"{flow.key} {step.id}"
                if result.reason == RedirectReason.SUBMITTED:
                    assert result.step_id == flow.confirmation_step
            assert not guard.check(flow, submission, flow.confirmation_step).is_redirect

    def test_submitted_redirect_reason(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = submitted(make_submission(Context.RENEW, ApplicantType.ADULT_CHILD))
        result = guard.check(flow, submission, flow.review_step)
        assert result.step_id == "confirmation"
        assert result.reason == RedirectReason.SUBMITTED

    def test_confirmation_before_submission(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT_CHILD)
        result = guard.check(flow, submission, "confirmation")
        assert result.step_id == flow.first_step
        assert result.reason == RedirectReason.NOT_SUBMITTED


class TestPurity:
    """The guard never changes the submission."""

    def test_idempotent(self, guard, registry, make_submission):
        flow = registry.get(RENEW_ADULT_CHILD)
        submission = make_submission(Context.RENEW, ApplicantType.ADULT)
        before = submission.to_dict()
        first = guard.check(flow, submission, "confirm-phone")
        second = guard.check(flow, submission, "confirm-phone")
        assert first == second
        assert submission.to_dict() == before
