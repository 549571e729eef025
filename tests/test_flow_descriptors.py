"""
Tests for flow descriptor parsing and static validation.

Every packaged descriptor must load; malformed descriptors must be rejected
when they are loaded, never on a page load.
"""

import os
import sys
from pathlib import Path

import pytest
import yaml

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from wizard.descriptors import (
    FLOWS_DIR,
    CheckKind,
    FlowDescriptorLoader,
    FlowRegistry,
    StepKind,
    parse_descriptor,
    required_review_fields,
)
from wizard.models import ApplicantType, Context, FlowKey, Variant
from wizard.results import FlowDescriptorError, RedirectReason, UnknownFlowError


def minimal_descriptor(**overrides) -> dict:
    data = {
        "context": "apply",
        "applicant_type": "adult",
        "variant": "full",
        "entry_step": "start",
        "first_step": "start",
        "review_step": "review",
        "confirmation_step": "confirmation",
        "steps": [
            {"id": "start", "writes": ["name"], "checks": [{"present": "name"}]},
            {"id": "review", "kind": "review"},
            {"id": "confirmation", "kind": "confirmation"},
        ],
    }
    data.update(overrides)
    return data


class TestPackagedFlows:
    """Tests for the descriptors shipped with the package."""

    def test_all_flows_load(self, registry):
        assert len(registry) == len(list(FLOWS_DIR.glob("*.yaml")))

    def test_expected_flows_present(self, registry):
        assert FlowKey(Context.RENEW, ApplicantType.ADULT_CHILD, Variant.FULL) in registry
        assert FlowKey(Context.APPLY, ApplicantType.CHILDREN, Variant.FULL) in registry
        assert FlowKey(Context.RENEW, ApplicantType.ADULT, Variant.SIMPLIFIED) in registry

    def test_every_flow_has_terminal_steps(self, registry):
        for flow in registry:
            assert flow.step(flow.review_step).kind == StepKind.REVIEW
            assert flow.step(flow.confirmation_step).kind == StepKind.CONFIRMATION

    def test_review_models_build(self, registry):
        """Every flow can build its reviewable model up front."""
        for flow in registry:
            assert flow.review_model is not None
            assert flow.child_review_model is not None

    def test_signed_in_renewals_require_client_application(self, registry):
        for flow in registry:
            if flow.key.context == Context.RENEW and flow.key.variant == Variant.SIMPLIFIED:
                assert "client_application" in flow.guard_requires
                assert flow.reset_edit_mode_on_failure

    def test_per_flow_out_of_range_targets(self, registry):
        """Children outside the age range go where each flow says."""
        apply_children = registry.get(FlowKey(Context.APPLY, ApplicantType.CHILDREN, Variant.FULL))
        assert apply_children.children.out_of_range.step == "cannot-apply-child"
        assert apply_children.children.out_of_range.child_scoped

        renew_children = registry.get(FlowKey(Context.RENEW, ApplicantType.CHILDREN, Variant.SIMPLIFIED))
        assert renew_children.children.out_of_range.step == "type-of-application"
        assert not renew_children.children.out_of_range.child_scoped

        renew_adult_child = registry.get(FlowKey(Context.RENEW, ApplicantType.ADULT_CHILD, Variant.FULL))
        assert renew_adult_child.children.out_of_range is None


class TestParseDescriptor:
    """Tests for parsing single descriptors."""

    def test_minimal(self):
        flow = parse_descriptor(minimal_descriptor())
        assert flow.key == FlowKey(Context.APPLY, ApplicantType.ADULT, Variant.FULL)
        assert [s.id for s in flow.steps] == ["start", "review", "confirmation"]
        assert flow.step("start").checks[0].kind == CheckKind.PRESENT

    def test_check_reasons(self):
        data = minimal_descriptor()
        data["steps"][0]["checks"] = [
            {"present": "name"},
            {"require": "field:name"},
            {"consistent": "partner_information_absent_when_single"},
        ]
        checks = parse_descriptor(data).step("start").checks
        assert checks[0].reason == RedirectReason.MISSING_STEP_DATA
        assert checks[1].reason == RedirectReason.MISSING_STEP_DATA
        assert checks[2].reason == RedirectReason.INCONSISTENT_STATE

    def test_not_a_mapping(self):
        with pytest.raises(FlowDescriptorError):
            parse_descriptor(["not", "a", "mapping"])

    def test_missing_key(self):
        data = minimal_descriptor()
        del data["review_step"]
        with pytest.raises(FlowDescriptorError):
            parse_descriptor(data)

    def test_unknown_applicant_type(self):
        with pytest.raises(FlowDescriptorError):
            parse_descriptor(minimal_descriptor(applicant_type="grandparent"))


class TestStaticValidation:
    """Tests for load-time rejection of malformed descriptors."""

    def test_duplicate_step_ids(self):
        data = minimal_descriptor()
        data["steps"].insert(1, {"id": "start"})
        with pytest.raises(FlowDescriptorError, match="duplicate step id 'start'"):
            parse_descriptor(data)

    def test_missing_review_step(self):
        data = minimal_descriptor(review_step="nowhere")
        with pytest.raises(FlowDescriptorError, match="review_step 'nowhere'"):
            parse_descriptor(data)

    def test_review_step_wrong_kind(self):
        data = minimal_descriptor(review_step="start")
        with pytest.raises(FlowDescriptorError, match="must have kind 'review'"):
            parse_descriptor(data)

    def test_unknown_predicate(self):
        data = minimal_descriptor()
        data["steps"][0]["reachable_if"] = ["is_martian"]
        with pytest.raises(FlowDescriptorError, match="unknown predicate 'is_martian'"):
            parse_descriptor(data)

    def test_negated_unknown_predicate(self):
        data = minimal_descriptor()
        data["steps"][0]["checks"] = [{"require": "not is_martian"}]
        with pytest.raises(FlowDescriptorError, match="unknown predicate"):
            parse_descriptor(data)

    def test_unknown_redirect_target(self):
        data = minimal_descriptor()
        data["steps"][0]["checks"] = [{"present": "name", "redirect": "elsewhere"}]
        with pytest.raises(FlowDescriptorError, match="redirect target 'elsewhere'"):
            parse_descriptor(data)

    def test_unknown_edit_chain_step(self):
        data = minimal_descriptor()
        data["steps"][0]["edit_chain"] = ["elsewhere"]
        with pytest.raises(FlowDescriptorError, match="edit_chain step 'elsewhere'"):
            parse_descriptor(data)

    def test_exit_step_with_checks(self):
        data = minimal_descriptor()
        data["steps"].insert(1, {"id": "stop", "kind": "exit", "checks": [{"present": "x"}]})
        with pytest.raises(FlowDescriptorError, match="exit steps cannot carry checks"):
            parse_descriptor(data)

    def test_children_index_must_be_children_step(self):
        data = minimal_descriptor(children={"index_step": "start", "steps": [{"id": "information"}]})
        with pytest.raises(FlowDescriptorError, match="index_step 'start'"):
            parse_descriptor(data)

    def test_children_step_without_section(self):
        data = minimal_descriptor()
        data["steps"].insert(1, {"id": "children", "kind": "children"})
        with pytest.raises(FlowDescriptorError, match="without a children section"):
            parse_descriptor(data)

    def test_errors_are_collected(self):
        data = minimal_descriptor(review_step="nowhere", confirmation_step="gone")
        with pytest.raises(FlowDescriptorError) as exc_info:
            parse_descriptor(data)
        assert len(exc_info.value.errors) == 2


class TestReviewModel:
    """Tests for the per-flow reviewable model."""

    def test_required_and_optional_fields(self):
        data = minimal_descriptor()
        data["steps"].insert(1, {
            "id": "partner",
            "reachable_if": ["has_partner"],
            "writes": ["partner_information"],
            "checks": [{"present": "partner_information"}],
        })
        flow = parse_descriptor(data)
        required, optional = required_review_fields(flow.steps)
        assert required == ["name"]
        assert optional == ["partner_information"]

    def test_required_field_enforced(self):
        flow = parse_descriptor(minimal_descriptor())
        with pytest.raises(ValueError):
            flow.review_model()
        assert flow.review_model(name="Alex").name == "Alex"


class TestLoaderAndRegistry:
    """Tests for loading descriptor directories."""

    def test_load_directory(self, settings, tmp_path):
        (tmp_path / "one.yaml").write_text(yaml.safe_dump(minimal_descriptor()))
        registry = FlowDescriptorLoader(settings, flows_dir=tmp_path).load_all()
        assert len(registry) == 1

    def test_malformed_file_fails_loading(self, settings, tmp_path):
        (tmp_path / "bad.yaml").write_text(yaml.safe_dump(minimal_descriptor(review_step="nowhere")))
        with pytest.raises(FlowDescriptorError) as exc_info:
            FlowDescriptorLoader(settings, flows_dir=tmp_path).load_all()
        assert exc_info.value.source == "bad.yaml"

    def test_duplicate_flow_keys_rejected(self, settings, tmp_path):
        (tmp_path / "a.yaml").write_text(yaml.safe_dump(minimal_descriptor()))
        (tmp_path / "b.yaml").write_text(yaml.safe_dump(minimal_descriptor()))
        with pytest.raises(FlowDescriptorError):
            FlowDescriptorLoader(settings, flows_dir=tmp_path).load_all()

    def test_settings_flows_dir(self, tmp_path):
        from config.settings import WizardSettings

        (tmp_path / "one.yaml").write_text(yaml.safe_dump(minimal_descriptor()))
        settings = WizardSettings(flows_dir=str(tmp_path))
        assert FlowDescriptorLoader(settings).flows_dir == Path(tmp_path)

    def test_unknown_flow(self, settings):
        registry = FlowRegistry(settings)
        with pytest.raises(UnknownFlowError):
            registry.get(FlowKey(Context.APPLY, ApplicantType.ADULT, Variant.FULL))
