"""
Flow Descriptors

Declarative description of one wizard flow: the ordered steps, what each
step writes, when a step is reachable, and the checks that must pass
before the flow may reach its review page.

Descriptors are YAML files under ``wizard/flows`` (or a configured
directory). They are parsed and statically validated once, at load time,
so that a malformed descriptor fails at startup rather than on a user's
page load.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import yaml
from pydantic import ConfigDict, create_model

from config.settings import WizardSettings
from wizard.models import AgeCategory, ApplicantType, Context, FlowKey, Variant
from wizard.predicates import is_known_predicate
from wizard.results import FlowDescriptorError, RedirectReason, UnknownFlowError

logger = logging.getLogger(__name__)

# Packaged descriptors
FLOWS_DIR = Path(__file__).parent / "flows"


class StepKind(str, Enum):
    """Role a step plays in the flow."""
    QUESTION = "question"          # Ordinary form page
    CHILDREN = "children"          # Children index; runs the children validator
    REVIEW = "review"              # Gated review/submit page
    CONFIRMATION = "confirmation"  # Terminal page after submission
    EXIT = "exit"                  # Dead-end information page, never a navigation target


class CheckKind(str, Enum):
    PRESENT = "present"        # Field must be present
    REQUIRE = "require"        # Predicate must hold (missing answer)
    CONSISTENT = "consistent"  # Predicate must hold (contradictory answers)


@dataclass
class Check:
    """One validation rule attached to a step."""
    kind: CheckKind
    target: str
    when: List[str] = field(default_factory=list)
    redirect: Optional[str] = None
    description: str = ""

    @property
    def reason(self) -> RedirectReason:
        if self.kind == CheckKind.CONSISTENT:
            return RedirectReason.INCONSISTENT_STATE
        return RedirectReason.MISSING_STEP_DATA

    def describe(self) -> str:
        return self.description or f"{self.kind.value} {self.target}"


@dataclass
class StepDescriptor:
    """One page of the flow."""
    id: str
    kind: StepKind = StepKind.QUESTION
    writes: List[str] = field(default_factory=list)
    reachable_if: List[str] = field(default_factory=list)
    checks: List[Check] = field(default_factory=list)
    shared: bool = False
    edit_chain: List[str] = field(default_factory=list)

    @property
    def is_navigable(self) -> bool:
        """Whether next/previous resolution may land on this step."""
        return self.kind not in (StepKind.CONFIRMATION, StepKind.EXIT)


@dataclass
class OutOfRangeRule:
    """Where to send a child whose age falls outside the flow's range."""
    step: str
    child_scoped: bool = False


@dataclass
class ChildrenSpec:
    """Children sub-list configuration."""
    index_step: str
    required: bool = True
    validate_after: Optional[str] = None
    allowed_age_categories: List[AgeCategory] = field(default_factory=lambda: [AgeCategory.CHILDREN, AgeCategory.YOUTH])
    out_of_range: Optional[OutOfRangeRule] = None
    steps: List[StepDescriptor] = field(default_factory=list)

    @property
    def validation_point(self) -> str:
        """Step after which the children are validated."""
        return self.validate_after or self.index_step

    def step(self, step_id: str) -> Optional[StepDescriptor]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


@dataclass
class FlowDescriptor:
    """Complete description of one flow."""
    key: FlowKey
    entry_step: str
    first_step: str
    review_step: str
    confirmation_step: str
    steps: List[StepDescriptor]
    delegate_step: Optional[str] = None
    guard_requires: List[str] = field(default_factory=list)
    reset_edit_mode_on_failure: bool = False
    children: Optional[ChildrenSpec] = None
    source: str = "<memory>"
    _review_model: Optional[type] = field(default=None, repr=False, compare=False)
    _child_review_model: Optional[type] = field(default=None, repr=False, compare=False)

    def step(self, step_id: str) -> Optional[StepDescriptor]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for i, step in enumerate(self.steps):
            if step.id == step_id:
                return i
        raise KeyError(f"Step '{step_id}' is not part of flow {self.key}")

    def has_step(self, step_id: str) -> bool:
        return self.step(step_id) is not None

    def child_step(self, step_id: str) -> Optional[StepDescriptor]:
        return self.children.step(step_id) if self.children else None

    def is_shared(self, step_id: str) -> bool:
        step = self.step(step_id)
        return bool(step and step.shared)

    @property
    def review_model(self) -> type:
        """Pydantic model of the reviewable state, built on first use."""
        if self._review_model is None:
            self._review_model = build_review_model(f"{self._model_prefix}Review", self.steps)
        return self._review_model

    @property
    def child_review_model(self) -> type:
        """Pydantic model of one reviewable child."""
        if self._child_review_model is None:
            steps = self.children.steps if self.children else []
            self._child_review_model = build_review_model(f"{self._model_prefix}ChildReview", steps)
        return self._child_review_model

    @property
    def _model_prefix(self) -> str:
        parts = [self.key.context.value, self.key.applicant_type.value, self.key.variant.value]
        return "".join(p.replace("-", " ").title().replace(" ", "") for p in parts)


# =============================================================================
# REVIEW MODEL
# =============================================================================

def required_review_fields(steps: List[StepDescriptor]) -> Tuple[List[str], List[str]]:
    """
    Split the fields a list of steps checks into required and conditional ones.

    A field is required when an unconditional ``present`` check on an
    unconditionally reachable step names it; every other field a step
    writes or checks is optional.
    """
    required: List[str] = []
    optional: List[str] = []
    for step in steps:
        for check in step.checks:
            if check.kind != CheckKind.PRESENT:
                continue
            name = check.target.split(".", 1)[0]
            if not step.reachable_if and not check.when:
                if name not in required:
                    required.append(name)
            elif name not in optional:
                optional.append(name)
        for name in step.writes:
            if name not in optional:
                optional.append(name)
    optional = [name for name in optional if name not in required]
    return required, optional


def build_review_model(name: str, steps: List[StepDescriptor]) -> type:
    """Create the pydantic model a reviewable record checked by ``steps`` must satisfy."""
    required, optional = required_review_fields(steps)
    definitions: Dict[str, Any] = {field_name: (Any, ...) for field_name in required}
    definitions.update({field_name: (Optional[Any], None) for field_name in optional})
    return create_model(
        name,
        __config__=ConfigDict(extra="allow", frozen=True),
        **definitions,
    )


# =============================================================================
# PARSING
# =============================================================================

def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _parse_check(data: Dict[str, Any]) -> Check:
    for kind in CheckKind:
        if kind.value in data:
            return Check(
                kind=kind,
                target=str(data[kind.value]),
                when=_as_list(data.get("when")),
                redirect=data.get("redirect"),
                description=data.get("description", ""),
            )
    raise ValueError(f"Check has no kind (expected one of present/require/consistent): {data}")


def _parse_step(data: Dict[str, Any]) -> StepDescriptor:
    if "id" not in data:
        raise ValueError(f"Step without id: {data}")
    return StepDescriptor(
        id=str(data["id"]),
        kind=StepKind(data.get("kind", StepKind.QUESTION.value)),
        writes=_as_list(data.get("writes")),
        reachable_if=_as_list(data.get("reachable_if")),
        checks=[_parse_check(c) for c in data.get("checks") or []],
        shared=bool(data.get("shared", False)),
        edit_chain=_as_list(data.get("edit_chain")),
    )


def _parse_children(data: Dict[str, Any]) -> ChildrenSpec:
    out_of_range = data.get("out_of_range")
    return ChildrenSpec(
        index_step=str(data["index_step"]),
        validate_after=data.get("validate_after"),
        required=bool(data.get("required", True)),
        allowed_age_categories=[
            AgeCategory(c) for c in data.get("allowed_age_categories", ["children", "youth"])
        ],
        out_of_range=OutOfRangeRule(
            step=str(out_of_range["step"]),
            child_scoped=bool(out_of_range.get("child_scoped", False)),
        ) if out_of_range else None,
        steps=[_parse_step(s) for s in data.get("steps") or []],
    )


def parse_descriptor(data: Dict[str, Any], source: str = "<memory>") -> FlowDescriptor:
    """
    Build a FlowDescriptor from a parsed YAML document.

    Raises:
        FlowDescriptorError: If the document is structurally invalid.
    """
    if not isinstance(data, dict):
        raise FlowDescriptorError(source, ["document is not a mapping"])
    try:
        key = FlowKey(
            Context(data["context"]),
            ApplicantType(data["applicant_type"]),
            Variant(data["variant"]),
        )
        flow = FlowDescriptor(
            key=key,
            entry_step=str(data["entry_step"]),
            first_step=str(data["first_step"]),
            review_step=str(data["review_step"]),
            confirmation_step=str(data["confirmation_step"]),
            steps=[_parse_step(s) for s in data.get("steps") or []],
            delegate_step=data.get("delegate_step"),
            guard_requires=_as_list(data.get("guard_requires")),
            reset_edit_mode_on_failure=bool(data.get("reset_edit_mode_on_failure", False)),
            children=_parse_children(data["children"]) if data.get("children") else None,
            source=source,
        )
    except (KeyError, ValueError, TypeError) as e:
        raise FlowDescriptorError(source, [f"{type(e).__name__}: {e}"]) from e

    errors = validate_descriptor(flow)
    if errors:
        raise FlowDescriptorError(source, errors)
    return flow


# =============================================================================
# STATIC VALIDATION
# =============================================================================

def validate_descriptor(flow: FlowDescriptor) -> List[str]:
    """Run all static checks on a descriptor and return the problems found."""
    if not flow.steps:
        return ["flow has no steps"]

    errors: List[str] = []
    errors.extend(_check_duplicates(flow.steps, "step"))
    errors.extend(_check_anchor_steps(flow))
    errors.extend(_check_steps(flow, flow.steps, child_scope=False))
    errors.extend(_check_children(flow))
    return errors


def _check_duplicates(steps: List[StepDescriptor], label: str) -> List[str]:
    seen = set()
    errors = []
    for step in steps:
        if step.id in seen:
            errors.append(f"duplicate {label} id '{step.id}'")
        seen.add(step.id)
    return errors


def _check_anchor_steps(flow: FlowDescriptor) -> List[str]:
    errors = []
    anchors = {
        "entry_step": flow.entry_step,
        "first_step": flow.first_step,
        "review_step": flow.review_step,
        "confirmation_step": flow.confirmation_step,
    }
    if flow.delegate_step:
        anchors["delegate_step"] = flow.delegate_step
    for name, step_id in anchors.items():
        if not flow.has_step(step_id):
            errors.append(f"{name} '{step_id}' is not a step of the flow")

    review = flow.step(flow.review_step)
    if review and review.kind != StepKind.REVIEW:
        errors.append(f"review_step '{flow.review_step}' must have kind 'review'")
    confirmation = flow.step(flow.confirmation_step)
    if confirmation and confirmation.kind != StepKind.CONFIRMATION:
        errors.append(f"confirmation_step '{flow.confirmation_step}' must have kind 'confirmation'")
    return errors


def _check_steps(flow: FlowDescriptor, steps: List[StepDescriptor], child_scope: bool) -> List[str]:
    errors = []
    for step in steps:
        for ref in step.reachable_if:
            if not is_known_predicate(ref):
                errors.append(f"[{step.id}] unknown predicate '{ref}' in reachable_if")
        if step.kind == StepKind.EXIT and step.checks:
            errors.append(f"[{step.id}] exit steps cannot carry checks")
        for check in step.checks:
            for ref in check.when:
                if not is_known_predicate(ref):
                    errors.append(f"[{step.id}] unknown predicate '{ref}' in check when")
            if check.kind != CheckKind.PRESENT and not is_known_predicate(check.target):
                errors.append(f"[{step.id}] unknown predicate '{check.target}' in {check.kind.value} check")
            if check.redirect and not _is_redirect_target(flow, check.redirect, child_scope):
                errors.append(f"[{step.id}] redirect target '{check.redirect}' not found")
        for step_id in step.edit_chain:
            if not _is_redirect_target(flow, step_id, child_scope):
                errors.append(f"[{step.id}] edit_chain step '{step_id}' not found")
    return errors


def _is_redirect_target(flow: FlowDescriptor, step_id: str, child_scope: bool) -> bool:
    if flow.has_step(step_id):
        return True
    return child_scope and flow.child_step(step_id) is not None


def _check_children(flow: FlowDescriptor) -> List[str]:
    children_steps = [s for s in flow.steps if s.kind == StepKind.CHILDREN]
    if flow.children is None:
        if children_steps:
            return ["children step declared without a children section"]
        return []

    errors = []
    spec = flow.children
    if not spec.steps:
        errors.append("children section has no steps")
    index = flow.step(spec.index_step)
    if index is None or index.kind != StepKind.CHILDREN:
        errors.append(f"children index_step '{spec.index_step}' must be a step with kind 'children'")
    if len(children_steps) > 1:
        errors.append("only one children step is allowed per flow")
    errors.extend(_check_duplicates(spec.steps, "child step"))
    errors.extend(_check_steps(flow, spec.steps, child_scope=True))
    if spec.validate_after and not flow.has_step(spec.validate_after):
        errors.append(f"children validate_after step '{spec.validate_after}' not found")
    rule = spec.out_of_range
    if rule:
        found = flow.child_step(rule.step) if rule.child_scoped else flow.step(rule.step)
        if found is None:
            errors.append(f"children out_of_range step '{rule.step}' not found")
    return errors


# =============================================================================
# LOADING
# =============================================================================

class FlowRegistry:
    """All loaded descriptors, keyed by flow, together with the settings they were loaded with."""

    def __init__(self, settings: WizardSettings, flows: Optional[Dict[FlowKey, FlowDescriptor]] = None):
        self.settings = settings
        self._flows: Dict[FlowKey, FlowDescriptor] = dict(flows or {})

    def register(self, flow: FlowDescriptor) -> None:
        if flow.key in self._flows:
            raise FlowDescriptorError(
                flow.source, [f"flow {flow.key} already defined in {self._flows[flow.key].source}"]
            )
        self._flows[flow.key] = flow

    def get(self, key: FlowKey) -> FlowDescriptor:
        try:
            return self._flows[key]
        except KeyError:
            raise UnknownFlowError(f"No flow descriptor for {key}") from None

    def find(self, key: Optional[FlowKey]) -> Optional[FlowDescriptor]:
        if key is None:
            return None
        return self._flows.get(key)

    def keys(self) -> List[FlowKey]:
        return list(self._flows)

    def __iter__(self) -> Iterator[FlowDescriptor]:
        return iter(self._flows.values())

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, key: object) -> bool:
        return key in self._flows


class FlowDescriptorLoader:
    """
    Loads flow descriptors from a directory of YAML files.

    Configuration is passed in explicitly; the loader never consults the
    environment.
    """

    def __init__(self, settings: WizardSettings, flows_dir: Optional[Path] = None):
        self.settings = settings
        if flows_dir is not None:
            self.flows_dir = Path(flows_dir)
        elif settings.flows_dir:
            self.flows_dir = Path(settings.flows_dir)
        else:
            self.flows_dir = FLOWS_DIR

    def load_file(self, path: Path) -> FlowDescriptor:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return parse_descriptor(data, source=path.name)

    def load_all(self) -> FlowRegistry:
        """
        Load every ``*.yaml`` descriptor in the flows directory.

        Raises:
            FlowDescriptorError: If any descriptor is invalid or duplicated.
        """
        registry = FlowRegistry(self.settings)
        paths = sorted(self.flows_dir.glob("*.yaml"))
        if not paths:
            logger.warning(f"No flow descriptors found in {self.flows_dir}")
        for path in paths:
            registry.register(self.load_file(path))
        logger.info(f"Loaded {len(registry)} flow descriptors from {self.flows_dir}")
        return registry
