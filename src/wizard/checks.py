"""
Check Evaluation

Runs the checks attached to descriptor steps against a submission (or one
child of it). Shared by the validation gate, the children validator and the
step resolver.
"""

from typing import Any, Mapping, Optional

from wizard.descriptors import Check, CheckKind, StepDescriptor
from wizard.models import SHADOW_PREFIX, get_path, is_absent
from wizard.predicates import EvaluationContext, evaluate, evaluate_all


def is_reachable(step: StepDescriptor, ctx: EvaluationContext) -> bool:
    """Whether every reachability predicate of ``step`` holds."""
    return evaluate_all(step.reachable_if, ctx)


def check_passes(check: Check, ctx: EvaluationContext, data: Mapping[str, Any]) -> bool:
    """
    Evaluate one check.

    ``data`` is the record ``present`` checks read from: the submission's
    fields, or the child's fields when validating a child.
    """
    if not evaluate_all(check.when, ctx):
        return True
    if check.kind == CheckKind.PRESENT:
        return not is_absent(get_path(data, check.target))
    return evaluate(check.target, ctx)


def failing_check(step: StepDescriptor, ctx: EvaluationContext, data: Mapping[str, Any]) -> Optional[Check]:
    """Return the first check of ``step`` that fails, in declaration order."""
    for check in step.checks:
        if not check_passes(check, ctx, data):
            return check
    return None


def step_complete(step: StepDescriptor, ctx: EvaluationContext, data: Mapping[str, Any]) -> bool:
    """A reachable step is complete when all its checks pass."""
    return failing_check(step, ctx, data) is None


def canonical_fields(data: Mapping[str, Any]) -> dict:
    """Copy of ``data`` without edit-mode shadow keys."""
    return {k: v for k, v in data.items() if not k.startswith(SHADOW_PREFIX)}
