"""
Feature Flag Evaluation
=======================

Deterministic per-context evaluation of a stored flag. The rollout bucket is
a 32-bit string hash so that a given user lands in the same bucket as in the
browser-side flag client.
"""

from typing import Any, Iterable, Optional

from hrms.core.models import Environment, FeatureFlag
from hrms.core.schemas import FlagCondition, FlagEvaluationContext


def rollout_hash(key: str) -> int:
    """`hash = (hash << 5) - hash + unit` over UTF-16 code units, wrapped to int32."""
    data = key.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        h = (h << 5) - h + int.from_bytes(data[i:i + 2], "little")
        h = (h + 2**31) % 2**32 - 2**31
    return abs(h)


def rollout_bucket(flag_name: str, context: FlagEvaluationContext) -> int:
    subject = context.user_id or context.company_id or "anonymous"
    return rollout_hash(f"{flag_name}:{subject}") % 100


def _match(operator: str, candidates: list[str], values: list[str]) -> bool:
    if operator == "in":
        return any(c in values for c in candidates)
    if operator == "not_in":
        return not any(c in values for c in candidates)
    if operator == "equals":
        return len(candidates) == 1 and candidates[0] in values
    if operator == "not_equals":
        return len(candidates) != 1 or candidates[0] not in values
    if operator == "contains":
        return any(v in c for c in candidates for v in values)
    return False


def condition_holds(condition: FlagCondition, context: FlagEvaluationContext) -> bool:
    if condition.type == "custom":
        return True
    if condition.type == "user_group":
        # An empty group list is still evaluated, so not_in holds for it
        return _match(condition.operator, list(context.user_groups), condition.values)
    value = context.user_id if condition.type == "user_id" else context.company_id
    if not value:
        return False
    return _match(condition.operator, [value], condition.values)


def _conditions(raw: Optional[Iterable[Any]]) -> list[FlagCondition]:
    return [c if isinstance(c, FlagCondition) else FlagCondition.model_validate(c) for c in raw or []]


def evaluate_flag(flag: FeatureFlag, context: FlagEvaluationContext) -> bool:
    """
    Disabled flags and flags scoped to another environment are off. Below 100%
    rollout the context must hash into the enabled bucket, and every condition
    must hold.
    """
    if not flag.enabled:
        return False
    if context.environment is not None and Environment(context.environment) != flag.environment:
        return False
    if flag.rollout_percentage < 100 and rollout_bucket(flag.name, context) >= flag.rollout_percentage:
        return False
    return all(condition_holds(c, context) for c in _conditions(flag.conditions))
