"""Step type registry."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List, Optional, Type

from ledgerly.services.workflows.steps import (
    BaseStep,
    CategorizeTransactionsStep,
    ConditionStep,
    DelayStep,
    MatchInvoicesStep,
    SendNotificationStep,
)

STEP_TYPES: Dict[str, Type[BaseStep]] = {
    "categorize_transactions": CategorizeTransactionsStep,
    "match_invoices": MatchInvoicesStep,
    "send_notification": SendNotificationStep,
    "notify": SendNotificationStep,
    "condition": ConditionStep,
    "delay": DelayStep,
}


def step_class(step_type: Optional[str]) -> Optional[Type[BaseStep]]:
    return STEP_TYPES.get(str(step_type or ""))


def is_valid_step_type(step_type: Optional[str]) -> bool:
    return step_class(step_type) is not None


def default_step_name(step_type: str) -> str:
    klass = step_class(step_type)
    return klass.name() if klass else step_type.replace("_", " ").capitalize()


def available_steps() -> List[Dict[str, Any]]:
    return [klass.metadata(step_type) for step_type, klass in STEP_TYPES.items()]


def steps_by_category() -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for info in available_steps():
        grouped[info["category"]].append(info)
    return dict(grouped)
