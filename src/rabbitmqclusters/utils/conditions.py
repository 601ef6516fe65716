"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(
    conditions: List[Dict[str, Any]], condition_type: str
) -> Optional[Dict[str, Any]]:
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_true(conditions: List[Dict[str, Any]], condition_type: str) -> bool:
    cond = find_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == "True"


def build_condition(
    existing: List[Dict[str, Any]],
    condition_type: str,
    status: bool,
    reason: str,
    message: str,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a condition record, keeping lastTransitionTime unless the status flips.

    Args:
        existing: Currently persisted conditions
        condition_type: Type of condition
        status: Boolean state of the condition
        reason: Machine-readable reason code
        message: Human-readable message
        now: Timestamp to use for a transition (defaults to the current UTC time)

    Returns:
        The condition as it should be persisted
    """
    status_str = "True" if status else "False"
    transition = now or utcnow()

    previous = find_condition(existing, condition_type)
    if previous is not None and previous.get("status") == status_str:
        transition = previous.get("lastTransitionTime", transition)

    return {
        "type": condition_type,
        "status": status_str,
        "reason": reason,
        "message": message,
        "lastTransitionTime": transition,
    }
