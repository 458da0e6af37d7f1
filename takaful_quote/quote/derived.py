"""Derived values for the step-2 input buffer.

These run synchronously right after the mutation that triggers them, so the
buffer never holds a stale end date or a model that does not belong to the
chosen make.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from takaful_quote.integrations.contracts.interfaces import VehicleDataClient


def policy_end_date(start: date) -> date:
    """One year of cover: start + 1 year - 1 day. A 29 Feb start ends on 28 Feb."""
    try:
        anniversary = start.replace(year=start.year + 1)
    except ValueError:
        anniversary = date(start.year + 1, 3, 1)
    return anniversary - timedelta(days=1)


def derive_motor_values(buffer: Dict[str, Any], changed: Iterable[str]) -> Dict[str, Any]:
    """Updates implied by the fields that just changed in the motor buffer."""
    changed = set(changed)
    updates: Dict[str, Any] = {}

    if "start_date" in changed:
        raw = buffer.get("start_date")
        start = _as_date(raw)
        updates["policy_end_date"] = policy_end_date(start).isoformat() if start else None

    if "make" in changed and "model" not in changed:
        # A new make invalidates the chosen model
        updates["model"] = ""
    return updates


async def models_for_make(client: VehicleDataClient, make: Optional[str]) -> List[str]:
    if not make or not make.strip():
        return []
    return await client.get_models_for_make(make.strip())


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None
