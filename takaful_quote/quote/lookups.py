"""Vehicle lookup: motor data first, then the traffic registry.

Results are cached per plate for the session. The cache is cleared whenever
the subscriber draft prompt is answered so step 2 re-fetches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from takaful_quote.integrations.contracts.interfaces import RegistryClient, VehicleDataClient
from takaful_quote.quote.derived import policy_end_date
from takaful_quote.quote.errors import LookupFailure

logger = logging.getLogger(__name__)

REGISTRY_UNAVAILABLE_NOTICE = "Registry data unavailable. Enter the policy dates and vehicle value manually."


@dataclass
class VehicleLookupResult:
    plate_number: str
    vehicle: Dict[str, Any]
    registration_month: Optional[int] = None
    registry_available: bool = False
    notices: List[str] = field(default_factory=list)

    def buffer_updates(self) -> Dict[str, Any]:
        """Values to copy into the motor input buffer (empty values skipped)."""
        return {k: v for k, v in self.vehicle.items() if v not in (None, "")}


class VehicleLookupService:
    def __init__(self, vehicle_client: VehicleDataClient, registry_client: RegistryClient) -> None:
        self.vehicle_client = vehicle_client
        self.registry_client = registry_client
        self._cache: Dict[str, VehicleLookupResult] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def cached(self, plate_number: str) -> Optional[VehicleLookupResult]:
        return self._cache.get(_plate_key(plate_number))

    async def lookup(self, plate_number: str, *, use_cache: bool = True, today: Optional[date] = None) -> VehicleLookupResult:
        key = _plate_key(plate_number)
        if not key:
            raise LookupFailure("Enter a plate number to look up the vehicle.")
        if use_cache and key in self._cache:
            return self._cache[key]

        motor = await self.vehicle_client.get_motor_data(key)
        if not motor.success or motor.data is None:
            logger.warning("Motor data lookup failed for %s: %s", key, motor.error)
            raise LookupFailure(
                motor.error or "Vehicle details not found. You can enter them manually.",
                details={"plate_number": key},
            )

        data = motor.data
        vehicle: Dict[str, Any] = {
            "plate_number": data.plate_number or key,
            "chassis_number": data.chassis_number,
            "make": data.make,
            "model": data.model,
            "year": data.year,
            "body_type": data.body_type,
            "engine_size": data.engine_size,
        }
        result = VehicleLookupResult(plate_number=key, vehicle=vehicle, registration_month=data.registration_month)

        registry = await self.registry_client.get_vehicle_details(key, data.chassis_number)
        if registry.success and registry.data is not None:
            start = registry.data.policy_start_date or (today or date.today()).isoformat()
            end = registry.data.policy_end_date or _end_for(start)
            vehicle["start_date"] = start
            vehicle["policy_end_date"] = end
            if registry.data.vehicle_value:
                vehicle["value"] = registry.data.vehicle_value
            if registry.data.registration_month and not result.registration_month:
                result.registration_month = registry.data.registration_month
            result.registry_available = True
        else:
            logger.warning("Registry lookup failed for %s: %s", key, registry.error)
            result.notices.append(REGISTRY_UNAVAILABLE_NOTICE)

        self._cache[key] = result
        return result


def _plate_key(plate_number: Optional[str]) -> str:
    return (plate_number or "").strip().upper()


def _end_for(start: str) -> Optional[str]:
    try:
        return policy_end_date(date.fromisoformat(start[:10])).isoformat()
    except ValueError:
        return None
