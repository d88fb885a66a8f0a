"""
Equipment Data Collector

Training locations with the equipment detected at each, plus the union of
everything available to the user.
"""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

from coach_brain.core.clock import parse_timestamp
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector, as_list
from coach_brain.services.knowledge.models import EquipmentKnowledge, TrainingLocation


class EquipmentCollector(BaseCollector):
    domain = Domain.EQUIPMENT

    async def _collect(self, user_id: str) -> EquipmentKnowledge:
        location_rows, detection_rows = await asyncio.gather(
            self.store.fetch_rows(
                "training_locations",
                user_id,
                order_by="created_at",
                limit=settings.EQUIPMENT_LOCATION_LIMIT,
            ),
            self._optional(
                self.store.fetch_rows(
                    "training_location_equipment_detections",
                    user_id,
                    order_by="created_at",
                    limit=settings.EQUIPMENT_LOCATION_LIMIT * 30,
                ),
                [],
                "equipment detections",
            ),
        )

        detected: Dict[str, List[str]] = defaultdict(list)
        for row in detection_rows:
            name = row.get("equipment_name")
            if name:
                detected[str(row["location_id"])].append(name)

        locations = [self._location(row, detected.get(str(row["id"]), [])) for row in location_rows]

        available = sorted({item for location in locations for item in location.equipment})
        default = next((loc for loc in locations if loc.is_default), None)
        if default is None and locations:
            default = locations[0]

        last_scan: Optional[Any] = None
        if detection_rows:
            last_scan = parse_timestamp(detection_rows[0].get("created_at"))

        return EquipmentKnowledge(
            locations=locations,
            available_equipment=available,
            default_location_id=default.id if default else None,
            last_scan_date=last_scan,
            has_data=len(locations) > 0,
        )

    def _location(self, row: Dict[str, Any], detected: List[str]) -> TrainingLocation:
        equipment = [str(item) for item in as_list(row.get("equipment")) if item]
        for item in detected:
            if item not in equipment:
                equipment.append(item)
        return TrainingLocation(
            id=str(row["id"]),
            name=row.get("name") or "Location",
            type=row.get("type") or "other",
            equipment=equipment,
            is_default=bool(row.get("is_default")),
        )
