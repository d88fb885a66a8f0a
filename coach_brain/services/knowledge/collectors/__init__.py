"""
Knowledge collectors, one per domain.

COLLECTOR_CLASSES is the single registry the aggregator fans out over.
"""

from typing import Dict, Optional, Type

from coach_brain.core.clock import Clock
from coach_brain.core.database import DataStore
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.collectors.base import BaseCollector
from coach_brain.services.knowledge.collectors.body_scan import BodyScanCollector
from coach_brain.services.knowledge.collectors.energy import EnergyCollector
from coach_brain.services.knowledge.collectors.equipment import EquipmentCollector
from coach_brain.services.knowledge.collectors.fasting import FastingCollector
from coach_brain.services.knowledge.collectors.nutrition import NutritionCollector
from coach_brain.services.knowledge.collectors.perinatal import PerinatalCollector
from coach_brain.services.knowledge.collectors.temporal import TemporalCollector
from coach_brain.services.knowledge.collectors.today import TodayCollector
from coach_brain.services.knowledge.collectors.training import TrainingCollector

COLLECTOR_CLASSES: Dict[Domain, Type[BaseCollector]] = {
    cls.domain: cls
    for cls in (
        TrainingCollector,
        EquipmentCollector,
        NutritionCollector,
        FastingCollector,
        BodyScanCollector,
        EnergyCollector,
        TemporalCollector,
        TodayCollector,
        PerinatalCollector,
    )
}


def build_collectors(store: DataStore, clock: Optional[Clock] = None) -> Dict[Domain, BaseCollector]:
    """Instantiate one collector per domain, sharing the store and clock."""
    return {domain: cls(store, clock=clock) for domain, cls in COLLECTOR_CLASSES.items()}


__all__ = [
    "BaseCollector",
    "COLLECTOR_CLASSES",
    "build_collectors",
    "BodyScanCollector",
    "EnergyCollector",
    "EquipmentCollector",
    "FastingCollector",
    "NutritionCollector",
    "PerinatalCollector",
    "TemporalCollector",
    "TodayCollector",
    "TrainingCollector",
]
