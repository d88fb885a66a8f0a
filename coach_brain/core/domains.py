"""
Knowledge domains ("forges").

Each domain is one disjoint slice of user data with its own collector,
completeness score, last-updated stamp and cache TTL.
"""
from enum import Enum
from typing import Any

from coach_brain.core.exceptions import UnknownDomainError


class Domain(str, Enum):
    TRAINING = "training"
    EQUIPMENT = "equipment"
    NUTRITION = "nutrition"
    FASTING = "fasting"
    BODY_SCAN = "body-scan"
    ENERGY = "energy"
    TEMPORAL = "temporal"
    TODAY = "today"
    PERINATAL = "perinatal"

    @classmethod
    def parse(cls, value: Any) -> "Domain":
        """Accept a Domain, its value or its name ("body_scan", "BODY-SCAN", ...)."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise UnknownDomainError(value)
        normalized = value.strip().lower().replace("_", "-")
        normalized = _ALIASES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        raise UnknownDomainError(value)

    def __str__(self) -> str:
        return self.value


_ALIASES = {
    "body-composition": "body-scan",
    "bodyscan": "body-scan",
    "breastfeeding": "perinatal",
    "perinatal-nutrition": "perinatal",
}
