"""
Base class for knowledge collectors.

A collector reads one bounded slice of data for one user (lookback window +
row cap) through the DataStore and normalizes it into a domain knowledge
value. Collectors are independent of each other and read-only.

Failure contract:
- The primary query failing, or a malformed row, raises. The collector logs
  and re-raises; the aggregator is the only place that catches and defaults.
- Secondary enrichment queries (preferences, goals, ...) degrade to an empty
  value with a warning, so a missing side table never costs the whole domain.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from coach_brain.core.clock import Clock, utc_now
from coach_brain.core.database import DataStore
from coach_brain.core.domains import Domain
from coach_brain.core.logging import log_context
from coach_brain.services.knowledge.models import KnowledgeModel, default_knowledge

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseCollector(ABC):
    """Collects one domain's knowledge for a user."""

    domain: Domain

    def __init__(self, store: DataStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now

    async def collect(self, user_id: str) -> KnowledgeModel:
        logger.debug(f"Collecting {self.domain.value} data for {user_id}")
        try:
            return await self._collect(user_id)
        except Exception as e:
            logger.warning(
                f"Failed to collect {self.domain.value} data for {user_id}: {e}",
                extra=log_context(user_id, self.domain),
            )
            raise

    @abstractmethod
    async def _collect(self, user_id: str) -> KnowledgeModel:
        ...

    def default(self) -> KnowledgeModel:
        return default_knowledge(self.domain)

    def since(self, days: int) -> datetime:
        return self.clock() - timedelta(days=days)

    async def _optional(self, query: Awaitable[T], fallback: T, what: str) -> T:
        """Await a secondary query, falling back to `fallback` on failure."""
        try:
            return await query
        except Exception as e:
            logger.warning(f"{self.domain.value}: {what} unavailable, continuing without it: {e}")
            return fallback


# ---------------------------------------------------------------------------
# Row coercion helpers (BaaS rows carry JSON columns as dicts or strings)
# ---------------------------------------------------------------------------

def as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        return parsed if isinstance(parsed, list) else [parsed]
    return []


def to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    number = to_float(value)
    return int(number) if number is not None else default
