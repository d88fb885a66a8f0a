"""
Missing-Data Detector

Finds the domains the coach knows too little about and turns each into a
ranked proactive suggestion ("scan your next meal", "log a session", ...).

Score (0-100) per missing domain:
    centrality  base weight of the domain, boosted when the user's objective
                or preferred disciplines make it central
  + staleness   hours since the domain was last refreshed, relative to
                GAP_STALE_AFTER_HOURS, capped
  + gap         how far completeness is from 100

`today` (daily by nature) and `perinatal` (only relevant once declared) are
never reported.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from coach_brain.core.clock import Clock, utc_now
from coach_brain.core.config import settings
from coach_brain.core.domains import Domain
from coach_brain.services.knowledge.models import UserKnowledge, serialize

logger = logging.getLogger(__name__)

CORE_PROFILE_FIELDS = ("age", "sex", "height_cm", "weight_kg", "objective", "activity_level")

EXCLUDED_DOMAINS = frozenset({Domain.TODAY, Domain.PERINATAL})

BASE_CENTRALITY: Dict[Domain, float] = {
    Domain.TRAINING: 30,
    Domain.NUTRITION: 25,
    Domain.BODY_SCAN: 20,
    Domain.EQUIPMENT: 15,
    Domain.ENERGY: 15,
    Domain.FASTING: 10,
    Domain.TEMPORAL: 5,
}

OBJECTIVE_DOMAINS: Dict[str, frozenset] = {
    "fat_loss": frozenset({Domain.NUTRITION, Domain.FASTING, Domain.BODY_SCAN}),
    "muscle_gain": frozenset({Domain.TRAINING, Domain.NUTRITION}),
    "recomp": frozenset({Domain.TRAINING, Domain.BODY_SCAN}),
}
DISCIPLINE_DOMAINS = frozenset({Domain.TRAINING, Domain.EQUIPMENT})

OBJECTIVE_BOOST = 20
DISCIPLINE_BOOST = 10
MAX_STALENESS = 20
GAP_WEIGHT = 0.3
HIGH_PRIORITY_SCORE = 70

# action, message, timing
SUGGESTION_TEMPLATES: Dict[Domain, tuple] = {
    Domain.TRAINING: (
        "log-training",
        "Log a training session so your workouts can be tailored to your real loads.",
        "after-activity",
    ),
    Domain.EQUIPMENT: (
        "scan-equipment",
        "Scan your training location so sessions only use equipment you have.",
        "now",
    ),
    Domain.NUTRITION: (
        "scan-meal",
        "Scan your next meal to unlock nutrition coaching.",
        "now",
    ),
    Domain.FASTING: (
        "start-fast",
        "Track a fasting window to get advice on your fasting rhythm.",
        "evening",
    ),
    Domain.BODY_SCAN: (
        "body-scan",
        "Do a body scan to follow your body composition over time.",
        "morning",
    ),
    Domain.ENERGY: (
        "connect-wearable",
        "Connect a wearable or log an activity to track recovery and fatigue.",
        "weekly",
    ),
    Domain.TEMPORAL: (
        "keep-training",
        "A few more sessions will reveal your best training times.",
        "weekly",
    ),
}


@dataclass
class ProactiveSuggestion:
    id: str
    domain: Domain
    action: str
    message: str
    priority_score: int
    reason: str
    timing: str  # now | after-activity | morning | evening | weekly
    completeness: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


@dataclass
class MissingDataReport:
    has_incomplete_profile: bool = False
    missing_profile_fields: List[str] = field(default_factory=list)
    missing_domains: List[Domain] = field(default_factory=list)
    suggestions: List[ProactiveSuggestion] = field(default_factory=list)
    priority: str = "low"  # high | medium | low

    @property
    def top_suggestion(self) -> Optional[ProactiveSuggestion]:
        return self.suggestions[0] if self.suggestions else None

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


class MissingDataDetector:
    def __init__(
        self,
        threshold: Optional[int] = None,
        stale_after_hours: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.threshold = threshold if threshold is not None else settings.GAP_COMPLETENESS_THRESHOLD
        self.stale_after_hours = (
            stale_after_hours if stale_after_hours is not None else settings.GAP_STALE_AFTER_HOURS
        )
        self.clock = clock or utc_now

    def detect(self, knowledge: UserKnowledge) -> MissingDataReport:
        missing_fields = [
            name for name in CORE_PROFILE_FIELDS
            if getattr(knowledge.profile, name) in (None, "")
        ]

        central = self._central_domains(knowledge)
        now = self.clock()
        suggestions = []
        for domain in Domain:
            if domain in EXCLUDED_DOMAINS:
                continue
            completeness = knowledge.completeness.get(domain, 0)
            if completeness >= self.threshold:
                continue
            suggestions.append(self._suggest(domain, completeness, central, knowledge.last_updated.get(domain), now))

        suggestions.sort(key=lambda s: (-s.priority_score, s.completeness))

        if missing_fields or (suggestions and suggestions[0].priority_score >= HIGH_PRIORITY_SCORE):
            priority = "high"
        elif suggestions:
            priority = "medium"
        else:
            priority = "low"

        report = MissingDataReport(
            has_incomplete_profile=len(missing_fields) > 0,
            missing_profile_fields=missing_fields,
            missing_domains=[s.domain for s in suggestions],
            suggestions=suggestions,
            priority=priority,
        )
        logger.debug(
            f"Gap report for {knowledge.user_id}: priority={priority}, "
            f"missing={[d.value for d in report.missing_domains]}"
        )
        return report

    def _central_domains(self, knowledge: UserKnowledge) -> Dict[Domain, float]:
        boosts: Dict[Domain, float] = {}
        objective = (knowledge.profile.objective or "").lower()
        for domain in OBJECTIVE_DOMAINS.get(objective, ()):
            boosts[domain] = boosts.get(domain, 0) + OBJECTIVE_BOOST
        if knowledge.profile.preferred_disciplines:
            for domain in DISCIPLINE_DOMAINS:
                boosts[domain] = boosts.get(domain, 0) + DISCIPLINE_BOOST
        return boosts

    def _staleness(self, last_updated: Optional[datetime], now: datetime) -> float:
        if last_updated is None:
            return MAX_STALENESS
        hours = max((now - last_updated).total_seconds() / 3600, 0)
        return min(hours / self.stale_after_hours, 1.0) * MAX_STALENESS

    def _suggest(
        self,
        domain: Domain,
        completeness: int,
        central: Dict[Domain, float],
        last_updated: Optional[datetime],
        now: datetime,
    ) -> ProactiveSuggestion:
        boost = central.get(domain, 0)
        score = (
            BASE_CENTRALITY.get(domain, 0)
            + boost
            + self._staleness(last_updated, now)
            + (100 - completeness) * GAP_WEIGHT
        )
        score = int(round(max(0, min(100, score))))

        action, message, timing = SUGGESTION_TEMPLATES[domain]
        reason = f"{domain.value} data is {completeness}% complete (threshold {self.threshold}%)"
        if boost:
            reason += ", central to the user's goals"

        return ProactiveSuggestion(
            id=f"{domain.value}-{action}",
            domain=domain,
            action=action,
            message=message,
            priority_score=score,
            reason=reason,
            timing=timing,
            completeness=completeness,
        )
