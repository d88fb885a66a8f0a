"""
Session awareness and response style.

The response style is a pure function of the live session: whether a
session is active, whether it carries a training session, and whether the
user is resting between sets. Nothing else (route, locale, page) feeds into
it and nothing is remembered between calls.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from coach_brain.services.knowledge.models import serialize


class SessionState(str, Enum):
    ACTIVE_EFFORT = "active-effort"
    ACTIVE_REST = "active-rest"
    IDLE = "idle"


@dataclass
class ExerciseContext:
    name: str
    reps: str = ""
    sets: int = 0
    rest: int = 0  # seconds
    variant: Optional[str] = None
    load: Optional[float] = None  # kg; None means bodyweight
    coach_tips: List[str] = field(default_factory=list)
    muscle_groups: List[str] = field(default_factory=list)


@dataclass
class TrainingSessionContext:
    session_id: str
    current_exercise_index: int = 0
    total_exercises: int = 0
    current_exercise: Optional[ExerciseContext] = None
    next_exercise: Optional[ExerciseContext] = None
    current_set: int = 1
    total_sets: int = 0
    is_resting: bool = False
    rest_time_remaining: int = 0  # seconds
    session_time_elapsed: int = 0  # seconds
    last_rpe: Optional[float] = None
    discipline: str = "force"


@dataclass
class SessionAwareness:
    is_active: bool = False
    session_type: Optional[str] = None  # training | nutrition | fasting | body-scan
    training_session: Optional[TrainingSessionContext] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


@dataclass(frozen=True)
class ResponseStyle:
    length: str  # ultra-short | short | medium | detailed
    tone: str  # motivational | technical | informative | conversational
    formality: str  # casual | professional
    emoji: bool

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


RESPONSE_STYLES: Dict[SessionState, ResponseStyle] = {
    SessionState.ACTIVE_EFFORT: ResponseStyle(length="ultra-short", tone="motivational", formality="casual", emoji=True),
    SessionState.ACTIVE_REST: ResponseStyle(length="short", tone="motivational", formality="casual", emoji=True),
    SessionState.IDLE: ResponseStyle(length="medium", tone="conversational", formality="casual", emoji=False),
}


def classify_session(session: Optional[SessionAwareness]) -> SessionState:
    """
    ACTIVE_EFFORT / ACTIVE_REST need both an active session and its
    training details. An active session without training details (a fast,
    a meal scan) is IDLE as far as response style is concerned.
    """
    if session is None or not session.is_active or session.training_session is None:
        return SessionState.IDLE
    if session.training_session.is_resting:
        return SessionState.ACTIVE_REST
    return SessionState.ACTIVE_EFFORT


def resolve_response_style(session: Optional[SessionAwareness]) -> ResponseStyle:
    return RESPONSE_STYLES[classify_session(session)]
