"""
Knowledge Module

Everything the coach knows about a user, assembled on demand:
1. Collectors read one bounded slice of data per domain
2. UserKnowledgeBase merges them into a cached UserKnowledge snapshot
3. MissingDataDetector finds the gaps worth asking about
4. PromptBuilder renders snapshot + live context into a system prompt

Design Principles:
- One failing domain never fails the whole load
- Snapshots are immutable; a refresh produces a new one
- Response style depends on the live session only
"""

from coach_brain.services.knowledge.aggregator import CollectorOutcome, UserKnowledgeBase
from coach_brain.services.knowledge.completeness import completeness_score
from coach_brain.services.knowledge.context import BrainContextBuilder
from coach_brain.services.knowledge.gaps import MissingDataDetector, MissingDataReport, ProactiveSuggestion
from coach_brain.services.knowledge.models import UserKnowledge, default_knowledge
from coach_brain.services.knowledge.profile import ProfileLoader
from coach_brain.services.knowledge.prompt import (
    ActivityState,
    AppActivityContext,
    BrainContext,
    PageContext,
    PromptBuilder,
    PromptEnrichment,
)
from coach_brain.services.knowledge.session import (
    ExerciseContext,
    ResponseStyle,
    SessionAwareness,
    SessionState,
    TrainingSessionContext,
    classify_session,
    resolve_response_style,
)

__all__ = [
    "ActivityState",
    "AppActivityContext",
    "BrainContext",
    "BrainContextBuilder",
    "CollectorOutcome",
    "ExerciseContext",
    "MissingDataDetector",
    "MissingDataReport",
    "PageContext",
    "ProactiveSuggestion",
    "ProfileLoader",
    "PromptBuilder",
    "PromptEnrichment",
    "ResponseStyle",
    "SessionAwareness",
    "SessionState",
    "TrainingSessionContext",
    "UserKnowledge",
    "UserKnowledgeBase",
    "classify_session",
    "completeness_score",
    "default_knowledge",
    "resolve_response_style",
]
