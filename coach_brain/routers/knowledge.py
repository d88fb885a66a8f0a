"""
Knowledge API Router

HTTP surface over the knowledge engine:
- Load a user's knowledge snapshot (cached)
- Refresh a single domain after the user changed data
- Gap report with proactive suggestions
- Enriched system prompt for the coach
- Cache stats and event-driven invalidation

The shared CacheManager, SingleFlight and DataStore live on app.state.
A UserKnowledgeBase is cheap and built per request on top of them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from coach_brain.core.cache import CacheManager
from coach_brain.core.domains import Domain
from coach_brain.core.exceptions import (
    CollectorError,
    DataStoreError,
    NotFoundError,
    ProfileLoadError,
    ServiceUnavailableError,
    UnknownDomainError,
)
from coach_brain.services.knowledge.aggregator import UserKnowledgeBase
from coach_brain.services.knowledge.context import BrainContextBuilder
from coach_brain.services.knowledge.gaps import MissingDataDetector
from coach_brain.services.knowledge.models import UserKnowledge
from coach_brain.services.knowledge.prompt import ActivityState, AppActivityContext, PageContext
from coach_brain.services.knowledge.session import (
    ExerciseContext,
    SessionAwareness,
    TrainingSessionContext,
    classify_session,
    resolve_response_style,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/knowledge", tags=["knowledge"])


# --- Dependencies ---

def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache


def get_knowledge_base(request: Request) -> UserKnowledgeBase:
    state = request.app.state
    return UserKnowledgeBase(
        store=state.store,
        cache=state.cache,
        single_flight=state.single_flight,
    )


# --- Request Models ---

class ExerciseIn(BaseModel):
    name: str
    reps: str = ""
    sets: int = 0
    rest: int = 0
    variant: Optional[str] = None
    load: Optional[float] = None
    coach_tips: List[str] = Field(default_factory=list)
    muscle_groups: List[str] = Field(default_factory=list)

    def to_context(self) -> ExerciseContext:
        return ExerciseContext(**self.model_dump())


class TrainingSessionIn(BaseModel):
    session_id: str
    current_exercise_index: int = 0
    total_exercises: int = 0
    current_exercise: Optional[ExerciseIn] = None
    next_exercise: Optional[ExerciseIn] = None
    current_set: int = 1
    total_sets: int = 0
    is_resting: bool = False
    rest_time_remaining: int = 0
    session_time_elapsed: int = 0
    last_rpe: Optional[float] = None
    discipline: str = "force"

    def to_context(self) -> TrainingSessionContext:
        data = self.model_dump(exclude={"current_exercise", "next_exercise"})
        return TrainingSessionContext(
            current_exercise=self.current_exercise.to_context() if self.current_exercise else None,
            next_exercise=self.next_exercise.to_context() if self.next_exercise else None,
            **data,
        )


class SessionIn(BaseModel):
    is_active: bool = False
    session_type: Optional[str] = None
    training_session: Optional[TrainingSessionIn] = None
    timestamp: Optional[datetime] = None

    def to_context(self) -> SessionAwareness:
        return SessionAwareness(
            is_active=self.is_active,
            session_type=self.session_type,
            training_session=self.training_session.to_context() if self.training_session else None,
            timestamp=self.timestamp,
        )


class PageIn(BaseModel):
    type: str = "other"
    sub_context: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class AppContextIn(BaseModel):
    current_route: str = "/"
    previous_route: Optional[str] = None
    page_context: PageIn = Field(default_factory=PageIn)
    activity_state: ActivityState = ActivityState.IDLE
    locale: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_context(self) -> AppActivityContext:
        return AppActivityContext(
            current_route=self.current_route,
            previous_route=self.previous_route,
            page_context=PageContext(**self.page_context.model_dump()),
            activity_state=self.activity_state,
            locale=self.locale,
            timestamp=self.timestamp,
        )


class PromptRequest(BaseModel):
    base_prompt: str
    app: Optional[AppContextIn] = None
    session: Optional[SessionIn] = None


# --- Response Models ---

class KnowledgeResponse(BaseModel):
    user_id: str
    loaded_at: str
    completeness: Dict[str, int]
    last_updated: Dict[str, str]
    knowledge: Dict[str, Any]


class PromptResponse(BaseModel):
    user_id: str
    system_prompt: str
    session_state: str
    response_style: Dict[str, Any]


class CacheStatsResponse(BaseModel):
    total: int
    fresh: int
    expired: int
    healthy: bool


class CacheEventResponse(BaseModel):
    event: str
    invalidated: int


# --- Helpers ---

def _knowledge_response(knowledge: UserKnowledge) -> KnowledgeResponse:
    return KnowledgeResponse(
        user_id=knowledge.user_id,
        loaded_at=knowledge.loaded_at.isoformat(),
        completeness={d.value: s for d, s in knowledge.completeness.items()},
        last_updated={d.value: t.isoformat() for d, t in knowledge.last_updated.items()},
        knowledge=knowledge.to_dict(),
    )


async def _load(kb: UserKnowledgeBase, user_id: str) -> UserKnowledge:
    try:
        return await kb.load_user_knowledge(user_id)
    except (ProfileLoadError, DataStoreError) as e:
        logger.error(f"Knowledge load failed for {user_id}: {e}")
        raise ServiceUnavailableError("User profile unavailable")


# --- Endpoints ---

@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(cache: CacheManager = Depends(get_cache)):
    stats = cache.get_stats()
    return CacheStatsResponse(**stats.to_dict(), healthy=cache.is_healthy())


@router.post("/cache/events/{event_name}", response_model=CacheEventResponse)
async def cache_event(event_name: str, cache: CacheManager = Depends(get_cache)):
    """Invalidate every domain whose data depends on `event_name` (an upstream table)."""
    invalidated = cache.handle_event(event_name)
    return CacheEventResponse(event=event_name, invalidated=invalidated)


@router.get("/{user_id}", response_model=KnowledgeResponse)
async def get_knowledge(user_id: str, kb: UserKnowledgeBase = Depends(get_knowledge_base)):
    knowledge = await _load(kb, user_id)
    return _knowledge_response(knowledge)


@router.post("/{user_id}/refresh/{domain}", response_model=KnowledgeResponse)
async def refresh_domain(user_id: str, domain: str, kb: UserKnowledgeBase = Depends(get_knowledge_base)):
    """Re-collect one domain. Unknown domain -> 404; collector failure -> 503."""
    try:
        parsed = Domain.parse(domain)
    except UnknownDomainError:
        raise NotFoundError("Domain", domain)

    await _load(kb, user_id)
    try:
        knowledge = await kb.refresh_forge(user_id, parsed)
    except CollectorError as e:
        logger.warning(f"Refresh of {parsed.value} failed for {user_id}: {e}")
        raise ServiceUnavailableError(f"Could not refresh {parsed.value} data")
    return _knowledge_response(knowledge)


@router.get("/{user_id}/gaps")
async def get_gaps(user_id: str, kb: UserKnowledgeBase = Depends(get_knowledge_base)):
    knowledge = await _load(kb, user_id)
    return MissingDataDetector().detect(knowledge).to_dict()


@router.post("/{user_id}/prompt", response_model=PromptResponse)
async def build_prompt(
    user_id: str,
    body: PromptRequest,
    kb: UserKnowledgeBase = Depends(get_knowledge_base),
):
    await _load(kb, user_id)
    session = body.session.to_context() if body.session else SessionAwareness()
    app_context = body.app.to_context() if body.app else AppActivityContext()

    builder = BrainContextBuilder(kb)
    context = builder.build(app_context, session)
    prompt = builder.prompt_builder.build_system_prompt(context, body.base_prompt)

    return PromptResponse(
        user_id=user_id,
        system_prompt=prompt,
        session_state=classify_session(session).value,
        response_style=resolve_response_style(session).to_dict(),
    )
