"""
Brain context assembly.

Ties the loaded snapshot to what the user is doing right now. The result is
consumed by PromptBuilder and thrown away.
"""

from typing import Optional

from coach_brain.core.cache import knowledge_cache_key
from coach_brain.core.clock import Clock, utc_now
from coach_brain.services.knowledge.aggregator import UserKnowledgeBase
from coach_brain.services.knowledge.gaps import MissingDataDetector
from coach_brain.services.knowledge.prompt import AppActivityContext, BrainContext, PromptBuilder
from coach_brain.services.knowledge.session import SessionAwareness


class BrainContextBuilder:
    def __init__(
        self,
        knowledge_base: UserKnowledgeBase,
        detector: Optional[MissingDataDetector] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        clock: Optional[Clock] = None,
    ):
        self.knowledge_base = knowledge_base
        self.clock = clock or utc_now
        self.detector = detector or MissingDataDetector(clock=self.clock)
        self.prompt_builder = prompt_builder or PromptBuilder()

    def build(
        self,
        app: Optional[AppActivityContext] = None,
        session: Optional[SessionAwareness] = None,
    ) -> BrainContext:
        """Raises KnowledgeNotLoadedError if no snapshot has been loaded."""
        user = self.knowledge_base.get_user_knowledge()
        return BrainContext(
            user=user,
            app=app or AppActivityContext(),
            session=session or SessionAwareness(),
            missing_data=self.detector.detect(user),
            today_data=self.knowledge_base.get_today_data(),
            cache_key=str(knowledge_cache_key(user.user_id)),
            timestamp=self.clock(),
        )

    async def build_system_prompt(
        self,
        user_id: str,
        base_prompt: str,
        app: Optional[AppActivityContext] = None,
        session: Optional[SessionAwareness] = None,
    ) -> str:
        """Load (or reuse) the user's knowledge, then render the system prompt."""
        await self.knowledge_base.load_user_knowledge(user_id)
        context = self.build(app, session)
        return self.prompt_builder.build_system_prompt(context, base_prompt)
