"""Turn pipeline mixin: actions, suggestions and the interstitial states.

Split from engine.py for maintainability. Every method here runs under
the story's lock, so turns on one story never interleave.
"""

import logging

from ..enums import ResourcePool, StoryStatus
from ..errors import StoryActionRejected
from ..generation.schemas import ChapterBeat, ChapterSummaryRequest
from .rotation import TurnRotation
from .story import Character, HistoryEntry, Story
from .turn import TurnResult

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 400
CHAPTER_LENGTH = 10
SUGGESTION_COST = 1


class TurnPipelineMixin:
    """The main ``submit_action`` pipeline.

    Relies on instance attributes set by ``StoryEngine.__init__``.
    """

    def _acting_character(self, story: Story, character_id: str | None) -> Character:
        """Validate that someone may act now. Raises before any mutation."""
        if story.story_status != StoryStatus.PLAYING:
            raise StoryActionRejected(f"The story is {story.story_status.value}; actions are not accepted.")
        if story.is_coop:
            seat = story.get_participant(self.account_id)
            if seat is None:
                raise StoryActionRejected("You are not playing in this story.")
            if character_id is not None and character_id != seat.character_id:
                raise StoryActionRejected("You can only act as your own character.")
            character_id = seat.character_id
        elif character_id is None:
            character_id = story.active_character_id
        character = story.get_character(character_id)
        if character is None:
            raise StoryActionRejected("Select a character before acting.")
        if not TurnRotation(story).may_act(character.id):
            raise StoryActionRejected("It is not your turn.")
        return character

    async def submit_action(
        self,
        story_id: str,
        action: str,
        character_id: str | None = None,
    ) -> TurnResult:
        """Run one turn.

        Args:
            story_id: Story to act in
            action: Free-text player action
            character_id: Acting character (in co-op always the caller's own
                character, otherwise defaults to the active character)

        Returns:
            TurnResult with the committed story and what happened
        """
        result = await self._play_turn(story_id, action, character_id)
        await self._pay_reward(result)
        return result

    async def _play_turn(self, story_id: str, action: str, character_id: str | None) -> TurnResult:
        """Everything up to and including the story commit."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            action = (action or "").strip()
            if not action:
                raise StoryActionRejected("Describe what your character does.")
            character = self._acting_character(story, character_id)

            if len(story.story_history) >= MAX_HISTORY_ENTRIES:
                return await self._end_story(story, "history cap reached")

            await self.pools.load()
            plan = self.pools.plan
            strategy = self.strategies[story.mode]
            turn_number = len(story.story_history) + 1
            logger.info(f"Turn {turn_number} on {story.id} ({strategy.mode}): {character.name}")

            txn = self._transaction(story, f"Turn {turn_number}")
            with txn:
                effects = await strategy.play(txn, character.id, action, self.services, plan)
                working = txn.working
                acted = working.get_character(character.id)

                # 6. History
                entry = HistoryEntry(
                    character_id=acted.id,
                    character_name=acted.name,
                    choice=action,
                    outcome_description=effects.outcome,
                    outcome_npc_name=effects.npc_name,
                    visual_url=working.current_scene.url if working.current_scene else "",
                    timestamp=self.clock(),
                    from_location_name=story.location_name,
                    to_location_name=working.location_name,
                    relationship_changes=effects.relationship_changes,
                )
                txn.append("story_history", entry, reason="turn log")

                # 7. Rotation
                if working.is_coop:
                    TurnRotation(working).advance()
                    txn.touch("turn_character_id", reason="rotation")

                # 8. Branch state
                status = StoryStatus.PLAYING
                summary = None
                if effects.story_ended:
                    status = StoryStatus.ENDED
                elif effects.relationship_event is not None:
                    status = StoryStatus.RELATIONSHIP_EVENT
                    txn.set("last_relationship_event", effects.relationship_event, reason="relationship event")
                elif len(working.story_history) % CHAPTER_LENGTH == 0:
                    summary = await self._summarize_chapter(working)
                    txn.set("last_chapter_summary", summary, reason="chapter end")
                    status = StoryStatus.CHAPTER_END
                txn.set("story_status", status, reason="turn outcome")
                txn.set("last_played_timestamp", self.clock())

                # Co-op turns only land if nobody else took this turn first
                expect = {"turnCharacterId": story.turn_character_id} if story.is_coop else None
                committed = await txn.commit(expect=expect)

        resolution = effects.objectives
        logger.info(f"Turn {turn_number} on {story_id} -> {status}")
        return TurnResult(
            story=committed,
            status=status,
            entry=entry,
            levelled_up=effects.levelled_up,
            completed_objective=resolution.completed if resolution else None,
            created_objective=resolution.created if resolution else None,
            reward=resolution.reward if resolution else 0,
            reward_withheld=resolution.reward_withheld if resolution else False,
            relationship_event=effects.relationship_event,
            chapter_summary=summary,
            next_character_id=committed.turn_character_id,
            suggested_next_character=effects.next_character_name,
        )

    async def _pay_reward(self, result: TurnResult) -> None:
        if result.reward > 0:
            await self.pools.credit(ResourcePool.TOKENS, result.reward)

    async def _summarize_chapter(self, story: Story) -> str:
        beats = [
            ChapterBeat(
                character_name=h.character_name,
                choice=h.choice,
                outcome_description=h.outcome_description,
            )
            for h in story.story_history[-CHAPTER_LENGTH:]
        ]
        return await self.services.generation.summarize_chapter(
            ChapterSummaryRequest(genre=story.genre, plot=story.plot, last_choices=beats)
        )

    async def _end_story(self, story: Story, reason: str) -> TurnResult:
        txn = self._transaction(story, f"End story: {reason}")
        with txn:
            txn.set("story_status", StoryStatus.ENDED, reason=reason)
            committed = await txn.commit()
        logger.info(f"Story {story.id} ended: {reason}")
        return TurnResult(story=committed, status=StoryStatus.ENDED)

    async def use_suggestion(
        self,
        story_id: str,
        suggestion: str,
        character_id: str | None = None,
    ) -> TurnResult:
        """Play a suggested action. Costs a token; refunded if the turn fails."""
        story = self._require_story(story_id)
        self._acting_character(story, character_id)
        if len(story.story_history) >= MAX_HISTORY_ENTRIES:
            return await self.submit_action(story_id, suggestion, character_id)

        if not await self.pools.consume(ResourcePool.TOKENS, SUGGESTION_COST):
            raise StoryActionRejected("Not enough tokens to use a suggestion.")
        try:
            result = await self._play_turn(story_id, suggestion, character_id)
        except Exception:
            await self.pools.credit(ResourcePool.TOKENS, SUGGESTION_COST)
            raise
        # The turn is committed from here on; a failed reward keeps the token spent
        await self._pay_reward(result)
        return result

    async def continue_to_next_chapter(self, story_id: str) -> Story:
        """Leave the chapter-end interstitial. Costs one bookmark."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.story_status != StoryStatus.CHAPTER_END:
                raise StoryActionRejected("There is no finished chapter to continue from.")
            if not await self.pools.consume(ResourcePool.BOOKMARKS, 1):
                raise StoryActionRejected(
                    "You need a bookmark to start the next chapter. Bookmarks regenerate hourly."
                )

            txn = self._transaction(story, "Next chapter")
            try:
                with txn:
                    txn.set("story_status", StoryStatus.PLAYING, reason="next chapter")
                    txn.set("last_chapter_summary", None)
                    committed = await txn.commit()
            except Exception:
                await self.pools.credit(ResourcePool.BOOKMARKS, 1)
                raise

        await self.pools.record_chapter_read()
        return committed

    async def acknowledge_relationship_event(self, story_id: str) -> Story:
        """Dismiss the relationship interstitial and resume play."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.story_status != StoryStatus.RELATIONSHIP_EVENT:
                raise StoryActionRejected("There is no relationship event to acknowledge.")
            txn = self._transaction(story, "Acknowledge relationship event")
            with txn:
                txn.set("story_status", StoryStatus.PLAYING, reason="event acknowledged")
                txn.set("last_relationship_event", None)
                return await txn.commit()
