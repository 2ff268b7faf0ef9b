"""Cast mixin: characters, co-op participants, scenes and skills.

Split from engine.py for maintainability. Token-priced operations debit
first and refund if the story write fails.
"""

import logging

from ..enums import ResourcePool, StoryStatus
from ..errors import StoryActionRejected
from .economy import learn_skill, link_new_character, prune_character
from .rotation import TurnRotation
from .story import Character, DefaultStats, HistoryEntry, Participant, Scene, Story

logger = logging.getLogger(__name__)

# Shop prices, in tokens
RECRUIT_PLAYABLE_COST = 20
RECRUIT_COMPANION_COST = 15
DISCOVER_SCENE_COST = 15
REFILL_BOOKMARKS_COST = 10

SYSTEM_CHARACTER_ID = "system"


def snapshot_defaults(character: Character) -> None:
    """Record the character's current vitals as what restart restores."""
    character.default_stats = DefaultStats(
        health=character.health,
        money=character.money,
        happiness=character.happiness,
        items=[item.model_copy() for item in character.items],
    )


class CastMixin:
    """Operations on who and where is in a story.

    Relies on instance attributes set by ``StoryEngine.__init__``.
    """

    async def _charge(self, cost: int, what: str) -> None:
        if cost > 0 and not await self.pools.consume(ResourcePool.TOKENS, cost):
            raise StoryActionRejected(f"Not enough tokens to {what}.")

    async def _refund(self, cost: int) -> None:
        if cost > 0:
            await self.pools.credit(ResourcePool.TOKENS, cost)

    # ── Characters ──

    async def add_character(self, story_id: str, character: Character, cost: int | None = None) -> Character:
        """Recruit a character mid-story, linked at 0 to everyone present."""
        if cost is None:
            cost = RECRUIT_PLAYABLE_COST if character.is_playable else RECRUIT_COMPANION_COST
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.get_character(character.id) is not None:
                raise StoryActionRejected(f"{character.name} is already in this story.")
            await self._charge(cost, f"recruit {character.name}")

            try:
                newcomer = character.model_copy(deep=True)
                newcomer.relationships = []
                snapshot_defaults(newcomer)
                txn = self._transaction(story, f"Recruit {newcomer.name}")
                with txn:
                    link_new_character(txn.working.characters, newcomer)
                    txn.append("characters", newcomer, reason="recruited")
                    if newcomer.is_playable:
                        txn.set("active_character_id", newcomer.id, reason="new playable character")
                    await txn.commit()
            except Exception:
                await self._refund(cost)
                raise

        logger.info(f"Recruited {newcomer.name} into {story_id} for {cost} tokens")
        return newcomer

    async def remove_character(self, story_id: str, character_id: str) -> Story:
        """Delete a character and prune every edge that pointed at it."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.get_character(character_id) is None:
                raise StoryActionRejected("That character is not in this story.")
            if any(p.character_id == character_id for p in story.players):
                raise StoryActionRejected("A player has claimed this character; remove the player first.")

            txn = self._transaction(story, f"Remove character {character_id}")
            with txn:
                txn.set("characters", prune_character(txn.working.characters, character_id), reason="removed")
                if txn.working.active_character_id == character_id:
                    txn.set("active_character_id", None, reason="active character removed")
                return await txn.commit()

    async def learn_skill(self, story_id: str, character_id: str, skill: str, cost: int) -> bool:
        """Teach a skill. Known skills are a free no-op (returns False)."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            character = story.get_character(character_id)
            if character is None:
                raise StoryActionRejected("Select a character to learn a skill.")
            if skill in character.skills:
                return False
            await self._charge(cost, f"learn {skill}")

            try:
                txn = self._transaction(story, f"{character.name} learns {skill}")
                with txn:
                    learn_skill(txn.working.get_character(character_id), skill)
                    txn.touch("characters", reason=f"skill {skill}")
                    await txn.commit()
            except Exception:
                await self._refund(cost)
                raise
        return True

    # ── Co-op participants ──

    async def claim_character(
        self,
        story_id: str,
        user_id: str,
        character_id: str,
        display_name: str = "New Player",
        photo_url: str | None = None,
    ) -> bool:
        """Join a co-op story as the player of ``character_id``.

        Returns True if the user is (now) a participant. Joining twice is a
        no-op.
        """
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if not story.is_coop:
                raise StoryActionRejected("Only co-op stories take players.")
            if story.get_participant(user_id) is not None:
                return True
            character = story.get_character(character_id)
            if character is None or not character.is_playable:
                raise StoryActionRejected("That character cannot be played.")
            if any(p.character_id == character_id for p in story.players):
                raise StoryActionRejected("This character has already been claimed by another player.")

            txn = self._transaction(story, f"{user_id} claims {character.name}")
            with txn:
                working = txn.working
                working.players.append(Participant(
                    user_id=user_id,
                    character_id=character_id,
                    display_name=display_name or "New Player",
                    photo_url=photo_url,
                ))
                working.refresh_member_ids()
                txn.touch("players", reason="claimed")
                if working.story_status == StoryStatus.PLAYING and working.turn_character_id is None:
                    txn.set("turn_character_id", character_id, reason="rotation resumes")
                await txn.commit()
        logger.info(f"{user_id} joined {story_id} as {character.name}")
        return True

    async def create_and_claim_character(
        self,
        story_id: str,
        user_id: str,
        character: Character,
        display_name: str = "New Player",
    ) -> Character:
        """Bring a fresh character into a co-op lobby and claim it."""
        character = character.model_copy(update={
            "health": 100, "money": 10, "happiness": 75, "is_playable": True,
        })
        story = self._require_story(story_id)
        if not story.is_coop:
            raise StoryActionRejected("Only co-op stories take players.")
        if story.get_participant(user_id) is not None:
            raise StoryActionRejected("You are already a player in this story.")
        newcomer = await self.add_character(story_id, character, cost=0)
        await self.claim_character(story_id, user_id, newcomer.id, display_name)
        return newcomer

    async def remove_participant(self, story_id: str, user_id: str) -> Story:
        """Drop a player; the turn stays at the same seat if they held it."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.get_participant(user_id) is None:
                raise StoryActionRejected("That user is not playing this story.")
            txn = self._transaction(story, f"Remove participant {user_id}")
            with txn:
                TurnRotation(txn.working).remove(user_id)
                txn.touch("players", reason="participant left")
                return await txn.commit()

    # ── World ──

    async def discover_scene(
        self,
        story_id: str,
        name: str,
        prompt: str,
        cost: int = DISCOVER_SCENE_COST,
    ) -> Scene:
        """Buy a new location. Adds the scene and a discovery entry to the log."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if any(s.name == name for s in story.scenes):
                raise StoryActionRejected(f"{name} is already on the map.")
            await self._charge(cost, "discover a new location")

            try:
                url = await self.services.visual_url(prompt, f"scenes/{story.id}")
                x, y = self.services.map_position()
                scene = Scene(name=name, prompt=prompt, url=url, style=story.style, x=x, y=y)
                actor = story.active_character
                txn = self._transaction(story, f"Discover {name}")
                with txn:
                    txn.append("scenes", scene, reason="discovered")
                    txn.append("story_history", HistoryEntry(
                        character_id=actor.id if actor else SYSTEM_CHARACTER_ID,
                        character_name=actor.name if actor else "System",
                        choice=f"Discovered a new location: {name}.",
                        outcome_description=f"The world expands as {name} is now known.",
                        visual_url=url,
                        timestamp=self.clock(),
                    ), reason="discovery log")
                    await txn.commit()
            except Exception:
                await self._refund(cost)
                raise

        logger.info(f"Story {story_id} gained scene {name}")
        return scene

    async def refill_bookmarks(self, cost: int = REFILL_BOOKMARKS_COST) -> None:
        await self._charge(cost, "refill bookmarks")
        await self.pools.refill(ResourcePool.BOOKMARKS)
