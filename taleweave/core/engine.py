"""Story engine for Taleweave.

Composed from two domain-specific mixins:

    TurnPipelineMixin  – submit_action and the interstitial states
    CastMixin          – characters, co-op participants, scenes, skills

This file keeps construction, locking and the story lifecycle
(create, start, join, restart, publish, export, delete).
"""

import asyncio
import json
import logging
import random
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from ..db.record_store import RecordStore, Where
from ..enums import NarrativeMode, StoryStatus, TimeOfDay, Visibility
from ..errors import StoryActionRejected
from ..generation.service import GenerationService
from ..media.assets import AssetStore, VisualGenerator
from ..sync.layer import PUBLIC_COLLECTION, SyncLayer
from . import economy
from ._cast import CastMixin, snapshot_defaults
from ._turn_pipeline import TurnPipelineMixin
from .narrators import STRATEGIES, TurnServices, TurnStrategy
from .resources import ResourcePoolManager
from .rotation import TurnRotation
from .state_transaction import StoryTransaction
from .story import (
    DEFAULT_LOCATION,
    Character,
    Scenario,
    Scene,
    Story,
    draw_objective_countdown,
    utcnow,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"


class StoryEngine(TurnPipelineMixin, CastMixin):
    """Owns every state change to the stories one account can see.

    Coordinates:
    1. Resource gating (tokens, bookmarks, creation quota)
    2. Turn processing through the mode's strategy
    3. Persistence through the sync layer
    """

    def __init__(
        self,
        account_id: str,
        store: RecordStore,
        generation: GenerationService,
        visuals: VisualGenerator | None = None,
        assets: AssetStore | None = None,
        pools: ResourcePoolManager | None = None,
        sync: SyncLayer | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ):
        self.account_id = account_id
        self.store = store
        self.clock = clock or utcnow
        self.services = TurnServices(
            generation=generation,
            visuals=visuals,
            assets=assets,
            rng=rng or random.Random(),
        )
        self.pools = pools or ResourcePoolManager(store, account_id, clock=self.clock)
        self.sync = sync or SyncLayer(store, account_id)
        self.strategies: dict[NarrativeMode, TurnStrategy] = dict(STRATEGIES)
        self._locks: dict[str, asyncio.Lock] = {}

    # ── Lifecycle ──

    async def start(self) -> None:
        """Load account state and open the live feeds."""
        await self.pools.load()
        await self.sync.start()

    async def close(self) -> None:
        await self.sync.stop()

    # ── Helpers ──

    def _lock(self, story_id: str) -> asyncio.Lock:
        lock = self._locks.get(story_id)
        if lock is None:
            lock = self._locks[story_id] = asyncio.Lock()
        return lock

    def _require_story(self, story_id: str) -> Story:
        story = self.sync.get_story(story_id)
        if story is None:
            raise StoryActionRejected("Story not found.")
        return story

    def _transaction(self, story: Story, description: str) -> StoryTransaction:
        return StoryTransaction(story, self.sync.update_story, description)

    def get_story(self, story_id: str) -> Story | None:
        return self.sync.get_story(story_id)

    def stories(self) -> list[Story]:
        return self.sync.stories()

    # ── Creation ──

    async def create_story(
        self,
        draft: Story,
        scenes: list[Scene] | None = None,
        characters: list[Character] | None = None,
        visibility: Visibility = Visibility.PRIVATE,
    ) -> Story | None:
        """Create and persist a story.

        Returns None (and creates nothing) when the monthly quota is used up.
        The quota slot is reserved up front and given back if persisting fails.
        """
        if not await self.pools.quota.try_reserve():
            limit = self.pools.quota.limit()
            logger.info(f"Creation blocked for {self.account_id}: monthly limit of {limit} reached")
            return None

        try:
            story = self._prepare_story(draft, scenes, characters, visibility)
            await self.sync.create_story(story)
        except Exception:
            await self.pools.quota.release()
            raise
        logger.info(f"Story '{story.name}' created ({story.visibility}) by {self.account_id}")
        return story

    def _prepare_story(
        self,
        draft: Story,
        scenes: list[Scene] | None,
        characters: list[Character] | None,
        visibility: Visibility,
    ) -> Story:
        story = draft.model_copy(deep=True)
        if scenes is not None:
            story.scenes = [s.model_copy() for s in scenes]
        if characters is not None:
            story.characters = [c.model_copy(deep=True) for c in characters]

        now = self.clock()
        story.author_id = self.account_id
        story.is_public = visibility == Visibility.PUBLIC
        story.is_coop = visibility == Visibility.COOP
        economy.link_cast(story.characters)
        for character in story.characters:
            snapshot_defaults(character)

        story.story_status = StoryStatus.IDLE
        story.story_history = []
        story.objectives = []
        story.interactions_until_next_objective = draw_objective_countdown(self.services.rng)
        story.current_scene_index = 0
        story.location_name = story.scenes[0].name if story.scenes else DEFAULT_LOCATION
        story.last_location_name = None
        first = story.first_playable()
        story.active_character_id = first.id if first else None

        if story.is_coop:
            story.invite_code = uuid.uuid4().hex[:6].upper()
            story.story_mode = NarrativeMode.IMMERSIVE
            story.turn_character_id = TurnRotation(story).first()
        story.refresh_member_ids()
        story.created_at = now
        story.last_played_timestamp = now
        return story

    async def delete_story(self, story_id: str) -> None:
        async with self._lock(story_id):
            self._require_story(story_id)
            await self.sync.delete_story(story_id)
        self._locks.pop(story_id, None)

    async def find_by_invite_code(self, code: str) -> Story | None:
        """Look up a co-op story to join and cache it for this account."""
        docs = await self.store.query(
            PUBLIC_COLLECTION, [Where("inviteCode", "==", code.strip().upper())]
        )
        if not docs:
            return None
        return self.sync.track(PUBLIC_COLLECTION, docs[0])

    async def make_public(self, story_id: str) -> Story:
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.is_public:
                return story
            return await self.sync.make_public(story_id)

    # ── Setup ──

    async def select_character(self, story_id: str, character_id: str) -> Story:
        async with self._lock(story_id):
            story = self._require_story(story_id)
            character = story.get_character(character_id)
            if character is None or not character.is_playable:
                raise StoryActionRejected("That character cannot be played.")
            txn = self._transaction(story, f"Select {character.name}")
            with txn:
                txn.set("active_character_id", character_id, reason="selected")
                return await txn.commit()

    async def set_story_mode(self, story_id: str, mode: NarrativeMode) -> Story:
        async with self._lock(story_id):
            story = self._require_story(story_id)
            txn = self._transaction(story, f"Mode {mode}")
            with txn:
                txn.set("story_mode", mode, reason="mode switch")
                return await txn.commit()

    async def start_story(self, story_id: str) -> Story:
        """idle -> playing. Co-op stories start with participant 0."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            if story.story_status != StoryStatus.IDLE:
                raise StoryActionRejected("This story has already started.")
            if story.is_coop and not story.players:
                raise StoryActionRejected("No players in the lobby.")
            if not story.is_coop and story.active_character is None:
                raise StoryActionRejected("Please select a character before starting.")
            if not story.scenes:
                raise StoryActionRejected("This story has no scenes.")

            txn = self._transaction(story, "Start story")
            with txn:
                working = txn.working
                opening = Scenario(description=working.plot)
                starters = (
                    {p.character_id for p in working.players}
                    if working.is_coop else {working.active_character_id}
                )
                for character in working.characters:
                    if character.id in starters:
                        character.current_scenario = opening.model_copy()
                txn.touch("characters", reason="opening scenario")
                txn.set("story_history", [], reason="fresh start")
                txn.set("location_name", working.scenes[0].name)
                txn.set("last_location_name", None)
                txn.set("current_scene_index", 0)
                if working.is_coop:
                    txn.set("turn_character_id", TurnRotation(working).first(), reason="first turn")
                txn.set("story_status", StoryStatus.PLAYING, reason="started")
                txn.set("last_played_timestamp", self.clock())
                committed = await txn.commit()
        logger.info(f"Story {story_id} started")
        return committed

    async def join_story(self, story_id: str) -> Story:
        """Commit the active character to a story already in progress."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            character = story.active_character
            if character is None:
                raise StoryActionRejected("Please select a character first.")
            if story.story_status == StoryStatus.ENDED:
                raise StoryActionRejected("This story has ended.")
            situation = story.story_progression or story.plot
            txn = self._transaction(story, f"{character.name} joins")
            with txn:
                txn.working.get_character(character.id).current_scenario = Scenario(
                    description=(
                        f"With determination in their eyes, {character.name} steps into the "
                        f"unfolding narrative, ready to make their mark on the world. "
                        f"The current situation is: {situation}"
                    ),
                )
                txn.touch("characters", reason="joined")
                txn.set("last_played_timestamp", self.clock())
                return await txn.commit()

    async def restart_story(self, story_id: str) -> Story:
        """Reset the story and its cast to the starting state. Waits for any turn in flight."""
        async with self._lock(story_id):
            story = self._require_story(story_id)
            txn = self._transaction(story, "Restart story")
            with txn:
                working = txn.working
                for character in working.characters:
                    economy.reset(character)
                txn.touch("characters", reason="reset")
                first = working.first_playable()
                txn.set("story_history", [])
                txn.set("story_status", StoryStatus.IDLE)
                txn.set("story_progression", working.plot)
                txn.set("time_of_day", TimeOfDay.MORNING)
                txn.set("current_scene_index", 0)
                txn.set("location_name", working.scenes[0].name if working.scenes else DEFAULT_LOCATION)
                txn.set("last_location_name", None)
                txn.set("objectives", [])
                txn.set("interactions_until_next_objective", draw_objective_countdown(self.services.rng))
                txn.set("last_chapter_summary", None)
                txn.set("last_relationship_event", None)
                txn.set("story_mode", NarrativeMode.IMMERSIVE if working.is_coop else None)
                txn.set("active_character_id", first.id if first else None)
                if working.is_coop:
                    txn.set("turn_character_id", TurnRotation(working).first())
                committed = await txn.commit()
        logger.info(f"Story {story_id} restarted")
        return committed

    # ── Export ──

    def export_story(self, story_id: str, path: str | Path | None = None) -> dict[str, Any]:
        """Export a story as portable JSON, optionally writing it to ``path``."""
        story = self._require_story(story_id)
        export_data = {
            "manifest": {
                "version": EXPORT_VERSION,
                "story_name": story.name,
                "exported_at": self.clock().isoformat(),
            },
            "story": story.to_document(),
        }
        if path is not None:
            Path(path).write_text(json.dumps(export_data, indent=2), encoding="utf-8")
            logger.info(f"Exported story {story_id} to {path}")
        return export_data
