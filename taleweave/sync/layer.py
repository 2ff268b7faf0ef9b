"""Synchronization layer: one local story cache fed by three live feeds.

Feeds:
    public       ``stories`` where ``isPublic``
    private      ``users/{uid}/stories``
    participant  ``stories`` where the account is a member (co-op)

Merge rule: a feed record replaces the cached story wholesale when its
``_version`` is newer than the last version seen for that id. There is no
field-level merging; concurrent writes to the same field resolve as
last-write-wins at the store. This is best-effort eventual consistency,
not linearizable.

Local mutations replace the cached story immediately and are persisted as
partial merges of the changed top-level fields. A failed write restores
the previous cached story and re-raises. The version returned by our own
write is recorded, so feed snapshots queued before it are ignored.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..core.story import Story
from ..db.record_store import VERSION_KEY, RecordStore, Subscription, Where
from ..enums import Visibility
from ..utils.tasks import safe_create_task, wait_stopped

logger = logging.getLogger(__name__)

PUBLIC_COLLECTION = "stories"

FEED_PUBLIC = "public"
FEED_PRIVATE = "private"
FEED_PARTICIPANT = "participant"

# Deleted ids remembered against late snapshots, oldest forgotten first
MAX_TOMBSTONES = 256

# (story_id, story or None when removed)
Listener = Callable[[str, Story | None], None]


def private_collection(account_id: str) -> str:
    return f"users/{account_id}/stories"


def collection_for(visibility: Visibility, account_id: str) -> str:
    """Physical collection for a new story. Fixed until make_public()."""
    if visibility in (Visibility.PUBLIC, Visibility.COOP):
        return PUBLIC_COLLECTION
    return private_collection(account_id)


class SyncLayer:
    """Local cache of every story visible to one account."""

    def __init__(self, store: RecordStore, account_id: str):
        self.store = store
        self.account_id = account_id
        self._stories: dict[str, Story] = {}
        self._versions: dict[str, int] = {}
        self._deleted: dict[str, None] = {}
        self._locations: dict[str, str] = {}
        self._feed_ids: dict[str, set[str]] = {
            FEED_PUBLIC: set(),
            FEED_PRIVATE: set(),
            FEED_PARTICIPANT: set(),
        }
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task] = []

    # ── Feeds ──

    def _feed_specs(self) -> dict[str, tuple[str, list[Where] | None]]:
        return {
            FEED_PUBLIC: (PUBLIC_COLLECTION, [Where("isPublic", "==", True)]),
            FEED_PRIVATE: (private_collection(self.account_id), None),
            FEED_PARTICIPANT: (PUBLIC_COLLECTION, [Where("memberIds", "array-contains", self.account_id)]),
        }

    async def start(self) -> None:
        """Open all feeds. The initial snapshots are merged before returning."""
        if self._subscriptions:
            return
        for feed, (collection, where) in self._feed_specs().items():
            subscription = await self.store.subscribe(collection, where)
            self._subscriptions.append(subscription)
            first = await anext(subscription)
            self.merge_snapshot(feed, collection, first)
            self._tasks.append(
                safe_create_task(self._consume(feed, collection, subscription), name=f"feed:{feed}")
            )
        logger.info(f"Sync started for {self.account_id}: {len(self._stories)} stories cached")

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        await wait_stopped(self._tasks)
        self._subscriptions.clear()
        self._tasks.clear()

    async def _consume(self, feed: str, collection: str, subscription: Subscription) -> None:
        async for snapshot in subscription:
            self.merge_snapshot(feed, collection, snapshot)

    def merge_snapshot(self, feed: str, collection: str, snapshot: list[dict[str, Any]]) -> None:
        """Fold one full feed snapshot into the cache."""
        seen: set[str] = set()
        for doc in snapshot:
            story_id = doc.get("id")
            if not story_id:
                continue
            if story_id in self._deleted:
                continue
            seen.add(story_id)
            version = doc.get(VERSION_KEY, 0)
            known = self._versions.get(story_id, -1)
            # A story dropped between feeds comes back at the version we already hold
            if version < known or (version == known and story_id in self._stories):
                logger.debug(f"Ignoring stale {feed} record {story_id} v{version}")
                continue
            try:
                story = Story.model_validate(doc)
            except ValueError as e:
                logger.warning(f"Skipping malformed story {story_id} from {feed} feed: {e}")
                continue
            self._versions[story_id] = version
            self._stories[story_id] = story
            self._locations[story_id] = collection
            logger.debug(f"Merged {story_id} v{version} from {feed} feed")
            self._notify(story_id, story)

        dropped = self._feed_ids[feed] - seen
        self._feed_ids[feed] = seen
        for story_id in dropped:
            if any(story_id in ids for ids in self._feed_ids.values()):
                continue
            if self._stories.pop(story_id, None) is not None:
                self._locations.pop(story_id, None)
                logger.debug(f"Story {story_id} left the {feed} feed")
                self._notify(story_id, None)

    # ── Listeners ──

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, story_id: str, story: Story | None) -> None:
        for listener in list(self._listeners):
            listener(story_id, story)

    # ── Reads (never wait on persistence) ──

    def get_story(self, story_id: str) -> Story | None:
        return self._stories.get(story_id)

    def stories(self) -> list[Story]:
        return list(self._stories.values())

    def location_of(self, story_id: str) -> str | None:
        return self._locations.get(story_id)

    def track(self, collection: str, doc: Mapping[str, Any]) -> Story | None:
        """Cache a story read outside the feeds (e.g. found by invite code)."""
        story_id = doc.get("id")
        version = doc.get(VERSION_KEY, 0)
        if story_id in self._stories and version <= self._versions.get(story_id, -1):
            return self._stories[story_id]
        story = Story.model_validate(doc)
        self._versions[story_id] = version
        self._stories[story_id] = story
        self._locations[story_id] = collection
        self._notify(story_id, story)
        return story

    # ── Writes ──

    async def create_story(self, story: Story) -> Story:
        """Persist a new story in the collection its visibility selects."""
        collection = collection_for(story.visibility, self.account_id)
        self._stories[story.id] = story
        self._locations[story.id] = collection
        self._notify(story.id, story)
        try:
            self._versions[story.id] = await self.store.set_merge(collection, story.id, story.to_document())
        except Exception:
            self._stories.pop(story.id, None)
            self._locations.pop(story.id, None)
            self._notify(story.id, None)
            raise
        logger.info(f"Created story {story.id} in {collection}")
        return story

    async def update_story(
        self,
        story: Story,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> Story:
        """Optimistically replace the cached story, then persist ``fields``.

        Args:
            story: The full new story (becomes the cached record at once).
            fields: Changed top-level fields, by wire name.
            expect: Store-side preconditions (see RecordStore.set_merge).

        Raises:
            KeyError: If the story is not in the cache.
        """
        collection = self._locations.get(story.id)
        if collection is None:
            raise KeyError(f"Story {story.id} is not cached")
        previous = self._stories.get(story.id)
        self._stories[story.id] = story
        self._notify(story.id, story)
        try:
            version = await self.store.set_merge(collection, story.id, dict(fields), expect=expect)
        except Exception as e:
            # Only undo if nothing newer replaced our optimistic copy meanwhile
            if self._stories.get(story.id) is story and previous is not None:
                self._stories[story.id] = previous
                self._notify(story.id, previous)
            logger.error(f"Persisting story {story.id} failed, reverted cache: {e}")
            raise
        self._versions[story.id] = max(version, self._versions.get(story.id, -1))
        return story

    async def delete_story(self, story_id: str) -> None:
        collection = self._locations.get(story_id)
        if collection is None:
            return
        await self.store.delete(collection, story_id)
        # Queued snapshots may still carry it
        self._remember_deleted(story_id)
        self._stories.pop(story_id, None)
        self._locations.pop(story_id, None)
        self._notify(story_id, None)
        logger.info(f"Deleted story {story_id} from {collection}")

    def _remember_deleted(self, story_id: str) -> None:
        self._deleted.pop(story_id, None)
        self._deleted[story_id] = None
        while len(self._deleted) > MAX_TOMBSTONES:
            del self._deleted[next(iter(self._deleted))]

    async def make_public(self, story_id: str) -> Story:
        """Copy a private story into the public collection, then drop the private copy."""
        story = self._stories.get(story_id)
        if story is None:
            raise KeyError(f"Story {story_id} is not cached")
        source = self._locations[story_id]
        public = story.model_copy(update={"is_public": True})
        if source == PUBLIC_COLLECTION:
            return await self.update_story(public, {"isPublic": True})

        version = await self.store.set_merge(PUBLIC_COLLECTION, story_id, public.to_document())
        self._versions[story_id] = version
        self._stories[story_id] = public
        self._locations[story_id] = PUBLIC_COLLECTION
        self._feed_ids[FEED_PUBLIC].add(story_id)
        await self.store.delete(source, story_id)
        self._notify(story_id, public)
        logger.info(f"Story {story_id} moved {source} -> {PUBLIC_COLLECTION}")
        return public
