"""Turn rotation for co-op stories.

Strict round-robin over the participant list in join order. Stories that
are not co-op never rotate: the active character always acts.
"""

import logging

from .story import Participant, Story

logger = logging.getLogger(__name__)


def next_holder(players: list[Participant], current: str | None) -> str | None:
    """Character id of the participant after ``current``, wrapping around.

    An unknown holder restarts the cycle at participant 0.
    """
    if not players:
        return None
    index = next(
        (i for i, p in enumerate(players) if p.character_id == current),
        -1,
    )
    return players[(index + 1) % len(players)].character_id


def remove_player(
    players: list[Participant],
    user_id: str,
    current: str | None,
) -> tuple[list[Participant], str | None]:
    """Drop a participant and work out who holds the turn afterwards.

    If the leaver held the turn it passes to whoever now sits at the same
    list index (modulo the new length). An empty list halts rotation.
    """
    index = next((i for i, p in enumerate(players) if p.user_id == user_id), None)
    if index is None:
        return list(players), current

    leaver = players[index]
    remaining = players[:index] + players[index + 1:]
    if not remaining:
        return remaining, None
    if leaver.character_id == current:
        return remaining, remaining[index % len(remaining)].character_id
    return remaining, current


class TurnRotation:
    """Rotation controller bound to one story (usually a transaction's working copy)."""

    def __init__(self, story: Story):
        self.story = story

    @property
    def active(self) -> bool:
        return self.story.is_coop

    def first(self) -> str | None:
        if not self.active:
            return self.story.turn_character_id
        return self.story.players[0].character_id if self.story.players else None

    def may_act(self, character_id: str) -> bool:
        """Solo stories always accept; a halted co-op rotation accepts nobody."""
        if not self.active:
            return True
        return self.story.turn_character_id is not None and character_id == self.story.turn_character_id

    def advance(self) -> str | None:
        """Hand the turn to the next participant. No-op outside co-op."""
        if not self.active:
            return self.story.turn_character_id
        holder = next_holder(self.story.players, self.story.turn_character_id)
        self.story.turn_character_id = holder
        return holder

    def remove(self, user_id: str) -> str | None:
        players, holder = remove_player(
            self.story.players, user_id, self.story.turn_character_id
        )
        self.story.players = players
        self.story.turn_character_id = holder if self.active else self.story.turn_character_id
        self.story.refresh_member_ids()
        if holder is None and self.active:
            logger.info(f"Rotation halted on story {self.story.id}: no participants left")
        return self.story.turn_character_id
