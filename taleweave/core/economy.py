"""Character economy: vitals, inventory, leveling and the relationship graph.

Relationship edges are stored twice, once on each character. Every
function here that touches an edge writes both sides in the same call so a
story never holds an asymmetric pair after a mutation completes.
"""

import logging

from pydantic import BaseModel

from ..enums import RelationshipTier
from .story import Character, Item, Relationship

logger = logging.getLogger(__name__)

VITAL_MIN = 0
VITAL_MAX = 100
RELATIONSHIP_MIN = -100
RELATIONSHIP_MAX = 100
XP_PER_LEVEL = 100

# Crossing either bound (from inside the band) triggers a relationship event
BELOVED_THRESHOLD = 75
HATED_THRESHOLD = -75


class VitalsDelta(BaseModel):
    """Per-turn change to a character. Items, when present, are the full new inventory."""
    health: int = 0
    money: int = 0
    happiness: int = 0
    items: list[Item] | None = None
    xp_gained: int = 0
    stat_points_gained: int = 0


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def apply_vitals_delta(character: Character, delta: VitalsDelta) -> bool:
    """Apply a turn's vitals effect. Returns True if the character levelled up."""
    character.health = clamp(character.health + delta.health, VITAL_MIN, VITAL_MAX)
    character.happiness = clamp(character.happiness + delta.happiness, VITAL_MIN, VITAL_MAX)
    character.money = max(0, character.money + delta.money)

    if delta.items is not None:
        character.items = [item.model_copy() for item in delta.items]

    levelled = apply_xp(character, delta.xp_gained)
    if delta.stat_points_gained > 0:
        character.unspent_stat_points += delta.stat_points_gained
    return levelled


def apply_xp(character: Character, amount: int) -> bool:
    """Accumulate xp and gain at most one level per call."""
    if amount <= 0:
        return False
    character.xp += amount
    if character.xp >= character.level * XP_PER_LEVEL:
        character.level += 1
        character.unspent_stat_points += 1
        logger.info(f"{character.name} reached level {character.level}")
        return True
    return False


def learn_skill(character: Character, skill: str) -> bool:
    """Add a skill. Returns False if the character already knew it."""
    if skill in character.skills:
        return False
    character.skills.append(skill)
    return True


# ── Relationship graph ────────────────────────────────────────────────

def _edge(character: Character, target_id: str) -> Relationship:
    edge = character.relationship_to(target_id)
    if edge is None:
        edge = Relationship(target_character_id=target_id, value=0)
        character.relationships.append(edge)
    return edge


def adjust_relationship(
    cast: dict[str, Character],
    from_id: str,
    to_id: str,
    delta: int,
) -> tuple[int, int] | None:
    """Shift the mirrored edge between two characters.

    The value on ``from_id``'s side is authoritative; the result is written
    to both sides. Missing edges start at 0.

    Returns:
        (old_value, new_value), or None if either character is unknown.
    """
    source = cast.get(from_id)
    target = cast.get(to_id)
    if source is None or target is None or from_id == to_id:
        logger.warning(f"Ignoring relationship change {from_id} -> {to_id}: unknown character")
        return None

    forward = _edge(source, to_id)
    backward = _edge(target, from_id)
    old = forward.value
    new = clamp(old + delta, RELATIONSHIP_MIN, RELATIONSHIP_MAX)
    forward.value = new
    backward.value = new
    return old, new


def crossed_threshold(old: int, new: int) -> RelationshipTier | None:
    """Detect entry into a critical band (not staying inside one)."""
    if old < BELOVED_THRESHOLD <= new:
        return RelationshipTier.BELOVED
    if old > HATED_THRESHOLD >= new:
        return RelationshipTier.HATED
    return None


def link_new_character(cast: list[Character], newcomer: Character) -> None:
    """Give a newcomer zero-valued mirrored edges to everyone already present."""
    for other in cast:
        if other.id == newcomer.id:
            continue
        _edge(other, newcomer.id).value = 0
        _edge(newcomer, other.id).value = 0


def link_cast(cast: list[Character]) -> None:
    """Zero-valued edges between every pair in a freshly created cast."""
    for index, character in enumerate(cast):
        character.relationships = []
        for other in cast[:index]:
            link_new_character([other], character)


def prune_character(cast: list[Character], character_id: str) -> list[Character]:
    """Remove a character and every edge pointing at it."""
    remaining = [c for c in cast if c.id != character_id]
    for character in remaining:
        character.relationships = [
            edge for edge in character.relationships
            if edge.target_character_id != character_id
        ]
    return remaining


def reset(character: Character) -> None:
    """Restore a character to its starting state. Edges stay, values drop to 0."""
    defaults = character.default_stats
    character.health = defaults.health
    character.money = defaults.money
    character.happiness = defaults.happiness
    character.items = [item.model_copy() for item in defaults.items]
    character.level = 1
    character.xp = 0
    character.unspent_stat_points = 0
    character.skills = []
    for edge in character.relationships:
        edge.value = 0
    character.current_scenario = None
