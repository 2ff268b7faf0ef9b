"""
Canonical string enumerations for Taleweave.

StrEnum values serialize as plain strings, so they round-trip through
record-store JSON and generation schemas without conversion.
"""

from enum import StrEnum


# ── Story Progression ──────────────────────────────────────────────────

class StoryStatus(StrEnum):
    """Session-level state of a story."""
    IDLE = "idle"
    PLAYING = "playing"
    CHAPTER_END = "chapter-end"
    RELATIONSHIP_EVENT = "relationship-event"
    ENDED = "ended"


class NarrativeMode(StrEnum):
    """Turn processing mode selected per story."""
    IMMERSIVE = "immersive"  # Full effects: vitals, relationships, objectives
    NARRATOR = "narrator"    # Reduced: scene, summary, location, time of day


class TimeOfDay(StrEnum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    NIGHT = "Night"


class Visibility(StrEnum):
    """Where a story lives and who may see it."""
    PRIVATE = "private"
    PUBLIC = "public"
    COOP = "coop"


# ── Objectives ─────────────────────────────────────────────────────────

class ObjectiveStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


# ── Relationships ──────────────────────────────────────────────────────

class RelationshipTier(StrEnum):
    """Critical relationship bands that trigger a one-shot event."""
    HATED = "hated"
    BELOVED = "beloved"


# ── Account ────────────────────────────────────────────────────────────

class MembershipPlan(StrEnum):
    """Subscription tier (capitalized, matches stored account documents)."""
    FREE = "Free"
    EXPLORER = "Explorer"
    SCULPTOR = "Sculptor"
    ADMIN = "Admin"


class ResourcePool(StrEnum):
    """Regenerating currency pools held per account."""
    TOKENS = "tokens"
    BOOKMARKS = "bookmarks"
