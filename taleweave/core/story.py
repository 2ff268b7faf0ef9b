"""Domain records for stories, characters and their history.

All records serialize with camelCase aliases so the persisted document
layout stays stable (``storyHistory``, ``turnCharacterId`` ...). Python
code always uses the snake_case attribute names.
"""

import random
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..enums import (
    NarrativeMode,
    ObjectiveStatus,
    StoryStatus,
    TimeOfDay,
    Visibility,
)

OBJECTIVE_COUNTDOWN_MIN = 6
OBJECTIVE_COUNTDOWN_MAX = 8
DEFAULT_LOCATION = "Starting Location"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def draw_objective_countdown(rng: random.Random | None = None) -> int:
    """Turns until the next objective must be generated."""
    return (rng or random).randint(OBJECTIVE_COUNTDOWN_MIN, OBJECTIVE_COUNTDOWN_MAX)


class Record(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=False,
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ── Building blocks ────────────────────────────────────────────────────

class Item(Record):
    name: str
    description: str = ""


class Scene(Record):
    id: str = Field(default_factory=new_id)
    name: str
    url: str = ""
    prompt: str = ""
    style: str = ""
    x: int = 50
    y: int = 50


class CharacterStats(Record):
    intellect: int = 5
    charisma: int = 5
    wits: int = 5
    willpower: int = 5


class DefaultStats(Record):
    """Snapshot of starting vitals, restored on restart."""
    health: int = 100
    money: int = 10
    happiness: int = 75
    items: list[Item] = Field(default_factory=list)


class Relationship(Record):
    target_character_id: str
    value: int = 0


class Scenario(Record):
    description: str = ""
    interacting_npc_name: str | None = None
    required_next_character_name: str | None = None


class Character(Record):
    id: str = Field(default_factory=new_id)
    name: str
    traits: str = ""
    backstory: str = ""
    sex: str = ""
    age: str = ""
    hair_colour: str = ""
    eye_colour: str = ""
    profile_image_url: str = ""
    in_game_image_url: str = ""
    is_playable: bool = True

    health: int = 100
    money: int = 10
    happiness: int = 75
    items: list[Item] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)

    level: int = 1
    xp: int = 0
    unspent_stat_points: int = 0
    stats: CharacterStats = Field(default_factory=CharacterStats)
    default_stats: DefaultStats = Field(default_factory=DefaultStats)

    relationships: list[Relationship] = Field(default_factory=list)
    current_scenario: Scenario | None = None

    def relationship_to(self, target_id: str) -> Relationship | None:
        for edge in self.relationships:
            if edge.target_character_id == target_id:
                return edge
        return None


class Objective(Record):
    id: str = Field(default_factory=new_id)
    description: str
    status: ObjectiveStatus = ObjectiveStatus.ACTIVE
    token_reward: int = 1


class RelationshipChange(Record):
    character_id: str
    change: int


class HistoryEntry(Record):
    """One accepted turn. Never edited after it is appended."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    character_id: str
    character_name: str
    choice: str
    outcome_description: str = ""
    outcome_npc_name: str | None = None
    visual_url: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    from_location_name: str | None = None
    to_location_name: str | None = None
    relationship_changes: list[RelationshipChange] = Field(default_factory=list)


class RelationshipEvent(Record):
    """Interstitial shown once when two characters cross a critical threshold."""
    character1_id: str
    character2_id: str
    description: str
    image_prompt: str = ""
    image_url: str = ""


class Participant(Record):
    user_id: str
    character_id: str
    display_name: str = "New Player"
    photo_url: str | None = None


# ── Story ──────────────────────────────────────────────────────────────

class Story(Record):
    id: str = Field(default_factory=new_id)
    name: str
    plot: str = ""
    genre: str = ""
    age_rating: str = ""
    style: str = ""
    language: str = "English"
    author_id: str = ""

    scenes: list[Scene] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    active_character_id: str | None = None

    story_status: StoryStatus = StoryStatus.IDLE
    story_mode: NarrativeMode | None = None
    story_history: list[HistoryEntry] = Field(default_factory=list)
    story_progression: str | None = None

    location_name: str = DEFAULT_LOCATION
    last_location_name: str | None = None
    time_of_day: TimeOfDay = TimeOfDay.MORNING
    current_scene_index: int = 0

    objectives: list[Objective] = Field(default_factory=list)
    interactions_until_next_objective: int = Field(default_factory=draw_objective_countdown)
    last_chapter_summary: str | None = None
    last_relationship_event: RelationshipEvent | None = None

    is_public: bool = False
    is_coop: bool = False
    invite_code: str | None = None
    players: list[Participant] = Field(default_factory=list)
    member_ids: list[str] = Field(default_factory=list)
    turn_character_id: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    last_played_timestamp: datetime | None = None

    # -- lookups --

    @property
    def visibility(self) -> Visibility:
        if self.is_coop:
            return Visibility.COOP
        if self.is_public:
            return Visibility.PUBLIC
        return Visibility.PRIVATE

    @property
    def mode(self) -> NarrativeMode:
        return self.story_mode or NarrativeMode.IMMERSIVE

    def get_character(self, character_id: str | None) -> Character | None:
        if character_id is None:
            return None
        for character in self.characters:
            if character.id == character_id:
                return character
        return None

    @property
    def active_character(self) -> Character | None:
        return self.get_character(self.active_character_id)

    def first_playable(self) -> Character | None:
        return next((c for c in self.characters if c.is_playable), None)

    def get_participant(self, user_id: str) -> Participant | None:
        return next((p for p in self.players if p.user_id == user_id), None)

    def scene_index(self, scene_id: str | None) -> int | None:
        if scene_id is None:
            return None
        for index, scene in enumerate(self.scenes):
            if scene.id == scene_id:
                return index
        return None

    @property
    def current_scene(self) -> Scene | None:
        if 0 <= self.current_scene_index < len(self.scenes):
            return self.scenes[self.current_scene_index]
        return None

    def refresh_member_ids(self) -> None:
        """Keep the flat member list used by participant feeds in step with players."""
        ids = [self.author_id] if self.author_id else []
        for player in self.players:
            if player.user_id not in ids:
                ids.append(player.user_id)
        self.member_ids = ids
