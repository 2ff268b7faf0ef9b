"""Request and effect-payload schemas exchanged with the generation service.

Every field the engine reads from a payload has a default, so partial
responses validate. Vitals in ``CharacterUpdate`` are deltas; ``items``
is the complete resulting inventory when present.
"""

from pydantic import BaseModel, Field

from ..core.story import Character, Item, Objective
from ..enums import TimeOfDay


# ── Requests ───────────────────────────────────────────────────────────

class SceneOption(BaseModel):
    id: str
    name: str


class StoryContext(BaseModel):
    """Setting shared by both narrative modes."""
    genre: str = ""
    plot: str = ""
    age_rating: str = ""
    style: str = ""
    language: str = "English"
    location_name: str = ""
    time_of_day: TimeOfDay = TimeOfDay.MORNING
    story_progression: str | None = None
    scenario: str = ""


class ChoiceRequest(BaseModel):
    """Full-mode request: everything needed to judge the effects of an action."""
    choice: str
    character: Character
    other_characters: list[Character] = Field(default_factory=list)
    scenes: list[SceneOption] = Field(default_factory=list)
    objectives: list[Objective] = Field(default_factory=list)
    must_create_objective: bool = False
    context: StoryContext = Field(default_factory=StoryContext)


class NarratorRequest(BaseModel):
    """Reduced-mode request: no vitals, objectives or relationships."""
    choice: str
    character_name: str
    scenes: list[SceneOption] = Field(default_factory=list)
    context: StoryContext = Field(default_factory=StoryContext)


class ChapterBeat(BaseModel):
    character_name: str
    choice: str
    outcome_description: str = ""


class ChapterSummaryRequest(BaseModel):
    genre: str = ""
    plot: str = ""
    last_choices: list[ChapterBeat] = Field(default_factory=list)


# ── Responses ──────────────────────────────────────────────────────────

class CharacterUpdate(BaseModel):
    health: int = Field(0, description="Change to health (delta).")
    money: int = Field(0, description="Change to money (delta).")
    happiness: int = Field(0, description="Change to happiness (delta).")
    items: list[Item] | None = Field(None, description="Full inventory after the action, or null if unchanged.")
    xp: int = Field(0, description="Experience gained. Can be 0.")
    unspent_stat_points: int = Field(0, description="Extra stat points earned.")


class NewObjective(BaseModel):
    description: str
    token_reward: int = 1


class NewScene(BaseModel):
    name: str
    prompt: str = ""


class RelationshipDelta(BaseModel):
    target_character_id: str
    change: int


class RelationshipEventPayload(BaseModel):
    description: str
    image_prompt: str = ""


class StoryUpdate(BaseModel):
    new_scenario: str = ""
    new_location_name: str | None = None
    selected_scene_id: str | None = None
    story_progression_effects: str | None = None
    time_of_day: TimeOfDay | None = None
    interacting_npc_name: str | None = None
    required_next_character_name: str | None = Field(
        None, description="Another playable character who should act next, if the story demands it."
    )
    completed_objective_id: str | None = None
    new_objective: NewObjective | None = None
    new_scene: NewScene | None = None
    relationship_changes: list[RelationshipDelta] = Field(default_factory=list)
    relationship_event: RelationshipEventPayload | None = None
    story_ended: bool = Field(False, description="True only when the narrative has reached its conclusion.")


class ChoiceEffects(BaseModel):
    """Full-mode effect payload."""
    character_update: CharacterUpdate = Field(default_factory=CharacterUpdate)
    story_update: StoryUpdate = Field(default_factory=StoryUpdate)


class NarratorEffects(BaseModel):
    """Reduced-mode effect payload."""
    new_scenario: str = ""
    story_progression_effects: str | None = None
    new_location_name: str | None = None
    selected_scene_id: str | None = None
    time_of_day: TimeOfDay | None = None
    story_ended: bool = False


class ChapterSummary(BaseModel):
    summary: str = ""
