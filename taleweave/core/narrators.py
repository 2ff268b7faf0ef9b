"""Turn strategies for the two narrative modes.

A strategy asks the generation service for effects and applies the
mode-specific part of a turn to the transaction's working copy:

    FullNarrator     scene (incl. new scenes), vitals/xp, relationships,
                     objectives, setting
    ReducedNarrator  scene selection and setting only

History, rotation, chapter cadence and the history cap are shared and
live in the turn pipeline.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..enums import MembershipPlan, NarrativeMode, RelationshipTier, TimeOfDay
from ..generation.schemas import (
    ChoiceRequest,
    NarratorRequest,
    NewScene,
    RelationshipEventPayload,
    SceneOption,
    StoryContext,
)
from ..generation.service import GenerationService
from ..media.assets import AssetStore, VisualGenerator, generate_and_upload
from .economy import VitalsDelta, adjust_relationship, apply_vitals_delta, crossed_threshold
from .objectives import ObjectiveLedger, ObjectiveResolution
from .state_transaction import StoryTransaction
from .story import Character, RelationshipChange, RelationshipEvent, Scenario, Scene, Story

logger = logging.getLogger(__name__)

MAP_MARGIN = 10  # keep map pins off the edges


@dataclass
class TurnServices:
    """External collaborators a turn may call."""
    generation: GenerationService
    visuals: VisualGenerator | None = None
    assets: AssetStore | None = None
    rng: random.Random = field(default_factory=random.Random)

    async def visual_url(self, prompt: str, folder: str) -> str:
        if self.visuals is None or self.assets is None or not prompt:
            return ""
        return await generate_and_upload(self.visuals, self.assets, prompt, folder)

    def map_position(self) -> tuple[int, int]:
        return (
            self.rng.randint(MAP_MARGIN, 100 - MAP_MARGIN),
            self.rng.randint(MAP_MARGIN, 100 - MAP_MARGIN),
        )


@dataclass
class TurnEffects:
    """What a strategy did, for history and the turn result."""
    outcome: str = ""
    npc_name: str | None = None
    relationship_changes: list[RelationshipChange] = field(default_factory=list)
    relationship_event: RelationshipEvent | None = None
    objectives: ObjectiveResolution | None = None
    levelled_up: bool = False
    story_ended: bool = False
    new_scene: Scene | None = None
    next_character_name: str | None = None


class TurnStrategy(ABC):
    """One narrative mode."""

    mode: NarrativeMode

    @abstractmethod
    async def play(
        self,
        txn: StoryTransaction,
        character_id: str,
        action: str,
        services: TurnServices,
        plan: MembershipPlan,
    ) -> TurnEffects:
        """Generate and apply this mode's effects to ``txn.working``."""

    # ── Shared helpers ──

    @staticmethod
    def context(story: Story, character: Character) -> StoryContext:
        scenario = character.current_scenario.description if character.current_scenario else ""
        return StoryContext(
            genre=story.genre,
            plot=story.plot,
            age_rating=story.age_rating,
            style=story.style,
            language=story.language,
            location_name=story.location_name,
            time_of_day=story.time_of_day,
            story_progression=story.story_progression,
            scenario=scenario or "An unknown location.",
        )

    @staticmethod
    def scene_options(story: Story) -> list[SceneOption]:
        return [SceneOption(id=s.id, name=s.name) for s in story.scenes]

    @staticmethod
    def select_scene(txn: StoryTransaction, scene_id: str | None) -> int:
        """Pick the scene by id, keeping the current one when the id is unknown."""
        story = txn.working
        index = story.scene_index(scene_id)
        if index is None:
            if scene_id:
                logger.warning(f"Unknown scene id {scene_id!r}, staying on scene {story.current_scene_index}")
            index = story.current_scene_index
        txn.set("current_scene_index", index, reason="scene selection")
        return index

    @staticmethod
    def apply_setting(
        txn: StoryTransaction,
        location: str | None,
        progression: str | None,
        time_of_day: TimeOfDay | None,
    ) -> None:
        story = txn.working
        if location and location != story.location_name:
            txn.set("last_location_name", story.location_name, reason="moved")
            txn.set("location_name", location, reason="moved")
        if progression:
            txn.set("story_progression", progression, reason="progression summary")
        if time_of_day is not None:
            txn.set("time_of_day", time_of_day, reason="time passes")


class FullNarrator(TurnStrategy):
    """Immersive mode: every effect of the payload is applied."""

    mode = NarrativeMode.IMMERSIVE

    async def play(self, txn, character_id, action, services, plan) -> TurnEffects:
        story = txn.working
        character = story.get_character(character_id)

        ledger = ObjectiveLedger(story.objectives, story.interactions_until_next_objective, services.rng)
        must_create = ledger.tick()

        request = ChoiceRequest(
            choice=action,
            character=character,
            other_characters=[c for c in story.characters if c.id != character.id],
            scenes=self.scene_options(story),
            objectives=ledger.active(),
            must_create_objective=must_create,
            context=self.context(story, character),
        )
        payload = await services.generation.analyze_choice(request)
        update = payload.story_update
        effects = TurnEffects(
            outcome=update.new_scenario,
            npc_name=update.interacting_npc_name,
            story_ended=update.story_ended,
            next_character_name=update.required_next_character_name,
        )

        # 1-2. Scene
        scene_id = update.selected_scene_id
        if update.new_scene is not None:
            effects.new_scene = await self._add_scene(txn, update.new_scene, services)
            scene_id = effects.new_scene.id
        self.select_scene(txn, scene_id)

        # 3. Vitals and progression
        vitals = payload.character_update
        effects.levelled_up = apply_vitals_delta(character, VitalsDelta(
            health=vitals.health,
            money=vitals.money,
            happiness=vitals.happiness,
            items=vitals.items,
            xp_gained=vitals.xp,
            stat_points_gained=vitals.unspent_stat_points,
        ))
        character.current_scenario = Scenario(
            description=update.new_scenario,
            interacting_npc_name=update.interacting_npc_name,
            required_next_character_name=update.required_next_character_name,
        )
        txn.touch("characters", reason=f"{character.name} vitals")

        # 4. Relationships
        cast = {c.id: c for c in story.characters}
        crossing: tuple[str, RelationshipTier] | None = None
        for delta in update.relationship_changes:
            result = adjust_relationship(cast, character.id, delta.target_character_id, delta.change)
            if result is None:
                continue
            effects.relationship_changes.append(
                RelationshipChange(character_id=delta.target_character_id, change=delta.change)
            )
            tier = crossed_threshold(*result)
            if tier is not None and crossing is None:
                crossing = (delta.target_character_id, tier)
        if effects.relationship_changes:
            txn.touch("characters", reason="relationship changes")
        if crossing is not None or update.relationship_event is not None:
            effects.relationship_event = await self._capture_event(
                story, character, effects.relationship_changes, crossing, update.relationship_event, services
            )

        # 5. Objectives
        new_objective = None
        if update.new_objective is not None:
            new_objective = (update.new_objective.description, update.new_objective.token_reward)
        effects.objectives = ledger.resolve(update.completed_objective_id, new_objective, plan)
        txn.set("objectives", ledger.objectives, reason="objective lifecycle")
        txn.set("interactions_until_next_objective", effects.objectives.countdown, reason="objective countdown")

        self.apply_setting(txn, update.new_location_name, update.story_progression_effects, update.time_of_day)
        return effects

    async def _add_scene(self, txn: StoryTransaction, proposal: NewScene, services: TurnServices) -> Scene:
        story = txn.working
        url = await services.visual_url(proposal.prompt, f"scenes/{story.id}")
        x, y = services.map_position()
        scene = Scene(name=proposal.name, prompt=proposal.prompt, url=url, style=story.style, x=x, y=y)
        txn.append("scenes", scene, reason=f"new scene {scene.name}")
        logger.info(f"Story {story.id} discovered scene {scene.name}")
        return scene

    async def _capture_event(
        self,
        story: Story,
        character: Character,
        changes: list[RelationshipChange],
        crossing: tuple[str, RelationshipTier] | None,
        payload: RelationshipEventPayload | None,
        services: TurnServices,
    ) -> RelationshipEvent | None:
        partner_id = crossing[0] if crossing else next(
            (c.character_id for c in changes if c.character_id != character.id), None
        )
        partner = story.get_character(partner_id)
        if partner is None:
            logger.warning("Relationship event without a partner character, skipped")
            return None

        if payload is not None:
            description, prompt = payload.description, payload.image_prompt
        else:
            description = f"The bond between {character.name} and {partner.name} has turned {crossing[1].value}."
            prompt = description
        image_url = await services.visual_url(prompt or description, f"events/{story.id}")
        return RelationshipEvent(
            character1_id=character.id,
            character2_id=partner.id,
            description=description,
            image_prompt=prompt,
            image_url=image_url,
        )


class ReducedNarrator(TurnStrategy):
    """Narrator mode: the story moves on, the economy stands still."""

    mode = NarrativeMode.NARRATOR

    async def play(self, txn, character_id, action, services, plan) -> TurnEffects:
        story = txn.working
        character = story.get_character(character_id)

        request = NarratorRequest(
            choice=action,
            character_name=character.name,
            scenes=self.scene_options(story),
            context=self.context(story, character),
        )
        payload = await services.generation.narrate_turn(request)

        self.select_scene(txn, payload.selected_scene_id)
        character.current_scenario = Scenario(description=payload.new_scenario)
        txn.touch("characters", reason=f"{character.name} scenario")
        self.apply_setting(txn, payload.new_location_name, payload.story_progression_effects, payload.time_of_day)
        return TurnEffects(outcome=payload.new_scenario, story_ended=payload.story_ended)


STRATEGIES: dict[NarrativeMode, TurnStrategy] = {
    NarrativeMode.IMMERSIVE: FullNarrator(),
    NarrativeMode.NARRATOR: ReducedNarrator(),
}
