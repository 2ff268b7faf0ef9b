"""Objective lifecycle: countdown, creation, one-shot completion and rewards."""

import logging
import random
from dataclasses import dataclass

from ..enums import MembershipPlan, ObjectiveStatus
from .story import Objective, draw_objective_countdown

logger = logging.getLogger(__name__)


@dataclass
class ObjectiveResolution:
    """What happened to objectives during one turn."""
    completed: Objective | None = None
    created: Objective | None = None
    reward: int = 0               # tokens owed to the account
    reward_withheld: bool = False  # completed on the free tier (upsell)
    countdown: int = 0


def earns_rewards(plan: MembershipPlan) -> bool:
    return plan != MembershipPlan.FREE


class ObjectiveLedger:
    """Works on a copy of a story's objectives for the duration of one turn.

    At most one completion and one creation are accepted per ledger.
    Objectives are never deleted, only moved from active to completed.
    """

    def __init__(
        self,
        objectives: list[Objective],
        countdown: int,
        rng: random.Random | None = None,
    ):
        self.objectives = [o.model_copy() for o in objectives]
        self.countdown = countdown
        self.must_create = False
        self._rng = rng
        self._completed: Objective | None = None
        self._created: Objective | None = None

    def active(self) -> list[Objective]:
        return [o for o in self.objectives if o.status == ObjectiveStatus.ACTIVE]

    def tick(self) -> bool:
        """Count down one interaction. Returns True when an objective is due."""
        self.countdown = max(0, self.countdown - 1)
        self.must_create = self.countdown <= 0
        return self.must_create

    def complete(self, objective_id: str) -> Objective | None:
        """Flip an active objective to completed. Repeats and unknown ids are no-ops."""
        if self._completed is not None:
            logger.warning(f"Second completion in one turn ignored: {objective_id}")
            return None
        objective = next((o for o in self.objectives if o.id == objective_id), None)
        if objective is None:
            logger.warning(f"Completion for unknown objective ignored: {objective_id}")
            return None
        if objective.status == ObjectiveStatus.COMPLETED:
            return None
        objective.status = ObjectiveStatus.COMPLETED
        self._completed = objective
        return objective

    def create(self, description: str, token_reward: int = 1) -> Objective | None:
        if self._created is not None:
            return None
        objective = Objective(description=description, token_reward=max(0, token_reward))
        self.objectives.append(objective)
        self._created = objective
        if self.must_create:
            self.countdown = draw_objective_countdown(self._rng)
            self.must_create = False
        return objective

    def resolve(
        self,
        completed_id: str | None,
        new_objective: tuple[str, int] | None,
        plan: MembershipPlan,
    ) -> ObjectiveResolution:
        """Apply one turn's objective effects and work out the reward."""
        resolution = ObjectiveResolution()

        if completed_id:
            resolution.completed = self.complete(completed_id)
            if resolution.completed is not None:
                if earns_rewards(plan):
                    resolution.reward = resolution.completed.token_reward
                else:
                    resolution.reward_withheld = True

        if new_objective is not None:
            description, token_reward = new_objective
            resolution.created = self.create(description, token_reward)
        elif self.must_create:
            # Countdown stays at zero so the next turn asks again
            logger.warning("Objective was due but none was generated; retrying next turn")

        resolution.countdown = self.countdown
        return resolution
