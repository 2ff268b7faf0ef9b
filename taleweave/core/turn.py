"""TurnResult dataclass for representing a completed turn."""

from dataclasses import dataclass

from ..enums import StoryStatus
from .story import HistoryEntry, Objective, RelationshipEvent, Story


@dataclass
class TurnResult:
    """Result of processing a single action."""

    story: Story
    status: StoryStatus
    entry: HistoryEntry | None = None
    levelled_up: bool = False
    completed_objective: Objective | None = None
    created_objective: Objective | None = None
    reward: int = 0
    reward_withheld: bool = False  # objective done on the free tier
    relationship_event: RelationshipEvent | None = None
    chapter_summary: str | None = None
    next_character_id: str | None = None
    suggested_next_character: str | None = None  # narrative hint, not enforced

    @property
    def ended(self) -> bool:
        return self.status == StoryStatus.ENDED
