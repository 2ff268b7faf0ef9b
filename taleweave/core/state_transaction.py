"""
Turn transactions over a story.

A transaction works on a deep copy of the story and records a change log
of top-level fields. Nothing outside the transaction sees the working
copy until ``commit()`` hands the changed fields to the committer (the
sync layer), so a failure anywhere before that leaves the cached and
persisted story untouched.

Usage:
    txn = StoryTransaction(story, committer, "Turn: open the gate")
    with txn:
        txn.set("location_name", "Gatehouse", reason="scene change")
        txn.append("story_history", entry, reason="turn log")
    await txn.commit()
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .story import Story

logger = logging.getLogger(__name__)

# (story, changed_fields, expect) -> awaitable
Committer = Callable[[Story, dict[str, Any], dict[str, Any] | None], Awaitable[Any]]


class ChangeOperation(Enum):
    """Types of state change operations."""
    SET = "set"           # Direct assignment
    APPEND = "append"     # Array append
    TOUCH = "touch"       # Nested mutation made in place on the working copy


class StateChange(BaseModel):
    """A single entry in the change log."""
    model_config = ConfigDict(use_enum_values=True, arbitrary_types_allowed=True)

    path: str                           # "characters", "story_status"
    operation: ChangeOperation
    before: Any = None
    after: Any = None
    reason: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class StoryTransaction:
    """All-or-nothing set of changes to one story."""

    def __init__(self, story: Story, committer: Committer, description: str = ""):
        self.original = story
        self.working = story.model_copy(deep=True)
        self.committer = committer
        self.description = description
        self.changes: list[StateChange] = []
        self.committed = False
        self.rolled_back = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        return False

    def _check_open(self) -> None:
        if self.committed:
            raise RuntimeError("Transaction already committed")
        if self.rolled_back:
            raise RuntimeError("Transaction already rolled back")

    # ==== Change Methods ====

    def set(self, path: str, value: Any, reason: str = "") -> "StoryTransaction":
        """Set a top-level field."""
        self._check_open()
        before = getattr(self.working, path)
        setattr(self.working, path, value)
        self.changes.append(StateChange(
            path=path, operation=ChangeOperation.SET, before=before, after=value, reason=reason
        ))
        return self

    def append(self, path: str, item: Any, reason: str = "") -> "StoryTransaction":
        """Append to a list field."""
        self._check_open()
        getattr(self.working, path).append(item)
        self.changes.append(StateChange(
            path=path, operation=ChangeOperation.APPEND, after=item, reason=reason
        ))
        return self

    def touch(self, path: str, reason: str = "") -> "StoryTransaction":
        """Log an in-place mutation of a nested field (e.g. a character's vitals)."""
        self._check_open()
        self.changes.append(StateChange(path=path, operation=ChangeOperation.TOUCH, reason=reason))
        return self

    # ==== Commit / Rollback ====

    def changed_fields(self) -> dict[str, Any]:
        """Top-level fields (wire names) whose value differs from the original."""
        before = self.original.to_document()
        after = self.working.to_document()
        return {k: v for k, v in after.items() if before.get(k) != v}

    async def commit(self, expect: dict[str, Any] | None = None) -> Story:
        """Hand the changed fields to the committer.

        Raises whatever the committer raises; the transaction is then
        rolled back and the original story is still the visible one.
        """
        self._check_open()
        fields = self.changed_fields()
        try:
            if fields:
                await self.committer(self.working, fields, expect)
        except Exception:
            self.rollback()
            raise
        self.committed = True
        logger.info(f"[Transaction] {self.description}: committed {sorted(fields)}")
        logger.debug(f"[Transaction] {self.description} change log: {self.get_change_log()}")
        return self.working

    def rollback(self):
        """Discard the working copy."""
        if self.rolled_back or self.committed:
            return
        self.rolled_back = True
        logger.info(f"[Transaction] {self.description}: rolled back after {len(self.changes)} changes")

    # ==== Utility ====

    def get_change_log(self) -> list[dict[str, Any]]:
        """Get the change log as a list of dicts."""
        return [
            {"path": c.path, "operation": c.operation, "reason": c.reason, "timestamp": c.timestamp}
            for c in self.changes
        ]

    def __repr__(self) -> str:
        status = "committed" if self.committed else ("rolled_back" if self.rolled_back else "pending")
        return f"<StoryTransaction '{self.description}' {len(self.changes)} changes, {status}>"
