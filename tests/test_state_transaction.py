"""Tests for StoryTransaction.

Validates:
1. Changes stay on the working copy until commit
2. Only changed top-level fields reach the committer
3. A failing committer rolls back and re-raises
4. A committed or rolled back transaction refuses further changes
"""

import asyncio

import pytest

from taleweave.core.state_transaction import ChangeOperation, StoryTransaction
from taleweave.core.story import Character, Objective, Story
from taleweave.enums import StoryStatus


class RecordingCommitter:
    def __init__(self, error: Exception | None = None):
        self.calls = []
        self.error = error

    async def __call__(self, story, fields, expect):
        self.calls.append((story, fields, expect))
        if self.error is not None:
            raise self.error
        return story


@pytest.fixture
def story():
    return Story(id="s1", name="Tale", characters=[Character(id="ada", name="Ada")])


def test_working_copy_is_isolated(story):
    txn = StoryTransaction(story, RecordingCommitter())
    with txn:
        txn.set("location_name", "Gatehouse")
        txn.working.characters[0].health = 40
    assert story.location_name != "Gatehouse"
    assert story.characters[0].health == 100


def test_commit_sends_only_changed_fields(story):
    committer = RecordingCommitter()
    txn = StoryTransaction(story, committer, "Move")

    async def run():
        with txn:
            txn.set("location_name", "Gatehouse", reason="moved")
            txn.set("story_status", story.story_status)
            txn.working.characters[0].happiness = 10
            txn.touch("characters")
            return await txn.commit(expect={"turnCharacterId": None})

    committed = asyncio.run(run())
    assert committed is txn.working
    (sent, fields, expect), = committer.calls
    assert set(fields) == {"locationName", "characters"}
    assert expect == {"turnCharacterId": None}
    assert txn.committed


def test_no_changes_skips_committer(story):
    committer = RecordingCommitter()
    txn = StoryTransaction(story, committer)
    asyncio.run(txn.commit())
    assert committer.calls == []


def test_failed_commit_rolls_back(story):
    txn = StoryTransaction(story, RecordingCommitter(error=RuntimeError("store down")))

    async def run():
        with txn:
            txn.set("story_status", StoryStatus.ENDED)
            await txn.commit()

    with pytest.raises(RuntimeError):
        asyncio.run(run())
    assert txn.rolled_back
    assert story.story_status == StoryStatus.IDLE


def test_closed_transaction_refuses_changes(story):
    txn = StoryTransaction(story, RecordingCommitter())
    txn.rollback()
    with pytest.raises(RuntimeError):
        txn.set("plot", "late")


def test_change_log(story):
    txn = StoryTransaction(story, RecordingCommitter())
    txn.set("current_scene_index", 2, reason="skip ahead")
    txn.append("objectives", Objective(description="Find the key"), reason="new objective")
    log = txn.get_change_log()
    assert [entry["operation"] for entry in log] == [ChangeOperation.SET.value, ChangeOperation.APPEND.value]
    assert txn.working.current_scene_index == 2
