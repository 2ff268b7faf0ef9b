"""Exceptions raised by the engine."""


class StoryActionRejected(ValueError):
    """An action was refused before any state changed.

    The message is meant to be shown to the player as-is.
    """


class WriteConflictError(RuntimeError):
    """A record store precondition no longer held at write time."""

    def __init__(self, collection: str, doc_id: str, field: str, expected, actual):
        self.collection = collection
        self.doc_id = doc_id
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Write conflict on {collection}/{doc_id}: "
            f"{field} expected {expected!r}, found {actual!r}"
        )
