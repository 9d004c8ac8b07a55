"""At-most-once completion records for lessons and daily challenges."""

from __future__ import annotations

from .catalog import CompletionKind
from .records import CompletionResult
from .store import ProgressStore


class CompletionGuard:
    def __init__(self, store: ProgressStore):
        self._store = store

    def try_complete(self, kind: CompletionKind, user_id: str, item_id: str, record: dict) -> CompletionResult:
        """Insert the completion in one unique-key write.

        No existence lookup happens first; the store's unique constraint decides
        and a rejected insert comes back as ``created=False``.
        """
        completion_id = self._store.insert_completion(kind, user_id, item_id, record)
        if completion_id is None:
            return CompletionResult(created=False)
        return CompletionResult(created=True, completion_id=completion_id)
