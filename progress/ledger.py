"""XP balances per (user, track), applied only through atomic increments."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .catalog import CompletionKind, Track, parse_track
from .errors import ValidationError
from .records import ProgressSnapshot
from .store import ProgressStore


def validate_delta(value, field: str = "amount") -> int:
    """XP deltas are non-negative integers; bools and floats are rejected."""
    if isinstance(value, (bool, float)):
        raise ValidationError(f"{field} must be a whole number of XP", field=field)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number of XP", field=field) from None
    if value < 0:
        raise ValidationError(f"{field} must not be negative", field=field)
    return value


class XPLedger:
    def __init__(self, store: ProgressStore):
        self._store = store

    def award(self, user_id: str, track, delta, now: datetime) -> ProgressSnapshot:
        """Add ``delta`` XP, creating the track record on first award."""
        track = parse_track(track)
        delta = validate_delta(delta)
        return self._store.increment_xp(user_id, track.value, delta, now)

    def credit(
        self,
        kind: CompletionKind,
        completion_id: str,
        user_id: str,
        track: Track,
        delta: int,
        now: datetime,
    ) -> Optional[ProgressSnapshot]:
        """Apply a recorded completion's XP; None when it was already credited."""
        delta = validate_delta(delta, field="xp_earned")
        lessons_increment = 1 if kind is CompletionKind.LESSON else 0
        return self._store.credit_completion(
            kind,
            completion_id,
            user_id,
            parse_track(track).value,
            delta,
            now,
            lessons_increment=lessons_increment,
        )
