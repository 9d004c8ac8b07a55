"""Daily activity streaks.

``next_streak`` is the whole rule: both timestamps are converted to the
configured day-boundary timezone and truncated to dates, then

* same day (or the clock went backwards): nothing changes;
* next day: the streak grows by one;
* two or more days later: the streak restarts at 1.

``StreakEngine.touch`` applies that rule to a stored record with a
compare-and-set write, re-reading when a concurrent request got there first.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from .errors import StoreUnavailable
from .records import StreakUpdate
from .store import ProgressStore

DEFAULT_MAX_RETRIES = 5


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Map a config value such as ``"UTC"`` or ``"Africa/Lagos"`` to a tzinfo."""
    if not name or name.strip().upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown day-boundary timezone {name!r}") from exc


def day_gap(previous: datetime, current: datetime, tz: tzinfo = timezone.utc) -> int:
    """Whole calendar days between two instants, as seen in ``tz``."""
    return (_local_date(current, tz) - _local_date(previous, tz)).days


def next_streak(
    streak_days: int,
    last_activity_at: Optional[datetime],
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Tuple[int, bool]:
    """Return ``(streak_days, changed)`` for activity at ``now``."""
    current = max(1, int(streak_days or 0))
    if last_activity_at is None:
        return 1, True

    gap = day_gap(last_activity_at, now, tz)
    if gap <= 0:
        return current, False
    if gap == 1:
        return current + 1, True
    return 1, True


def _local_date(value: datetime, tz: tzinfo):
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).date()


class StreakEngine:
    def __init__(self, store: ProgressStore, tz: tzinfo = timezone.utc, max_retries: int = DEFAULT_MAX_RETRIES):
        self._store = store
        self._tz = tz
        self._max_retries = max(1, int(max_retries))

    def touch(self, user_id: str, track: str, now: datetime) -> Optional[StreakUpdate]:
        """Record activity on one track; None when the user has no record there yet."""
        for attempt in range(self._max_retries):
            snapshot = self._store.get_progress(user_id, track)
            if snapshot is None:
                return None

            streak_days, changed = next_streak(snapshot.streak_days, snapshot.last_activity_at, now, self._tz)
            if not changed:
                return StreakUpdate(
                    track=track,
                    streak_days=snapshot.streak_days,
                    changed=False,
                    previous_streak_days=snapshot.streak_days,
                )

            if self._store.compare_and_set_streak(
                user_id,
                track,
                snapshot.streak_days,
                snapshot.last_activity_at,
                streak_days,
                now,
            ):
                return StreakUpdate(
                    track=track,
                    streak_days=streak_days,
                    changed=True,
                    previous_streak_days=snapshot.streak_days,
                )

            current_app.logger.debug(
                "Streak write for %s/%s lost a race (attempt %d), re-reading",
                user_id,
                track,
                attempt + 1,
            )

        raise StoreUnavailable(f"Streak for {track} kept changing underneath the update; retry later")

    def touch_all(self, user_id: str, now: datetime) -> List[StreakUpdate]:
        """Periodic activity check: one recomputation per track record the user has."""
        updates: List[StreakUpdate] = []
        for snapshot in self._store.list_progress(user_id):
            update = self.touch(user_id, snapshot.track, now)
            if update is not None:
                updates.append(update)
        return updates
