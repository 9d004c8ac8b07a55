"""Progress engine: the operation surface used by the HTTP layer and scripts.

Identity is always passed in explicitly; the engine keeps no session state and
no cross-call caches. Build one per request with ``get_progress_engine()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from flask import current_app

from .achievements import AchievementIssuer
from .catalog import AchievementType, CompletionKind, Track, parse_track
from .errors import PartialFailure, StoreUnavailable, ValidationError
from .guard import CompletionGuard
from .ledger import XPLedger, validate_delta
from .records import Achievement, LeaderboardEntry, ProgressSnapshot, StreakUpdate
from .store import ProgressStore, get_progress_store
from .streak import DEFAULT_MAX_RETRIES, StreakEngine, resolve_timezone

DEFAULT_STREAK_MILESTONES = (3, 7, 14, 30)
MAX_IDENTIFIER_LENGTH = 64
MAX_LEADERBOARD_SIZE = 100

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def partial_credit(xp_reward: int, was_correct: bool) -> int:
    """Full reward for a correct answer, a third (rounded down) for trying."""
    return xp_reward if was_correct else xp_reward // 3


class ProgressEngine:
    def __init__(
        self,
        store: ProgressStore,
        *,
        clock: Optional[Clock] = None,
        day_boundary_tz=timezone.utc,
        streak_max_retries: int = DEFAULT_MAX_RETRIES,
        streak_milestones: Iterable[int] = DEFAULT_STREAK_MILESTONES,
    ):
        self.store = store
        self.guard = CompletionGuard(store)
        self.ledger = XPLedger(store)
        self.streaks = StreakEngine(store, tz=day_boundary_tz, max_retries=streak_max_retries)
        self.achievements = AchievementIssuer(store)
        self._clock = clock or utcnow
        self._milestones = tuple(sorted({int(day) for day in streak_milestones if int(day) > 0}))

    # -- XP ------------------------------------------------------------------

    def award_xp(self, user_id: str, track, amount) -> bool:
        user_id = _require_identifier(user_id, "user_id")
        track = parse_track(track)
        amount = validate_delta(amount)
        now = self.now()

        self.ledger.award(user_id, track, amount, now)
        try:
            update = self.streaks.touch(user_id, track.value, now)
        except StoreUnavailable as exc:
            # XP is already committed; the next activity on this track repairs the streak.
            current_app.logger.error(
                "XP award of %d to %s/%s applied but streak not updated (%s)",
                amount,
                user_id,
                track.value,
                exc,
            )
            return True
        self._issue_streak_milestone(user_id, update, now)
        return True

    def complete_lesson(self, user_id: str, lesson_id: str, xp_reward, track) -> bool:
        """Credit a lesson once; False when this user already completed it."""
        user_id = _require_identifier(user_id, "user_id")
        lesson_id = _require_identifier(lesson_id, "lesson_id")
        track = parse_track(track)
        xp_reward = validate_delta(xp_reward, field="xp_reward")
        return self._complete(CompletionKind.LESSON, user_id, lesson_id, track, xp_reward, {})

    def complete_daily_challenge(
        self,
        user_id: str,
        challenge_id: str,
        was_correct: bool,
        xp_reward,
        track=Track.LEARNING,
    ) -> bool:
        """Credit today's challenge once, with partial XP for a wrong answer."""
        user_id = _require_identifier(user_id, "user_id")
        challenge_id = _require_identifier(challenge_id, "challenge_id")
        track = parse_track(track)
        xp_reward = validate_delta(xp_reward, field="xp_reward")
        was_correct = bool(was_correct)
        earned = partial_credit(xp_reward, was_correct)
        return self._complete(
            CompletionKind.DAILY_CHALLENGE,
            user_id,
            challenge_id,
            track,
            earned,
            {"was_correct": was_correct},
        )

    def _complete(
        self,
        kind: CompletionKind,
        user_id: str,
        item_id: str,
        track: Track,
        xp_earned: int,
        extra: dict,
    ) -> bool:
        now = self.now()
        record = {"track": track.value, "xp_earned": xp_earned, "created_at": now, **extra}
        result = self.guard.try_complete(kind, user_id, item_id, record)
        if not result.created:
            current_app.logger.info("%s %s already completed by %s", kind.value, item_id, user_id)
            return False

        try:
            self.ledger.credit(kind, result.completion_id, user_id, track, xp_earned, now)
        except StoreUnavailable as exc:
            current_app.logger.error(
                "%s completion %s for %s recorded but not credited (%s); left for reconciliation",
                kind.value,
                result.completion_id,
                user_id,
                exc,
            )
            raise PartialFailure(kind.value, result.completion_id, stage="credit") from exc

        try:
            update = self.streaks.touch(user_id, track.value, now)
        except StoreUnavailable as exc:
            current_app.logger.error(
                "%s completion %s for %s credited but streak not updated (%s)",
                kind.value,
                result.completion_id,
                user_id,
                exc,
            )
            raise PartialFailure(kind.value, result.completion_id, stage="streak") from exc

        self._issue_streak_milestone(user_id, update, now)
        return True

    # -- streaks -------------------------------------------------------------

    def record_activity(self, user_id: str) -> List[StreakUpdate]:
        """Periodic activity check across every track the user has progress on."""
        user_id = _require_identifier(user_id, "user_id")
        now = self.now()
        updates = self.streaks.touch_all(user_id, now)
        for update in updates:
            self._issue_streak_milestone(user_id, update, now)
        return updates

    def get_progress(self, user_id: str) -> List[ProgressSnapshot]:
        user_id = _require_identifier(user_id, "user_id")
        return self.store.list_progress(user_id)

    def leaderboard(self, limit: int = 50, since: Optional[datetime] = None) -> List[LeaderboardEntry]:
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError("limit must be a number", field="limit") from None
        limit = max(1, min(limit, MAX_LEADERBOARD_SIZE))
        return self.store.leaderboard(limit, since=since)

    # -- achievements --------------------------------------------------------

    def issue_achievement(
        self,
        user_id: str,
        achievement_type,
        title: str,
        description: str,
        xp_earned,
        badge_index: int = 0,
    ) -> Optional[Achievement]:
        user_id = _require_identifier(user_id, "user_id")
        return self.achievements.issue(
            user_id,
            achievement_type,
            title,
            description,
            xp_earned,
            badge_index,
            self.now(),
        )

    def list_achievements(self, user_id: str) -> List[Achievement]:
        """Most recent first."""
        user_id = _require_identifier(user_id, "user_id")
        return self.store.list_achievements(user_id)

    def find_achievement_by_share_token(self, share_token: str) -> Optional[Achievement]:
        return self.achievements.find_by_share_token(share_token)

    def _issue_streak_milestone(self, user_id: str, update: Optional[StreakUpdate], now: datetime):
        """Each milestone title is issued at most once per user, whichever track reached it."""
        if update is None or not update.changed:
            return None
        if update.streak_days not in self._milestones:
            return None
        days = update.streak_days
        title = f"{days}-Day Streak"
        try:
            earned = self.store.list_achievements(user_id)
        except StoreUnavailable as exc:
            current_app.logger.warning("Skipping %s milestone for %s: %s", title, user_id, exc)
            return None
        if any(item.achievement_type == AchievementType.STREAK.value and item.title == title for item in earned):
            return None
        return self.achievements.issue(
            user_id,
            AchievementType.STREAK,
            title,
            f"Kept learning {days} days in a row on the {update.track.replace('_', ' ')} track.",
            0,
            self._milestones.index(days),
            now,
        )

    def now(self) -> datetime:
        """Current time from the configured clock, in UTC."""
        value = self._clock()
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def get_progress_engine() -> ProgressEngine:
    """Engine wired from the current app's configuration."""
    config = current_app.config
    return ProgressEngine(
        get_progress_store(),
        clock=config.get("PROGRESS_CLOCK"),
        day_boundary_tz=resolve_timezone(config.get("PROGRESS_DAY_BOUNDARY_TZ")),
        streak_max_retries=config.get("PROGRESS_STREAK_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        streak_milestones=config.get("PROGRESS_STREAK_MILESTONES") or DEFAULT_STREAK_MILESTONES,
    )


def _require_identifier(value, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    if len(text) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(f"{field} is too long", field=field)
    return text
