"""Plain records handed across the store boundary (identical for SQL and Supabase)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models import isoformat_or_none


@dataclass(frozen=True)
class ProgressSnapshot:
    user_id: str
    track: str
    xp_points: int
    streak_days: int
    lessons_completed: int
    last_activity_at: datetime

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "track": self.track,
            "xp_points": self.xp_points,
            "streak_days": self.streak_days,
            "lessons_completed": self.lessons_completed,
            "last_activity_at": isoformat_or_none(self.last_activity_at),
        }


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a guarded insert; `created=False` means already completed."""

    created: bool
    completion_id: Optional[str] = None


@dataclass(frozen=True)
class StreakUpdate:
    track: str
    streak_days: int
    changed: bool
    previous_streak_days: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "track": self.track,
            "streak_days": self.streak_days,
            "changed": self.changed,
        }


@dataclass(frozen=True)
class Achievement:
    id: str
    user_id: str
    achievement_type: str
    title: str
    description: str
    badge_name: str
    badge_icon: str
    xp_earned: int
    share_token: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "achievement_type": self.achievement_type,
            "title": self.title,
            "description": self.description,
            "badge_name": self.badge_name,
            "badge_icon": self.badge_icon,
            "xp_earned": self.xp_earned,
            "share_token": self.share_token,
            "created_at": isoformat_or_none(self.created_at),
        }


@dataclass(frozen=True)
class UncreditedCompletion:
    """A completion row whose XP has not reached the ledger yet."""

    kind: str
    completion_id: str
    user_id: str
    track: str
    xp_earned: int
    created_at: datetime


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    total_xp: int
    max_streak: int
    rank: int = 0

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "total_xp": self.total_xp,
            "max_streak": self.max_streak,
        }
