"""Database models for the progress service (SQL fallback when Supabase is off)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func

from extensions import db


def _new_id() -> str:
    return str(uuid.uuid4())


class UserProgress(db.Model):
    """XP balance and activity streak for one user on one guidance track."""

    __tablename__ = "user_progress"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    track = db.Column(db.String(20), nullable=False)

    xp_points = db.Column(db.Integer, default=0, nullable=False)
    streak_days = db.Column(db.Integer, default=1, nullable=False)
    lessons_completed = db.Column(db.Integer, default=0, nullable=False)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "track", name="uq_user_progress_user_track"),
        db.CheckConstraint("xp_points >= 0", name="ck_user_progress_xp_non_negative"),
    )

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<UserProgress user={self.user_id!r} track={self.track!r} xp={self.xp_points}>"


class LessonCompletion(db.Model):
    """One credited lesson per user; `credited_at` stays NULL until XP lands."""

    __tablename__ = "user_lesson_progress"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    lesson_id = db.Column(db.String(64), nullable=False)
    track = db.Column(db.String(20), nullable=False)
    xp_earned = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    credited_at = db.Column(db.DateTime(timezone=True), index=True, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),
    )


class DailyChallengeCompletion(db.Model):
    """One answered daily challenge per user (correct or not)."""

    __tablename__ = "user_daily_challenge_progress"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    challenge_id = db.Column(db.String(64), nullable=False)
    track = db.Column(db.String(20), nullable=False)
    was_correct = db.Column(db.Boolean, default=False, nullable=False)
    xp_earned = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    credited_at = db.Column(db.DateTime(timezone=True), index=True, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "challenge_id", name="uq_daily_challenge_user_challenge"),
    )


class UserAchievement(db.Model):
    """Append-only achievement log entry with a public share token."""

    __tablename__ = "user_achievements"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(64), index=True, nullable=False)
    achievement_type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    badge_name = db.Column(db.String(80), nullable=False)
    badge_icon = db.Column(db.String(40), nullable=False)
    xp_earned = db.Column(db.Integer, default=0, nullable=False)
    share_token = db.Column(db.String(64), unique=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<UserAchievement id={self.id} type={self.achievement_type!r} badge={self.badge_name!r}>"


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    aware = ensure_aware(value)
    return aware.isoformat() if aware else None
