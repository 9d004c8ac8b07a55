"""Persistence adapters for the progress engine.

Every write the engine needs is a single atomic step at the store:

* completions are created with a unique-key insert (a duplicate is a conflict,
  reported as ``None``, never an error);
* XP is applied with ``INSERT .. ON CONFLICT DO UPDATE SET xp = xp + delta``;
* crediting a completion flips ``credited_at`` and applies the increment in one
  transaction, so a completion is credited at most once;
* streaks move with a compare-and-set ``UPDATE .. WHERE`` on the values read.

``get_progress_store()`` picks the Supabase adapter when the app is configured
for it and falls back to the local SQL database otherwise.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Type

from flask import current_app, has_app_context
from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    DailyChallengeCompletion,
    LessonCompletion,
    UserAchievement,
    UserProgress,
    ensure_aware,
)

from .catalog import CompletionKind
from .errors import StoreUnavailable
from .records import Achievement, LeaderboardEntry, ProgressSnapshot, UncreditedCompletion

COMPLETION_MODELS: Dict[CompletionKind, Type[db.Model]] = {
    CompletionKind.LESSON: LessonCompletion,
    CompletionKind.DAILY_CHALLENGE: DailyChallengeCompletion,
}

COMPLETION_ITEM_COLUMNS: Dict[CompletionKind, str] = {
    CompletionKind.LESSON: "lesson_id",
    CompletionKind.DAILY_CHALLENGE: "challenge_id",
}


class ProgressStore:
    """Contract shared by the SQL and Supabase adapters."""

    def insert_completion(self, kind: CompletionKind, user_id: str, item_id: str, fields: dict) -> Optional[str]:
        """Insert a completion row; return its id, or None when the key already exists."""
        raise NotImplementedError

    def credit_completion(
        self,
        kind: CompletionKind,
        completion_id: str,
        user_id: str,
        track: str,
        delta: int,
        now: datetime,
        lessons_increment: int = 0,
    ) -> Optional[ProgressSnapshot]:
        """Mark a completion credited and apply its XP atomically; None if already credited."""
        raise NotImplementedError

    def increment_xp(
        self, user_id: str, track: str, delta: int, now: datetime, lessons_increment: int = 0
    ) -> ProgressSnapshot:
        raise NotImplementedError

    def get_progress(self, user_id: str, track: str) -> Optional[ProgressSnapshot]:
        raise NotImplementedError

    def list_progress(self, user_id: str) -> List[ProgressSnapshot]:
        raise NotImplementedError

    def compare_and_set_streak(
        self,
        user_id: str,
        track: str,
        expected_streak: int,
        expected_last_activity: datetime,
        streak_days: int,
        now: datetime,
    ) -> bool:
        raise NotImplementedError

    def insert_achievement(self, fields: dict) -> Achievement:
        raise NotImplementedError

    def list_achievements(self, user_id: str) -> List[Achievement]:
        raise NotImplementedError

    def get_achievement_by_token(self, share_token: str) -> Optional[Achievement]:
        raise NotImplementedError

    def list_uncredited(self, kind: CompletionKind, before: datetime, limit: int = 200) -> List[UncreditedCompletion]:
        raise NotImplementedError

    def leaderboard(self, limit: int, since: Optional[datetime] = None) -> List[LeaderboardEntry]:
        raise NotImplementedError


class SqlProgressStore(ProgressStore):
    """Flask-SQLAlchemy backed store (SQLite locally, Postgres in staging)."""

    def __init__(self, session=None):
        self._session = session or db.session

    # -- completions -------------------------------------------------------

    def insert_completion(self, kind, user_id, item_id, fields):
        model = COMPLETION_MODELS[kind]
        completion_id = str(uuid.uuid4())
        row = model(id=completion_id, user_id=user_id, **{COMPLETION_ITEM_COLUMNS[kind]: item_id}, **fields)
        self._session.add(row)
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            return None
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StoreUnavailable(f"Could not record {kind.value} completion") from exc
        return completion_id

    def credit_completion(self, kind, completion_id, user_id, track, delta, now, lessons_increment=0):
        model = COMPLETION_MODELS[kind]
        try:
            claimed = self._session.execute(
                update(model)
                .where(model.id == completion_id, model.credited_at.is_(None))
                .values(credited_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                self._session.rollback()
                return None
            snapshot = self._upsert_increment(user_id, track, delta, now, lessons_increment)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StoreUnavailable(f"Could not credit {kind.value} completion {completion_id}") from exc
        return snapshot

    def list_uncredited(self, kind, before, limit=200):
        model = COMPLETION_MODELS[kind]
        try:
            rows = (
                model.query.filter(model.credited_at.is_(None), model.created_at < before)
                .order_by(model.created_at.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not scan {kind.value} completions") from exc
        return [
            UncreditedCompletion(
                kind=kind.value,
                completion_id=row.id,
                user_id=row.user_id,
                track=row.track,
                xp_earned=int(row.xp_earned or 0),
                created_at=ensure_aware(row.created_at),
            )
            for row in rows
        ]

    # -- ledger ------------------------------------------------------------

    def increment_xp(self, user_id, track, delta, now, lessons_increment=0):
        try:
            snapshot = self._upsert_increment(user_id, track, delta, now, lessons_increment)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StoreUnavailable("Could not apply XP") from exc
        return snapshot

    def _upsert_increment(self, user_id, track, delta, now, lessons_increment):
        table = UserProgress.__table__
        dialect = self._session.get_bind().dialect.name
        insert_fn = postgresql_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(table).values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            track=track,
            xp_points=delta,
            streak_days=1,
            lessons_completed=lessons_increment,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.track],
            set_={
                "xp_points": table.c.xp_points + delta,
                "lessons_completed": table.c.lessons_completed + lessons_increment,
                "updated_at": now,
            },
        ).returning(
            table.c.user_id,
            table.c.track,
            table.c.xp_points,
            table.c.streak_days,
            table.c.lessons_completed,
            table.c.last_activity_at,
        )
        return _snapshot_from_row(self._session.execute(stmt).one())

    # -- streaks -----------------------------------------------------------

    def get_progress(self, user_id, track):
        try:
            row = (
                UserProgress.query.filter_by(user_id=user_id, track=track)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not load progress") from exc
        return _snapshot_from_row(row) if row else None

    def list_progress(self, user_id):
        try:
            rows = (
                UserProgress.query.filter_by(user_id=user_id)
                .order_by(UserProgress.track.asc())
                .populate_existing()
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not load progress") from exc
        return [_snapshot_from_row(row) for row in rows]

    def compare_and_set_streak(self, user_id, track, expected_streak, expected_last_activity, streak_days, now):
        try:
            result = self._session.execute(
                update(UserProgress)
                .where(
                    UserProgress.user_id == user_id,
                    UserProgress.track == track,
                    UserProgress.streak_days == expected_streak,
                    UserProgress.last_activity_at == expected_last_activity,
                )
                .values(streak_days=streak_days, last_activity_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StoreUnavailable("Could not update streak") from exc
        return result.rowcount == 1

    # -- achievements ------------------------------------------------------

    def insert_achievement(self, fields):
        row = UserAchievement(id=str(uuid.uuid4()), **fields)
        self._session.add(row)
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StoreUnavailable("Could not save achievement") from exc
        return _achievement_from_row(row)

    def list_achievements(self, user_id):
        try:
            rows = (
                UserAchievement.query.filter_by(user_id=user_id)
                .order_by(UserAchievement.created_at.desc(), UserAchievement.id.desc())
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not load achievements") from exc
        return [_achievement_from_row(row) for row in rows]

    def get_achievement_by_token(self, share_token):
        try:
            row = UserAchievement.query.filter_by(share_token=share_token).first()
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not load achievement") from exc
        return _achievement_from_row(row) if row else None

    # -- leaderboard -------------------------------------------------------

    def leaderboard(self, limit, since=None):
        total_xp = func.sum(UserProgress.xp_points).label("total_xp")
        max_streak = func.max(UserProgress.streak_days).label("max_streak")
        query = self._session.query(UserProgress.user_id, total_xp, max_streak)
        if since is not None:
            query = query.filter(UserProgress.last_activity_at >= since)
        try:
            rows = (
                query.group_by(UserProgress.user_id)
                .order_by(total_xp.desc(), UserProgress.user_id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailable("Could not load leaderboard") from exc
        return [
            LeaderboardEntry(
                user_id=row.user_id,
                total_xp=int(row.total_xp or 0),
                max_streak=int(row.max_streak or 0),
                rank=index,
            )
            for index, row in enumerate(rows, start=1)
        ]


def get_progress_store() -> ProgressStore:
    """Supabase when enabled and configured, the local database otherwise."""
    client = _get_supabase_client()
    if client:
        from .supabase_store import SupabaseProgressStore

        return SupabaseProgressStore(client)
    return SqlProgressStore()


def _get_supabase_client():
    if not has_app_context():
        return None
    if not current_app.config.get("USE_SUPABASE"):
        return None
    client = current_app.config.get("SUPABASE_CLIENT")
    return client if client else None


def _snapshot_from_row(row) -> ProgressSnapshot:
    return ProgressSnapshot(
        user_id=row.user_id,
        track=row.track,
        xp_points=int(row.xp_points),
        streak_days=int(row.streak_days),
        lessons_completed=int(row.lessons_completed or 0),
        last_activity_at=ensure_aware(row.last_activity_at),
    )


def _achievement_from_row(row: UserAchievement) -> Achievement:
    return Achievement(
        id=row.id,
        user_id=row.user_id,
        achievement_type=row.achievement_type,
        title=row.title,
        description=row.description or "",
        badge_name=row.badge_name,
        badge_icon=row.badge_icon,
        xp_earned=int(row.xp_earned or 0),
        share_token=row.share_token,
        created_at=ensure_aware(row.created_at),
    )
