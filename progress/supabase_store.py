"""Supabase adapter: PostgREST tables plus the RPCs in supabase/migrations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from flask import current_app, has_app_context

from .catalog import CompletionKind, Track
from .errors import StoreUnavailable
from .records import Achievement, LeaderboardEntry, ProgressSnapshot, UncreditedCompletion
from .store import COMPLETION_ITEM_COLUMNS, ProgressStore

PROGRESS_TABLE = "user_progress"
ACHIEVEMENTS_TABLE = "user_achievements"
COMPLETION_TABLES: Dict[CompletionKind, str] = {
    CompletionKind.LESSON: "user_lesson_progress",
    CompletionKind.DAILY_CHALLENGE: "user_daily_challenge_progress",
}

INCREMENT_RPC = "progress_increment_xp"
CREDIT_RPC = "progress_credit_completion"
LEADERBOARD_RPC = "progress_leaderboard"

UNIQUE_VIOLATION = "23505"


class SupabaseProgressStore(ProgressStore):
    def __init__(self, client):
        self._client = client

    def insert_completion(self, kind, user_id, item_id, fields):
        payload = {
            "user_id": user_id,
            COMPLETION_ITEM_COLUMNS[kind]: item_id,
            **_serialize(fields),
        }
        try:
            resp = self._client.table(COMPLETION_TABLES[kind]).insert(payload).execute()
        except Exception as exc:
            if _is_supabase_conflict(exc):
                return None
            _log_supabase_warning(f"inserting {kind.value} completion", exc)
            raise StoreUnavailable(f"Could not record {kind.value} completion") from exc
        row = _first_row(resp.data)
        if not row or not row.get("id"):
            raise StoreUnavailable(f"Supabase did not return the {kind.value} completion id")
        return str(row["id"])

    def credit_completion(self, kind, completion_id, user_id, track, delta, now, lessons_increment=0):
        params = {
            "p_kind": kind.value,
            "p_completion_id": completion_id,
            "p_user_id": user_id,
            "p_track": track,
            "p_delta": delta,
            "p_lessons": lessons_increment,
            "p_now": _iso(now),
        }
        row = _first_row(self._rpc(CREDIT_RPC, params, f"crediting {kind.value} completion"))
        return _snapshot_from_row(row) if row else None

    def increment_xp(self, user_id, track, delta, now, lessons_increment=0):
        params = {
            "p_user_id": user_id,
            "p_track": track,
            "p_delta": delta,
            "p_lessons": lessons_increment,
            "p_now": _iso(now),
        }
        row = _first_row(self._rpc(INCREMENT_RPC, params, "incrementing xp"))
        if not row:
            raise StoreUnavailable("Supabase returned no progress row for the XP increment")
        return _snapshot_from_row(row)

    def get_progress(self, user_id, track):
        rows = self._select(
            self._client.table(PROGRESS_TABLE).select("*").eq("user_id", user_id).eq("track", track).limit(1),
            "fetching progress",
        )
        row = _first_row(rows)
        return _snapshot_from_row(row) if row else None

    def list_progress(self, user_id):
        rows = self._select(
            self._client.table(PROGRESS_TABLE).select("*").eq("user_id", user_id).order("track", desc=False),
            "listing progress",
        )
        return [_snapshot_from_row(row) for row in rows]

    def compare_and_set_streak(self, user_id, track, expected_streak, expected_last_activity, streak_days, now):
        query = (
            self._client.table(PROGRESS_TABLE)
            .update({"streak_days": streak_days, "last_activity_at": _iso(now), "updated_at": _iso(now)})
            .eq("user_id", user_id)
            .eq("track", track)
            .eq("streak_days", expected_streak)
        )
        if expected_last_activity is None:
            query = query.is_("last_activity_at", "null")
        else:
            query = query.eq("last_activity_at", _iso(expected_last_activity))
        return bool(self._select(query, "updating streak"))

    def insert_achievement(self, fields):
        try:
            resp = self._client.table(ACHIEVEMENTS_TABLE).insert(_serialize(fields)).execute()
        except Exception as exc:
            _log_supabase_warning("inserting achievement", exc)
            raise StoreUnavailable("Could not save achievement") from exc
        row = _first_row(resp.data)
        if not row:
            raise StoreUnavailable("Supabase returned no achievement row")
        return _achievement_from_row(row)

    def list_achievements(self, user_id):
        rows = self._select(
            self._client.table(ACHIEVEMENTS_TABLE).select("*").eq("user_id", user_id).order("created_at", desc=True),
            "listing achievements",
        )
        return [_achievement_from_row(row) for row in rows]

    def get_achievement_by_token(self, share_token):
        rows = self._select(
            self._client.table(ACHIEVEMENTS_TABLE).select("*").eq("share_token", share_token).limit(1),
            "fetching shared achievement",
        )
        row = _first_row(rows)
        return _achievement_from_row(row) if row else None

    def list_uncredited(self, kind, before, limit=200):
        rows = self._select(
            self._client.table(COMPLETION_TABLES[kind])
            .select("id,user_id,track,xp_earned,created_at")
            .is_("credited_at", "null")
            .lt("created_at", _iso(before))
            .order("created_at", desc=False)
            .limit(limit),
            f"scanning {kind.value} completions",
        )
        return [
            UncreditedCompletion(
                kind=kind.value,
                completion_id=str(row["id"]),
                user_id=str(row["user_id"]),
                track=row.get("track") or Track.LEARNING.value,
                xp_earned=_coerce_int(row.get("xp_earned")),
                created_at=_parse_datetime(row.get("created_at")),
            )
            for row in rows
        ]

    def leaderboard(self, limit, since=None):
        params = {"p_limit": limit, "p_since": _iso(since) if since is not None else None}
        rows = self._rpc(LEADERBOARD_RPC, params, "fetching leaderboard") or []
        if isinstance(rows, dict):
            rows = [rows]
        return [
            LeaderboardEntry(
                user_id=str(row["user_id"]),
                total_xp=_coerce_int(row.get("total_xp")),
                max_streak=_coerce_int(row.get("max_streak")),
                rank=index,
            )
            for index, row in enumerate(rows, start=1)
        ]

    def _select(self, query, action: str) -> List[Dict[str, Any]]:
        try:
            resp = query.execute()
        except Exception as exc:
            _log_supabase_warning(action, exc)
            raise StoreUnavailable(f"Supabase error while {action}") from exc
        data = resp.data or []
        return data if isinstance(data, list) else [data]

    def _rpc(self, name: str, params: Dict[str, Any], action: str):
        try:
            resp = self._client.rpc(name, params).execute()
        except Exception as exc:
            _log_supabase_warning(action, exc)
            raise StoreUnavailable(f"Supabase error while {action}") from exc
        return resp.data


def _is_supabase_conflict(exc: Exception) -> bool:
    if str(getattr(exc, "code", "") or "") == UNIQUE_VIOLATION:
        return True
    message = str(exc).lower()
    return "duplicate key value" in message or "unique constraint" in message


def _log_supabase_warning(action: str, exc: Exception) -> None:
    if not has_app_context():
        return
    logger = getattr(current_app, "logger", None)
    if logger:
        logger.warning("Progress Supabase error while %s: %s", action, exc)


def _first_row(data) -> Optional[Dict[str, Any]]:
    if not data:
        return None
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _iso(value) if isinstance(value, datetime) else value for key, value in fields.items()}


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.isoparse(str(value))
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _coerce_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _snapshot_from_row(row: Dict[str, Any]) -> ProgressSnapshot:
    return ProgressSnapshot(
        user_id=str(row["user_id"]),
        track=str(row["track"]),
        xp_points=_coerce_int(row.get("xp_points")),
        streak_days=_coerce_int(row.get("streak_days")),
        lessons_completed=_coerce_int(row.get("lessons_completed")),
        last_activity_at=_parse_datetime(row.get("last_activity_at")),
    )


def _achievement_from_row(row: Dict[str, Any]) -> Achievement:
    return Achievement(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        achievement_type=row.get("achievement_type") or "",
        title=row.get("title") or "",
        description=row.get("description") or "",
        badge_name=row.get("badge_name") or "",
        badge_icon=row.get("badge_icon") or "",
        xp_earned=_coerce_int(row.get("xp_earned")),
        share_token=row.get("share_token") or "",
        created_at=_parse_datetime(row.get("created_at")),
    )
