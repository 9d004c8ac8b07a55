"""JSON API for XP, streaks, completions and achievements."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from flask import Blueprint, current_app, jsonify, request

from .errors import ProgressServiceError
from .service import get_progress_engine, partial_credit

UserProvider = Callable[[], Optional[dict]]

WEEKLY_WINDOW = timedelta(days=7)


def create_progress_blueprint(current_user_provider: UserProvider) -> Blueprint:
    """Factory so the app can inject whatever identity provider fronts it."""

    bp = Blueprint("progress_api", __name__, url_prefix="/api/progress")

    def _require_user_id() -> Union[str, tuple]:
        user = current_user_provider()
        user_id = _extract_user_id(user) if user else None
        if user_id:
            return user_id
        return (
            jsonify({"status": "error", "error": "unauthorized", "reason": "Please log in to track your progress."}),
            401,
        )

    @bp.errorhandler(ProgressServiceError)
    def _handle_service_error(exc: ProgressServiceError):
        if exc.status_code >= 500:
            current_app.logger.warning("Progress API error: %s", exc)
        return jsonify(exc.payload), exc.status_code

    @bp.get("")
    def list_progress():
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        snapshots = get_progress_engine().get_progress(user_id)
        return jsonify(
            {
                "status": "ok",
                "total_xp": sum(snapshot.xp_points for snapshot in snapshots),
                "tracks": [snapshot.to_dict() for snapshot in snapshots],
            }
        )

    @bp.post("/xp")
    def award_xp():
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        payload = request.get_json(silent=True) or {}
        get_progress_engine().award_xp(user_id, payload.get("track"), payload.get("amount"))
        return jsonify({"status": "ok", "awarded": True})

    @bp.post("/lessons/<lesson_id>/complete")
    def complete_lesson(lesson_id: str):
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        payload = request.get_json(silent=True) or {}
        xp_reward = payload.get("xp_reward")
        created = get_progress_engine().complete_lesson(
            user_id,
            lesson_id,
            xp_reward,
            payload.get("track", "learning"),
        )
        if not created:
            return jsonify(
                {"status": "ok", "created": False, "message": "You've already completed this lesson!"}
            )
        return jsonify(
            {
                "status": "ok",
                "created": True,
                "xp_earned": int(xp_reward),
                "message": f"+{int(xp_reward)} XP earned! Lesson completed successfully!",
            }
        )

    @bp.post("/challenges/<challenge_id>/complete")
    def complete_daily_challenge(challenge_id: str):
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        payload = request.get_json(silent=True) or {}
        was_correct = _coerce_bool(payload.get("was_correct"))
        xp_reward = payload.get("xp_reward")
        engine = get_progress_engine()
        created = engine.complete_daily_challenge(
            user_id,
            challenge_id,
            was_correct,
            xp_reward,
            payload.get("track", "learning"),
        )
        if not created:
            return jsonify(
                {"status": "ok", "created": False, "message": "You've already answered today's challenge!"}
            )
        earned = partial_credit(int(xp_reward), was_correct)
        message = f"Correct! +{earned} XP earned!" if was_correct else f"+{earned} XP for trying!"
        return jsonify({"status": "ok", "created": True, "was_correct": was_correct, "xp_earned": earned, "message": message})

    @bp.post("/activity")
    def record_activity():
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        updates = get_progress_engine().record_activity(user_id)
        return jsonify({"status": "ok", "streaks": [update.to_dict() for update in updates]})

    @bp.get("/achievements")
    def list_achievements():
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        achievements = get_progress_engine().list_achievements(user_id)
        return jsonify({"status": "ok", "achievements": [item.to_dict() for item in achievements]})

    @bp.post("/achievements")
    def issue_achievement():
        user_id = _require_user_id()
        if not isinstance(user_id, str):
            return user_id
        payload = request.get_json(silent=True) or {}
        achievement = get_progress_engine().issue_achievement(
            user_id,
            payload.get("achievement_type"),
            payload.get("title"),
            payload.get("description"),
            payload.get("xp_earned", 0),
            payload.get("badge_index", 0),
        )
        if achievement is None:
            return jsonify({"status": "ok", "issued": False, "achievement": None}), 202
        return jsonify({"status": "ok", "issued": True, "achievement": achievement.to_dict()}), 201

    @bp.get("/achievements/share/<share_token>")
    def shared_achievement(share_token: str):
        achievement = get_progress_engine().find_achievement_by_share_token(share_token)
        if not achievement:
            return jsonify({"status": "error", "error": "not_found", "reason": "Achievement not found"}), 404
        return jsonify({"status": "ok", "achievement": achievement.to_dict()})

    @bp.get("/leaderboard")
    def leaderboard():
        period = (request.args.get("period") or "all_time").strip().lower()
        if period not in {"weekly", "all_time"}:
            return (
                jsonify({"status": "error", "error": "validation_error", "reason": "period must be weekly or all_time"}),
                400,
            )
        engine = get_progress_engine()
        since: Optional[datetime] = None
        if period == "weekly":
            since = engine.now() - WEEKLY_WINDOW
        entries = engine.leaderboard(request.args.get("limit", 50), since=since)
        return jsonify({"status": "ok", "period": period, "entries": [entry.to_dict() for entry in entries]})

    return bp


def _extract_user_id(user: dict) -> Optional[str]:
    for key in ("id", "user_id"):
        value = user.get(key)
        if value is not None:
            text = str(value).strip()
            if text:
                return text
    return None


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
