"""Achievement issuance: badge lookup, share tokens, best-effort append."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Optional

from flask import current_app

from .catalog import badge_for, parse_achievement_type
from .errors import AchievementIssuanceFailure, ValidationError
from .ledger import validate_delta
from .records import Achievement
from .store import ProgressStore

SHARE_TOKEN_BYTES = 16


def new_share_token() -> str:
    return secrets.token_hex(SHARE_TOKEN_BYTES)


class AchievementIssuer:
    def __init__(self, store: ProgressStore):
        self._store = store

    def issue(
        self,
        user_id: str,
        achievement_type,
        title: str,
        description: str,
        xp_earned,
        badge_index: int,
        now: datetime,
    ) -> Optional[Achievement]:
        """Append an achievement; store failures are logged and yield None."""
        achievement_type = parse_achievement_type(achievement_type)
        xp_earned = validate_delta(xp_earned, field="xp_earned")
        title = (title or "").strip()
        if not title:
            raise ValidationError("Achievement title is required", field="title")
        try:
            badge_index = int(badge_index or 0)
        except (TypeError, ValueError):
            raise ValidationError("badge_index must be a number", field="badge_index") from None

        badge_name, badge_icon = badge_for(achievement_type, badge_index)
        fields = {
            "user_id": user_id,
            "achievement_type": achievement_type.value,
            "title": title,
            "description": (description or "").strip(),
            "badge_name": badge_name,
            "badge_icon": badge_icon,
            "xp_earned": xp_earned,
            "share_token": new_share_token(),
            "created_at": now,
        }
        try:
            return self._store.insert_achievement(fields)
        except Exception as exc:  # best-effort: never fails the credit path
            failure = AchievementIssuanceFailure(f"{achievement_type.value} achievement for {user_id}: {exc}")
            current_app.logger.warning("Achievement issuance failed: %s", failure)
            return None

    def find_by_share_token(self, share_token: str) -> Optional[Achievement]:
        token = (share_token or "").strip()
        if not token:
            return None
        return self._store.get_achievement_by_token(token)
