"""Closed enumerations: guidance tracks, completion kinds and badge tables."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from .errors import ValidationError


class Track(str, Enum):
    LEARNING = "learning"
    MENTORSHIP = "mentorship"
    EXAM_PREP = "exam_prep"
    SIWES = "siwes"
    ACADEMIC = "academic"
    CAREER = "career"


class CompletionKind(str, Enum):
    LESSON = "lesson"
    DAILY_CHALLENGE = "daily_challenge"


class AchievementType(str, Enum):
    MODULE_COMPLETION = "module_completion"
    ASSESSMENT_PASS = "assessment_pass"
    DAILY_CHALLENGE = "daily_challenge"
    COURSE_COMPLETION = "course_completion"
    STREAK = "streak"
    REFERRAL = "referral"


# Progressive tiers: index 0 is the first badge earned, the last entry caps the table.
BADGE_NAMES: Dict[AchievementType, Tuple[str, ...]] = {
    AchievementType.MODULE_COMPLETION: ("Security Initiate", "Protocol Master", "Defense Scholar", "Cyber Guardian"),
    AchievementType.ASSESSMENT_PASS: ("Quick Learner", "Sharp Mind", "Knowledge Keeper", "Assessment Ace"),
    AchievementType.DAILY_CHALLENGE: ("Daily Defender", "Challenge Champion", "Streak Warrior", "Quiz Master"),
    AchievementType.COURSE_COMPLETION: ("Course Graduate", "Certified Learner", "Path Completer", "Security Expert"),
    AchievementType.STREAK: ("Consistency King", "Dedication Master", "Streak Legend", "Unstoppable"),
    AchievementType.REFERRAL: ("Community Builder", "Mentor Rank I", "Mentor Rank II", "Community Leader"),
}

BADGE_ICONS: Dict[AchievementType, str] = {
    AchievementType.MODULE_COMPLETION: "shield",
    AchievementType.ASSESSMENT_PASS: "target",
    AchievementType.DAILY_CHALLENGE: "trophy",
    AchievementType.COURSE_COMPLETION: "award",
    AchievementType.STREAK: "flame",
    AchievementType.REFERRAL: "zap",
}


def parse_track(value) -> Track:
    if isinstance(value, Track):
        return value
    try:
        return Track(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(track.value for track in Track)
        raise ValidationError(f"Unknown track {value!r}; expected one of: {allowed}", field="track") from None


def parse_achievement_type(value) -> AchievementType:
    if isinstance(value, AchievementType):
        return value
    try:
        return AchievementType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown achievement type {value!r}", field="achievement_type") from None


def badge_for(achievement_type: AchievementType, badge_index: int) -> Tuple[str, str]:
    """Return (badge_name, badge_icon), clamping the tier into the table."""
    names = BADGE_NAMES[achievement_type]
    index = max(0, min(int(badge_index), len(names) - 1))
    return names[index], BADGE_ICONS[achievement_type]
