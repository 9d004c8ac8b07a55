from datetime import datetime, timedelta, timezone

import pytest

from models import DailyChallengeCompletion, LessonCompletion
from progress.errors import PartialFailure, StoreUnavailable, ValidationError
from progress.service import ProgressEngine, partial_credit
from progress.store import SqlProgressStore


class FailingCreditStore(SqlProgressStore):
    def credit_completion(self, *args, **kwargs):
        raise StoreUnavailable("connection reset by peer")


class FailingAchievementStore(SqlProgressStore):
    def insert_achievement(self, fields):
        raise StoreUnavailable("achievements table offline")


class FailingStreakStore(SqlProgressStore):
    def compare_and_set_streak(self, *args, **kwargs):
        raise StoreUnavailable("streak update timed out")


def _xp(engine, user_id="user-1", track="learning") -> int:
    snapshot = engine.store.get_progress(user_id, track)
    return snapshot.xp_points if snapshot else 0


# -- completions -------------------------------------------------------------


def test_complete_lesson_twice_credits_once(engine) -> None:
    assert engine.complete_lesson("user-1", "lesson-1", 50, "learning") is True
    after_first = _xp(engine)

    assert engine.complete_lesson("user-1", "lesson-1", 50, "learning") is False
    assert _xp(engine) == after_first == 50
    assert engine.store.get_progress("user-1", "learning").lessons_completed == 1


def test_different_lessons_accumulate(engine) -> None:
    engine.complete_lesson("user-1", "lesson-1", 50, "learning")
    engine.complete_lesson("user-1", "lesson-2", 25, "learning")
    snapshot = engine.store.get_progress("user-1", "learning")
    assert snapshot.xp_points == 75
    assert snapshot.lessons_completed == 2


def test_wrong_daily_challenge_earns_a_third(engine) -> None:
    assert engine.complete_daily_challenge("user-1", "challenge-1", False, 30) is True
    assert _xp(engine) == 10

    row = DailyChallengeCompletion.query.filter_by(user_id="user-1", challenge_id="challenge-1").one()
    assert row.was_correct is False
    assert row.xp_earned == 10


def test_correct_daily_challenge_earns_full_reward(engine) -> None:
    assert engine.complete_daily_challenge("user-1", "challenge-1", True, 30, "exam_prep") is True
    assert _xp(engine, track="exam_prep") == 30
    assert engine.complete_daily_challenge("user-1", "challenge-1", False, 30, "exam_prep") is False
    assert _xp(engine, track="exam_prep") == 30


@pytest.mark.parametrize(
    "reward, correct, expected",
    [(30, True, 30), (30, False, 10), (10, False, 3), (2, False, 0), (0, True, 0)],
)
def test_partial_credit(reward, correct, expected) -> None:
    assert partial_credit(reward, correct) == expected


def test_rejected_inputs_never_reach_the_ledger(engine) -> None:
    engine.award_xp("user-1", "learning", 20)

    with pytest.raises(ValidationError):
        engine.award_xp("user-1", "learning", -5)
    with pytest.raises(ValidationError):
        engine.complete_lesson("user-1", "lesson-1", -10, "learning")
    with pytest.raises(ValidationError):
        engine.complete_lesson("", "lesson-1", 10, "learning")
    with pytest.raises(ValidationError):
        engine.complete_lesson("user-1", "lesson-1", 10, "pentesting")

    assert _xp(engine) == 20
    assert LessonCompletion.query.count() == 0


def test_xp_never_decreases_over_mixed_sequence(engine, clock) -> None:
    seen = []
    steps = [
        lambda: engine.award_xp("user-1", "learning", 10),
        lambda: engine.complete_lesson("user-1", "lesson-1", 40, "learning"),
        lambda: engine.complete_lesson("user-1", "lesson-1", 40, "learning"),
        lambda: engine.complete_daily_challenge("user-1", "c-1", False, 30),
        lambda: engine.award_xp("user-1", "learning", -1),
        lambda: engine.complete_daily_challenge("user-1", "c-1", True, 30),
        lambda: engine.award_xp("user-1", "learning", 0),
    ]
    for step in steps:
        try:
            step()
        except ValidationError:
            pass
        clock.advance(hours=5)
        seen.append(_xp(engine))

    assert seen == sorted(seen)
    assert seen[-1] == 10 + 40 + 10


# -- streaks -----------------------------------------------------------------


def test_same_day_repeat_keeps_streak_and_timestamp(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    first = engine.store.get_progress("user-1", "learning")

    clock.set(datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc))
    engine.award_xp("user-1", "learning", 10)
    second = engine.store.get_progress("user-1", "learning")

    assert second.streak_days == first.streak_days == 1
    assert second.last_activity_at == first.last_activity_at


def test_consecutive_days_grow_streak_then_gap_resets(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)

    clock.advance(days=1)
    engine.complete_lesson("user-1", "lesson-1", 10, "learning")
    snapshot = engine.store.get_progress("user-1", "learning")
    assert snapshot.streak_days == 2
    assert snapshot.last_activity_at == clock()

    clock.advance(days=5)
    engine.award_xp("user-1", "learning", 10)
    assert engine.store.get_progress("user-1", "learning").streak_days == 1


def test_record_activity_updates_each_track_independently(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    engine.award_xp("user-1", "career", 10)
    clock.advance(days=1)
    engine.award_xp("user-1", "career", 10)  # career already active today

    clock.advance(days=1)
    updates = {update.track: update for update in engine.record_activity("user-1")}

    assert updates["career"].streak_days == 3
    assert updates["learning"].streak_days == 1
    assert updates["learning"].changed is True


def test_record_activity_twice_same_day_advances_once(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    clock.advance(days=1)

    first = engine.record_activity("user-1")
    second = engine.record_activity("user-1")

    assert first[0].streak_days == 2 and first[0].changed
    assert second[0].streak_days == 2 and not second[0].changed


def test_record_activity_without_progress_is_empty(engine) -> None:
    assert engine.record_activity("nobody") == []


def test_out_of_order_activity_never_decrements(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    clock.advance(days=1)
    engine.award_xp("user-1", "learning", 10)

    clock.advance(days=-3)
    engine.award_xp("user-1", "learning", 10)

    snapshot = engine.store.get_progress("user-1", "learning")
    assert snapshot.streak_days == 2
    assert snapshot.xp_points == 30


def test_streak_milestone_issues_achievement(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    for _ in range(2):
        clock.advance(days=1)
        engine.record_activity("user-1")

    achievements = engine.list_achievements("user-1")
    assert len(achievements) == 1
    assert achievements[0].achievement_type == "streak"
    assert achievements[0].title == "3-Day Streak"
    assert achievements[0].badge_name == "Consistency King"
    assert achievements[0].badge_icon == "flame"


def test_day_boundary_timezone_is_honoured(app_ctx, clock) -> None:
    engine = ProgressEngine(SqlProgressStore(), clock=clock, day_boundary_tz=timezone(timedelta(hours=1)))
    clock.set(datetime(2026, 3, 9, 22, 30, tzinfo=timezone.utc))
    engine.award_xp("user-1", "learning", 10)

    clock.set(datetime(2026, 3, 9, 23, 30, tzinfo=timezone.utc))
    engine.award_xp("user-1", "learning", 10)

    assert engine.store.get_progress("user-1", "learning").streak_days == 2


# -- failure handling --------------------------------------------------------


def test_credit_failure_leaves_observable_uncredited_completion(app_ctx, clock) -> None:
    engine = ProgressEngine(FailingCreditStore(), clock=clock)

    with pytest.raises(PartialFailure) as excinfo:
        engine.complete_lesson("user-1", "lesson-1", 50, "learning")

    assert excinfo.value.stage == "credit"
    assert excinfo.value.status_code == 500
    row = LessonCompletion.query.filter_by(user_id="user-1", lesson_id="lesson-1").one()
    assert row.id == excinfo.value.completion_id
    assert row.credited_at is None
    assert engine.store.get_progress("user-1", "learning") is None

    # A retry must not credit behind the guard's back.
    healthy = ProgressEngine(SqlProgressStore(), clock=clock)
    assert healthy.complete_lesson("user-1", "lesson-1", 50, "learning") is False
    assert healthy.store.get_progress("user-1", "learning") is None


def test_achievement_failure_does_not_fail_completion(app_ctx, clock) -> None:
    engine = ProgressEngine(FailingAchievementStore(), clock=clock, streak_milestones=(2,))
    engine.award_xp("user-1", "learning", 10)

    clock.advance(days=1)
    assert engine.complete_lesson("user-1", "lesson-1", 40, "learning") is True

    snapshot = engine.store.get_progress("user-1", "learning")
    assert snapshot.xp_points == 50
    assert snapshot.streak_days == 2
    assert engine.list_achievements("user-1") == []



def test_award_survives_streak_failure_without_inviting_a_retry(app_ctx, clock) -> None:
    ProgressEngine(SqlProgressStore(), clock=clock).award_xp("user-1", "learning", 10)
    clock.advance(days=1)

    engine = ProgressEngine(FailingStreakStore(), clock=clock)
    assert engine.award_xp("user-1", "learning", 5) is True

    snapshot = engine.store.get_progress("user-1", "learning")
    assert snapshot.xp_points == 15
    assert snapshot.streak_days == 1

    # The next healthy activity the same day repairs the streak.
    ProgressEngine(SqlProgressStore(), clock=clock).award_xp("user-1", "learning", 0)
    assert engine.store.get_progress("user-1", "learning").streak_days == 2


# -- achievements ------------------------------------------------------------


def test_issue_achievement_clamps_badge_and_mints_token(engine) -> None:
    achievement = engine.issue_achievement(
        "user-1",
        "module_completion",
        "Network Basics",
        "Finished every lesson in the module.",
        100,
        99,
    )
    assert achievement.badge_name == "Cyber Guardian"
    assert achievement.badge_icon == "shield"
    assert len(achievement.share_token) == 32
    assert engine.find_achievement_by_share_token(achievement.share_token) == achievement


def test_issue_achievement_returns_none_when_store_fails(app_ctx, clock) -> None:
    engine = ProgressEngine(FailingAchievementStore(), clock=clock)
    assert engine.issue_achievement("user-1", "referral", "Invited a friend", "", 20, 0) is None


def test_issue_achievement_validates_input(engine) -> None:
    with pytest.raises(ValidationError):
        engine.issue_achievement("user-1", "bug_bounty", "Title", "", 10, 0)
    with pytest.raises(ValidationError):
        engine.issue_achievement("user-1", "streak", "   ", "", 10, 0)
    with pytest.raises(ValidationError):
        engine.issue_achievement("user-1", "streak", "Title", "", -10, 0)


def test_list_achievements_most_recent_first(engine, clock) -> None:
    for index, title in enumerate(["First", "Second", "Third"]):
        engine.issue_achievement("user-1", "assessment_pass", title, "", 10, index)
        clock.advance(minutes=1)
    engine.issue_achievement("user-2", "assessment_pass", "Someone else", "", 10, 0)

    titles = [item.title for item in engine.list_achievements("user-1")]
    assert titles == ["Third", "Second", "First"]
    tokens = {item.share_token for item in engine.list_achievements("user-1")}
    assert len(tokens) == 3


# -- leaderboard -------------------------------------------------------------


def test_leaderboard_sums_tracks_per_user(engine, clock) -> None:
    engine.award_xp("alice", "learning", 50)
    engine.award_xp("alice", "career", 30)
    engine.award_xp("bob", "learning", 60)
    clock.advance(days=10)
    engine.award_xp("carol", "mentorship", 5)

    entries = engine.leaderboard()
    assert [(entry.user_id, entry.total_xp, entry.rank) for entry in entries] == [
        ("alice", 80, 1),
        ("bob", 60, 2),
        ("carol", 5, 3),
    ]

    weekly = engine.leaderboard(since=clock() - timedelta(days=7))
    assert [entry.user_id for entry in weekly] == ["carol"]


def test_leaderboard_limit_is_bounded(engine) -> None:
    engine.award_xp("alice", "learning", 5)
    assert len(engine.leaderboard(limit=0)) == 1
    with pytest.raises(ValidationError):
        engine.leaderboard(limit="lots")


def test_streak_milestone_is_issued_once_per_user(engine, clock) -> None:
    engine.award_xp("user-1", "learning", 10)
    for _ in range(2):
        clock.advance(days=1)
        engine.record_activity("user-1")

    # Learning breaks; career reaches three days, then learning climbs back to three.
    clock.advance(days=5)
    engine.award_xp("user-1", "career", 10)
    for _ in range(2):
        clock.advance(days=1)
        engine.record_activity("user-1")

    clock.advance(days=1)
    streaks = {update.track: update.streak_days for update in engine.record_activity("user-1")}
    assert streaks == {"career": 4, "learning": 3}
    titles = [item.title for item in engine.list_achievements("user-1")]
    assert titles == ["3-Day Streak"]
