from datetime import timedelta

import pytest

from models import DailyChallengeCompletion, LessonCompletion
from progress.errors import PartialFailure, StoreUnavailable
from progress.reconcile import Reconciler, get_reconciler
from progress.service import ProgressEngine
from progress.store import SqlProgressStore


class FailingCreditStore(SqlProgressStore):
    def credit_completion(self, *args, **kwargs):
        raise StoreUnavailable("connection reset by peer")


def _leave_uncredited(clock, lesson_id="lesson-1", xp=50):
    engine = ProgressEngine(FailingCreditStore(), clock=clock)
    with pytest.raises(PartialFailure):
        engine.complete_lesson("user-1", lesson_id, xp, "learning")


def test_reconcile_credits_interrupted_completion(app_ctx, clock) -> None:
    _leave_uncredited(clock)
    clock.advance(minutes=10)

    report = Reconciler(SqlProgressStore(), clock=clock).run()

    assert report.to_dict() == {"scanned": 1, "repaired": 1, "already_credited": 0, "failed": 0}
    snapshot = SqlProgressStore().get_progress("user-1", "learning")
    assert snapshot.xp_points == 50
    assert snapshot.lessons_completed == 1
    assert LessonCompletion.query.one().credited_at is not None


def test_reconcile_is_a_no_op_the_second_time(app_ctx, clock) -> None:
    _leave_uncredited(clock)
    clock.advance(minutes=10)
    reconciler = Reconciler(SqlProgressStore(), clock=clock)

    reconciler.run()
    second = reconciler.run()

    assert second.scanned == 0
    assert SqlProgressStore().get_progress("user-1", "learning").xp_points == 50


def test_reconcile_leaves_recent_rows_to_in_flight_requests(app_ctx, clock) -> None:
    _leave_uncredited(clock)
    clock.advance(seconds=30)

    reconciler = Reconciler(SqlProgressStore(), clock=clock, grace=timedelta(minutes=5))

    assert reconciler.pending() == []
    assert reconciler.run().scanned == 0
    assert SqlProgressStore().get_progress("user-1", "learning") is None


def test_reconcile_covers_daily_challenges(app_ctx, clock) -> None:
    engine = ProgressEngine(FailingCreditStore(), clock=clock)
    with pytest.raises(PartialFailure):
        engine.complete_daily_challenge("user-1", "challenge-1", False, 30, "academic")
    clock.advance(hours=1)

    report = Reconciler(SqlProgressStore(), clock=clock).run()

    assert report.repaired == 1
    assert SqlProgressStore().get_progress("user-1", "academic").xp_points == 10
    assert DailyChallengeCompletion.query.one().credited_at is not None


def test_reconcile_counts_store_failures(app_ctx, clock) -> None:
    _leave_uncredited(clock)
    clock.advance(minutes=10)

    report = Reconciler(FailingCreditStore(), clock=clock).run()

    assert report.scanned == 1
    assert report.failed == 1
    assert LessonCompletion.query.one().credited_at is None


def test_get_reconciler_reads_grace_from_config(app_ctx, clock) -> None:
    app_ctx.config["PROGRESS_RECONCILE_GRACE_SECONDS"] = 3600
    _leave_uncredited(clock)
    clock.advance(minutes=10)

    assert get_reconciler().pending() == []
    assert len(get_reconciler(grace_seconds=0).pending()) == 1
