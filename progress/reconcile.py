"""Repair completions that were recorded but never credited.

A completion whose credit step was interrupted keeps ``credited_at = NULL``.
The repair re-runs the same atomic credit step, so a row that got credited in
the meantime is skipped rather than credited twice. Rows younger than the grace
period are left alone; they most likely belong to a request still in flight.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import List, Optional

from flask import current_app

from models import ensure_aware

from .catalog import CompletionKind
from .errors import StoreUnavailable
from .ledger import XPLedger
from .records import UncreditedCompletion
from .service import Clock, utcnow
from .store import ProgressStore, get_progress_store
from .streak import DEFAULT_MAX_RETRIES, StreakEngine, resolve_timezone

DEFAULT_GRACE_SECONDS = 300
DEFAULT_BATCH_SIZE = 200


@dataclass
class ReconcileReport:
    scanned: int = 0
    repaired: int = 0
    already_credited: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class Reconciler:
    def __init__(
        self,
        store: ProgressStore,
        *,
        clock: Optional[Clock] = None,
        grace: timedelta = timedelta(seconds=DEFAULT_GRACE_SECONDS),
        batch_size: int = DEFAULT_BATCH_SIZE,
        streaks: Optional[StreakEngine] = None,
    ):
        self._store = store
        self._ledger = XPLedger(store)
        self._streaks = streaks or StreakEngine(store)
        self._clock = clock or utcnow
        self._grace = grace
        self._batch_size = batch_size

    def pending(self) -> List[UncreditedCompletion]:
        """Completions older than the grace period that still have no XP applied."""
        cutoff = ensure_aware(self._clock()) - self._grace
        found: List[UncreditedCompletion] = []
        for kind in CompletionKind:
            found.extend(self._store.list_uncredited(kind, cutoff, self._batch_size))
        return found

    def run(self) -> ReconcileReport:
        now = ensure_aware(self._clock())
        report = ReconcileReport()
        for item in self.pending():
            report.scanned += 1
            kind = CompletionKind(item.kind)
            try:
                snapshot = self._ledger.credit(kind, item.completion_id, item.user_id, item.track, item.xp_earned, now)
            except StoreUnavailable as exc:
                report.failed += 1
                current_app.logger.warning(
                    "Reconcile could not credit %s completion %s: %s", item.kind, item.completion_id, exc
                )
                continue

            if snapshot is None:
                report.already_credited += 1
                continue

            report.repaired += 1
            try:
                # The activity happened when the completion was recorded.
                self._streaks.touch(item.user_id, item.track, item.created_at)
            except StoreUnavailable as exc:
                current_app.logger.warning(
                    "Reconcile credited %s completion %s but streak update failed: %s",
                    item.kind,
                    item.completion_id,
                    exc,
                )

        current_app.logger.info(
            "Progress reconcile: scanned=%d repaired=%d already_credited=%d failed=%d",
            report.scanned,
            report.repaired,
            report.already_credited,
            report.failed,
        )
        return report


def get_reconciler(grace_seconds: Optional[int] = None) -> Reconciler:
    config = current_app.config
    if grace_seconds is None:
        grace_seconds = config.get("PROGRESS_RECONCILE_GRACE_SECONDS", DEFAULT_GRACE_SECONDS)
    store = get_progress_store()
    return Reconciler(
        store,
        clock=config.get("PROGRESS_CLOCK"),
        grace=timedelta(seconds=max(0, int(grace_seconds))),
        streaks=StreakEngine(
            store,
            tz=resolve_timezone(config.get("PROGRESS_DAY_BOUNDARY_TZ")),
            max_retries=config.get("PROGRESS_STREAK_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        ),
    )
