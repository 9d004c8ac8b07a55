#!/usr/bin/env python
"""
Credit lesson / daily-challenge completions that were recorded but never credited.

Usage:
    python scripts/reconcile_progress.py [--grace-seconds 300] [--dry-run]

Reads the same environment as the web app (USE_SUPABASE, SUPABASE_URL,
SUPABASE_KEY, DATABASE_URL, PROGRESS_*). Safe to run repeatedly: every repair
goes through the atomic credit step, so nothing is credited twice.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app  # noqa: E402
from progress.reconcile import get_reconciler  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--grace-seconds", type=int, default=None, help="Skip completions younger than this.")
    parser.add_argument("--dry-run", action="store_true", help="List pending completions without crediting.")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        reconciler = get_reconciler(grace_seconds=args.grace_seconds)
        if args.dry_run:
            pending = reconciler.pending()
            print(f"🔍 {len(pending)} completion(s) waiting for credit.")
            for item in pending:
                print(f"  • {item.kind} {item.completion_id} user={item.user_id} track={item.track} xp={item.xp_earned}")
            return 0

        report = reconciler.run()

    print(
        f"✅ Scanned {report.scanned}, repaired {report.repaired}, "
        f"already credited {report.already_credited}, failed {report.failed}."
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
