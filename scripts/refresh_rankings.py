#!/usr/bin/env python3
# scripts/refresh_rankings.py
"""
Manual refresh trigger: full ranking rebuild for one or more users.

Safe to rerun: deterministic and idempotent. Reads the user's reviews and
current course_rankings, rebuilds every tier sequence, rescores, and (with
--write) persists the whole user batch in one transaction.

Usage:
  # Dry run (default): integrity report + what would change
  python -m scripts.refresh_rankings --user-id <uuid>

  # Live: apply the rebuild
  python -m scripts.refresh_rankings --user-id <uuid> --user-id <uuid2> --write
"""
from __future__ import annotations

import argparse
import logging
from typing import Any

from src.ranking.interpolator import format_score
from src.ranking.orchestrator import RankingEngine, engine_from_env


def refresh_users(
    engine: RankingEngine,
    user_ids: list[str],
    *,
    dry_run: bool = True,
) -> dict[str, int]:
    """
    Returns: {"users": N, "changed": N, "deleted": N, "integrity_issues": N, "errors": N}
    """
    counts = {"users": 0, "changed": 0, "deleted": 0, "integrity_issues": 0, "errors": 0}

    for user_id in user_ids:
        counts["users"] += 1
        try:
            reports = engine.verify_rankings_integrity(user_id)
            for tier, report in reports.items():
                if not report.ok:
                    counts["integrity_issues"] += 1
                    print(f"  [INTEGRITY] user={user_id[:8]}… tier={tier.value} reasons={report.reasons}")

            plan = engine.plan_full_rebuild(user_id)
            changed = plan.changed()
            counts["changed"] += len(changed)
            counts["deleted"] += len(plan.stale)

            for old, new in changed:
                before = f"{old.tier.value}#{old.rank_position + 1} {format_score(old.relative_score)}" if old else "NEW"
                print(
                    f"  {'[DRY]' if dry_run else '[UPD]'} "
                    f"user={user_id[:8]}… course={new.course_id[:8]}… "
                    f"{before} → {new.tier.value}#{new.rank_position + 1} {format_score(new.relative_score)}"
                )
            for course_id in plan.stale:
                print(f"  {'[DRY]' if dry_run else '[DEL]'} user={user_id[:8]}… course={course_id[:8]}… no review left")

            if not dry_run:
                engine.refresh_all_rankings(user_id)

        except Exception as e:
            counts["errors"] += 1
            print(f"  [ERR] user={user_id}: {e!r}")

    return counts


def main(argv: list[str] | None = None, *, engine: Any = None) -> int:
    parser = argparse.ArgumentParser(
        description="Rebuild course rankings (tier sequences + relative scores) for users."
    )
    parser.add_argument("--user-id", action="append", required=True, dest="user_ids")
    parser.add_argument(
        "--write",
        action="store_true",
        help="Apply updates (default: dry run).",
    )
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    dry_run = not args.write
    mode = "DRY RUN" if dry_run else "LIVE"
    print(f"[refresh_rankings] mode={mode} users={len(args.user_ids)}")

    engine = engine or engine_from_env()
    counts = refresh_users(engine, args.user_ids, dry_run=dry_run)

    print(f"\n[refresh_rankings] done mode={mode}")
    print(
        f"  users={counts['users']} "
        f"changed={counts['changed']} "
        f"deleted={counts['deleted']} "
        f"integrity_issues={counts['integrity_issues']} "
        f"errors={counts['errors']}"
    )

    return 0 if counts["errors"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
