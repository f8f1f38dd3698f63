# tests/test_refresh_rankings_script.py
from __future__ import annotations

from unittest.mock import MagicMock

from scripts.refresh_rankings import main, refresh_users
from src.models import CourseRanking, Review
from src.ranking.tiers import Tier

USER = "11111111-2222-3333-4444-555555555555"


def _seed(store, review_source):
    store.rows = {
        (USER, "stale-course"): CourseRanking(
            user_id=USER, course_id="stale-course", tier=Tier.FINE, rank_position=0, relative_score=6.9,
        ),
    }
    review_source.reviews = [
        Review(user_id=USER, course_id="course-a", sentiment="liked", date_played="2024-01-01"),
        Review(user_id=USER, course_id="course-b", sentiment="liked", date_played="2024-01-02"),
    ]


def test_dry_run_reports_without_writing(engine, store, review_source, capsys):
    _seed(store, review_source)

    rc = main(["--user-id", USER], engine=engine)

    out = capsys.readouterr().out
    assert rc == 0
    assert store.write_calls == 0
    assert "mode=DRY RUN" in out
    assert "changed=2" in out
    assert "deleted=1" in out
    assert "[DRY]" in out


def test_write_applies_rebuild(engine, store, review_source, capsys):
    _seed(store, review_source)

    rc = main(["--user-id", USER, "--write"], engine=engine)

    assert rc == 0
    assert store.write_calls == 1
    assert store.scores(USER) == {"course-a": 10.0, "course-b": 7.0}
    assert "mode=LIVE" in capsys.readouterr().out


def test_second_live_run_changes_nothing(engine, store, review_source):
    _seed(store, review_source)
    refresh_users(engine, [USER], dry_run=False)

    counts = refresh_users(engine, [USER], dry_run=True)

    assert counts == {"users": 1, "changed": 0, "deleted": 0, "integrity_issues": 0, "errors": 0}


def test_integrity_issues_counted(engine, store, review_source):
    store.rows = {
        (USER, "course-a"): CourseRanking(
            user_id=USER, course_id="course-a", tier=Tier.LIKED, rank_position=3, relative_score=10.0,
        ),
    }
    review_source.reviews = [Review(user_id=USER, course_id="course-a", sentiment="liked")]

    counts = refresh_users(engine, [USER], dry_run=True)

    assert counts["integrity_issues"] == 1
    assert counts["changed"] == 1


def test_errors_counted_per_user_and_exit_code(capsys):
    engine = MagicMock()
    engine.verify_rankings_integrity.side_effect = RuntimeError("boom")

    rc = main(["--user-id", "u1", "--user-id", "u2"], engine=engine)

    assert rc == 1
    assert engine.verify_rankings_integrity.call_count == 2
    assert "errors=2" in capsys.readouterr().out
