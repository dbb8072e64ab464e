import threading

import pytest

from reelrank.models import FeatureType


def test_init_db_creates_expected_tables(fresh_db):
    db = fresh_db

    with db.get_db(read_only=True) as conn:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }

    expected = {
        "feature_feedback",
        "pairwise_events",
        "blocked_suggestions",
        "quiz_responses",
        "ab_tests",
        "ab_assignments",
        "ab_metrics",
        "exploration_stats",
    }
    assert expected.issubset(tables)


def test_nested_transactions_commit_once(fresh_db):
    db = fresh_db

    with db.get_db() as conn:
        conn.execute(
            "INSERT INTO blocked_suggestions (user_id, item_id) VALUES (?, ?)", ("alice", 1)
        )
        with db.get_db() as inner:
            inner.execute(
                "INSERT INTO blocked_suggestions (user_id, item_id) VALUES (?, ?)", ("alice", 2)
            )

    assert db.load_blocked_suggestions("alice") == {1, 2}


def test_outer_failure_rolls_back_nested_writes(fresh_db):
    db = fresh_db

    with pytest.raises(RuntimeError):
        with db.get_db() as conn:
            conn.execute("INSERT INTO blocked_suggestions (user_id, item_id) VALUES (?, ?)", ("alice", 1))
            raise RuntimeError("abort")

    assert db.load_blocked_suggestions("alice") == set()


def test_increment_feature_feedback_adds_counts(fresh_db):
    db = fresh_db

    db.increment_feature_feedback("alice", [(FeatureType.GENRE, 18, "Drama", 2, 0)])
    db.increment_feature_feedback("alice", [("genre", 18, "", 0, 1)])

    row = db.get_feature_feedback("alice", "genre", 18)
    assert row.positive_count == 2
    assert row.negative_count == 1
    # Empty name on a later update keeps the stored one
    assert row.name == "Drama"
    assert row.inferred_preference == pytest.approx(3 / 5)

    with db.get_db(read_only=True) as conn:
        stored = conn.execute(
            "SELECT inferred_preference FROM feature_feedback WHERE user_id = ? AND feature_id = ?", ("alice", 18)
        ).fetchone()[0]
    assert stored == pytest.approx(3 / 5)


def test_increment_feature_feedback_rejects_negative_deltas(fresh_db):
    db = fresh_db

    with pytest.raises(ValueError):
        db.increment_feature_feedback("alice", [(FeatureType.GENRE, 18, "Drama", -1, 0)])

    assert db.increment_feature_feedback("alice", [(FeatureType.GENRE, 18, "Drama", 0, 0)]) == 0
    assert db.load_feature_feedback("alice") == []


def test_concurrent_increments_do_not_lose_updates(fresh_db):
    db = fresh_db
    errors = []

    def worker():
        try:
            for _ in range(10):
                db.increment_feature_feedback("alice", [(FeatureType.KEYWORD, 7, "heist", 1, 0)])
        except Exception as exc:  # pragma: no cover - surfaced via assertion
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert db.get_feature_feedback("alice", FeatureType.KEYWORD, 7).positive_count == 40


def test_load_feature_feedback_filters_by_type(fresh_db):
    db = fresh_db
    db.increment_feature_feedback("alice", [
        (FeatureType.GENRE, 18, "Drama", 1, 0),
        (FeatureType.ACTOR, 3, "Actor A", 0, 2),
    ])
    db.increment_feature_feedback("bob", [(FeatureType.GENRE, 18, "Drama", 0, 1)])

    actors = db.load_feature_feedback("alice", FeatureType.ACTOR)
    assert [r.name for r in actors] == ["Actor A"]
    assert len(db.load_feature_feedback("alice")) == 2


def test_pairwise_log_round_trips_tags(fresh_db):
    db = fresh_db
    db.log_pairwise_event("alice", 1, 2, "high", "low", ["tmdb", "genre_match"])

    events = db.load_pairwise_events("alice")
    assert len(events) == 1
    assert events[0]["winner_id"] == 1
    assert events[0]["shared_reason_tags"] == ["tmdb", "genre_match"]


def test_block_and_unblock(fresh_db):
    db = fresh_db
    db.block_suggestion("alice", 5)
    db.block_suggestion("alice", 5)
    assert db.load_blocked_suggestions("alice") == {5}

    db.unblock_suggestion("alice", 5)
    assert db.load_blocked_suggestions("alice") == set()


def test_quiz_stats_group_by_type(fresh_db):
    db = fresh_db
    db.save_quiz_response("alice", "genre_rating", 18, 5)
    db.save_quiz_response("alice", "genre_rating", 27, 1)
    db.save_quiz_response("alice", "theme_preference", 9, "yes", {"name": "heist"})

    stats = db.get_quiz_stats("alice")
    assert stats["total_answered"] == 3
    assert stats["by_type"] == {"genre_rating": 2, "theme_preference": 1}
    assert stats["last_quiz_date"] is not None


def test_assignment_is_sticky(fresh_db):
    db = fresh_db
    first = db.get_or_create_assignment("t1", "alice", lambda: "control")
    second = db.get_or_create_assignment("t1", "alice", lambda: "treatment")

    assert first == second == "control"
    assert db.load_assignments("t1") == {"alice": "control"}


def test_running_tests_respect_status_and_window(fresh_db):
    db = fresh_db
    base = {"variants": [], "traffic_split": {}, "primary_metric": "m"}
    db.save_ab_test({**base, "id": "live", "status": "running", "start_date": "2020-01-01T00:00:00"})
    db.save_ab_test({**base, "id": "draft", "status": "draft"})
    db.save_ab_test({**base, "id": "ended", "status": "running", "end_date": "2020-02-01T00:00:00"})

    running = db.load_running_ab_tests("2024-06-01T00:00:00")
    assert [t["id"] for t in running] == ["live"]


def test_metrics_and_exploration_stats(fresh_db):
    db = fresh_db
    db.append_metric("t1", "alice", "control", "ctr", 0.4)
    db.append_metric("t1", "alice", "control", "shown", 20)

    assert [r["value"] for r in db.load_metrics("t1", ["ctr"])] == [0.4]
    assert len(db.load_metrics("t1")) == 2

    assert db.load_exploration_stats("alice") is None
    db.save_exploration_stats("alice", 0.2, 4, 3.75)
    db.save_exploration_stats("alice", 0.25, 5, 3.8)
    stats = db.load_exploration_stats("alice")
    assert stats["exploration_rate"] == 0.25
    assert stats["exploratory_films_rated"] == 5
