import sqlite3

import pytest

from reelrank import exploration, feedback
from reelrank.features import stable_feature_id
from reelrank.models import FeatureType, HistoryEntry


@pytest.fixture
def film(make_item):
    return make_item(
        42,
        title="Heat",
        genres=["Crime", "Drama", "Action", "Thriller"],
        keywords=["heist", "los angeles", "detective", "bank", "obsession", "shootout"],
        cast=["Al Pacino", "Robert De Niro", "Val Kilmer", "Jon Voight"],
        directors=["Michael Mann"],
        year=1995,
    )


def _counts(db, user_id):
    return {(r.feature_type, r.name): (r.positive_count, r.negative_count) for r in db.load_feature_feedback(user_id)}


def _fail_once(monkeypatch, name):
    """Make feedback.<name> raise a lock error on its first call only."""
    real = getattr(feedback, name)
    calls = []

    def flaky(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise sqlite3.OperationalError("database is locked")
        return real(*args, **kwargs)

    monkeypatch.setattr(feedback, name, flaky)
    return calls


def test_decompose_caps_features(film):
    refs = feedback.decompose(film)
    by_type = {}
    for ref in refs:
        by_type.setdefault(ref.feature_type, []).append(ref.name)

    assert len(by_type[FeatureType.GENRE]) == 3
    assert len(by_type[FeatureType.KEYWORD]) == 5
    assert by_type[FeatureType.ACTOR] == ["Al Pacino", "Robert De Niro", "Val Kilmer"]
    assert by_type[FeatureType.DECADE] == ["1990s"]


def test_thumbs_weights(film):
    plain = feedback.thumbs_updates(film, positive=True)
    assert {u[3] for u in plain} == {1}

    strong = feedback.thumbs_updates(film, positive=False, reason="hate_all")
    assert {(u[3], u[4]) for u in strong} == {(0, 3)}

    targeted = feedback.thumbs_updates(film, positive=True, reason="actor:Val Kilmer")
    assert targeted == [(FeatureType.ACTOR, film.cast[2].id, "Val Kilmer", 2, 0)]

    assert feedback.thumbs_updates(film, positive=False, reason="not_in_mood") == []
    assert feedback.thumbs_updates(film, positive=True, reason="director:Nobody") == []

    with pytest.raises(ValueError):
        feedback.thumbs_updates(film, positive=True, reason="because")


def test_apply_thumbs_down_blocks_item(fresh_db, film):
    db = fresh_db
    written = feedback.apply_thumbs("alice", film, positive=False)

    assert written == len(feedback.decompose(film))
    assert db.load_blocked_suggestions("alice") == {42}
    assert _counts(db, "alice")[(FeatureType.DIRECTOR, "Michael Mann")] == (0, 1)


def test_apply_thumbs_up_with_love_all(fresh_db, film):
    db = fresh_db
    feedback.apply_thumbs("alice", film, positive=True, reason="love_all")

    assert _counts(db, "alice")[(FeatureType.GENRE, "Crime")] == (3, 0)
    assert db.load_blocked_suggestions("alice") == set()


@pytest.mark.parametrize("question_type,answer,expected", [
    ("genre_rating", 5, (3, 0)),
    ("genre_rating", "1", (0, 3)),
    ("theme_preference", "Maybe", (1, 1)),
    ("era_preference", "dislike", (0, 3)),
    ("director_preference", "fan", (3, 0)),
    ("actor_preference", "shrug", (1, 1)),
])
def test_quiz_delta_table(question_type, answer, expected):
    assert feedback.quiz_delta(question_type, answer) == expected


def test_quiz_delta_rejects_unknown_question():
    with pytest.raises(ValueError):
        feedback.quiz_delta("favourite_snack", "crisps")


def test_apply_quiz_answer_derives_subgenre_id(fresh_db):
    db = fresh_db
    feedback.apply_quiz_answer("alice", "subgenre_preference", "love", name="HORROR_FOLK")

    row = db.get_feature_feedback("alice", FeatureType.SUBGENRE, stable_feature_id("HORROR_FOLK"))
    assert (row.positive_count, row.negative_count) == (3, 0)
    assert db.get_quiz_stats("alice")["by_type"] == {"subgenre_preference": 1}


def test_apply_quiz_movie_rating_uses_thumbs(fresh_db, film):
    db = fresh_db
    feedback.apply_quiz_answer("alice", "movie_rating", "down", details=film)

    assert db.load_blocked_suggestions("alice") == {42}
    with pytest.raises(ValueError):
        feedback.apply_quiz_answer("alice", "movie_rating", "up")


def test_pairwise_updates_and_log(fresh_db, make_item):
    db = fresh_db
    winner = make_item(1, genres=["Drama", "Romance"], directors=["Wong Kar-wai"])
    loser = make_item(2, genres=["Drama", "Action"], directors=["Michael Bay"])

    feedback.apply_pairwise("alice", winner, loser, "high", "medium", ["tmdb"])

    counts = _counts(db, "alice")
    assert counts[(FeatureType.GENRE, "Drama")] == (1, 1)
    assert counts[(FeatureType.GENRE, "Romance")] == (1, 0)
    assert counts[(FeatureType.DIRECTOR, "Michael Bay")] == (0, 1)
    assert db.load_pairwise_events("alice")[0]["shared_reason_tags"] == ["tmdb"]

    with pytest.raises(ValueError):
        feedback.apply_pairwise("alice", winner, winner)


def test_history_seed_delta_mapping():
    assert feedback.history_seed_delta(HistoryEntry(1, rating=5.0)) == (3, 0)
    assert feedback.history_seed_delta(HistoryEntry(1, liked=True, rewatch=True)) == (3, 0)
    assert feedback.history_seed_delta(HistoryEntry(1, rating=3.5)) == (2, 0)
    assert feedback.history_seed_delta(HistoryEntry(1, rating=3.0)) == (1, 0)
    assert feedback.history_seed_delta(HistoryEntry(1, rating=2.5)) == (0, 0)
    assert feedback.history_seed_delta(HistoryEntry(1, rating=2.0)) == (0, 2)
    assert feedback.history_seed_delta(HistoryEntry(1, rating=1.0)) == (0, 3)
    assert feedback.history_seed_delta(HistoryEntry(1)) == (0, 0)


def test_seed_preferences_and_evidence_summary(fresh_db, make_item):
    details = {
        1: make_item(1, genres=["Horror"]),
        2: make_item(2, genres=["Musical"]),
    }
    history = [HistoryEntry(1, rating=5.0), HistoryEntry(2, rating=1.0), HistoryEntry(3, rating=5.0)]

    assert feedback.seed_preferences_from_history("alice", history, details) == 2

    summary = feedback.feature_evidence_summary("alice")
    assert summary["genre"]["preferred"][0]["name"] == "Horror"
    assert summary["genre"]["avoided"][0] == {"name": "Musical", "positive": 0, "negative": 3, "preference": 0.2}


def test_repeated_positive_feedback_raises_preference(fresh_db, film):
    db = fresh_db
    prefs = []
    for _ in range(3):
        feedback.apply_thumbs("alice", film, positive=True, reason="director:Michael Mann")
        prefs.append(db.get_feature_feedback("alice", FeatureType.DIRECTOR, film.directors[0].id).inferred_preference)

    assert prefs == sorted(prefs)
    assert len(set(prefs)) == 3


@pytest.mark.asyncio
async def test_worker_persists_events_off_the_request_path():
    handled = []
    worker = feedback.FeedbackWorker(handler=handled.append, retry_delay=0.0)
    await worker.start()

    assert worker.submit("event-1")
    assert worker.submit("event-2")
    await worker.stop()

    assert handled == ["event-1", "event-2"]
    assert worker.processed == 2
    assert not worker.running


@pytest.mark.asyncio
async def test_worker_retries_then_dead_letters():
    attempts = {"ok": 0, "bad": 0}

    def handler(event):
        if event == "flaky" and attempts["ok"] == 0:
            attempts["ok"] += 1
            raise RuntimeError("database is locked")
        if event == "bad":
            attempts["bad"] += 1
            raise RuntimeError("permanent")

    worker = feedback.FeedbackWorker(handler=handler, max_retries=3, retry_delay=0.0)
    await worker.start()
    worker.submit("flaky")
    worker.submit("bad")
    await worker.stop()

    assert worker.processed == 1
    assert attempts["bad"] == 3
    assert [(event, reason) for event, reason in worker.dead_letters] == [("bad", "RuntimeError: permanent")]


@pytest.mark.asyncio
async def test_worker_dead_letters_when_queue_full():
    worker = feedback.FeedbackWorker(handler=lambda e: None, maxsize=1)

    assert worker.submit("first")
    assert not worker.submit("second")
    assert worker.dead_letters == [("second", "QueueFull")]

    await worker.start()
    await worker.stop()
    assert worker.processed == 1


def test_pairwise_log_failure_rolls_back_feature_counts(fresh_db, make_item, monkeypatch):
    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(feedback, "log_pairwise_event", locked)
    with pytest.raises(sqlite3.OperationalError):
        feedback.apply_pairwise("alice", make_item(1, genres=["Drama"]), make_item(2, genres=["Action"]))

    assert fresh_db.load_feature_feedback("alice") == []
    assert fresh_db.load_pairwise_events("alice") == []


@pytest.mark.asyncio
async def test_retried_pairwise_event_counts_once(fresh_db, make_item, monkeypatch):
    calls = _fail_once(monkeypatch, "log_pairwise_event")
    event = feedback.PairwiseEvent("alice", make_item(1, genres=["Drama"]), make_item(2, genres=["Action"]))

    worker = feedback.FeedbackWorker(retry_delay=0.0)
    await worker.start()
    worker.submit(event)
    await worker.stop()

    assert len(calls) == 2
    assert worker.dead_letters == []
    counts = _counts(fresh_db, "alice")
    assert counts[(FeatureType.GENRE, "Drama")] == (1, 0)
    assert counts[(FeatureType.GENRE, "Action")] == (0, 1)
    assert len(fresh_db.load_pairwise_events("alice")) == 1


@pytest.mark.asyncio
async def test_retried_thumbs_down_counts_once(fresh_db, film, monkeypatch):
    calls = _fail_once(monkeypatch, "block_suggestion")

    worker = feedback.FeedbackWorker(retry_delay=0.0)
    await worker.start()
    worker.submit(feedback.ThumbsEvent("alice", film, positive=False))
    await worker.stop()

    assert len(calls) == 2
    assert worker.processed == 1
    assert _counts(fresh_db, "alice")[(FeatureType.DIRECTOR, "Michael Mann")] == (0, 1)
    assert fresh_db.load_blocked_suggestions("alice") == {42}


def test_thumbs_down_outside_comfort_zone_lowers_exploration_rate(fresh_db, make_item):
    feedback.apply_quiz_answer("alice", "genre_rating", 5, feature_id=18, name="Drama")

    feedback.apply_thumbs("alice", make_item(7, genres=["Western"]), positive=False)

    assert exploration.get_exploration_rate("alice") == pytest.approx(0.13)


def test_thumbs_down_that_says_nothing_about_exploration_keeps_rate(fresh_db, make_item):
    feedback.apply_quiz_answer("alice", "genre_rating", 5, feature_id=18, name="Drama")

    feedback.apply_thumbs("alice", make_item(8, genres=["Drama"]), positive=False)
    feedback.apply_thumbs(
        "alice", make_item(9, genres=["Horror"]), positive=False, top_genres=["Drama"], avoided_genres=["Horror"]
    )
    # No genre feedback yet, so there is no comfort zone to explore away from
    feedback.apply_thumbs("bob", make_item(10, genres=["Western"]), positive=False)
    feedback.apply_thumbs("alice", make_item(11, genres=["Western"]), positive=True)

    assert exploration.get_exploration_rate("alice") == pytest.approx(0.15)
    assert exploration.get_exploration_rate("bob") == pytest.approx(0.15)
    assert fresh_db.load_blocked_suggestions("alice") == {8, 9}
