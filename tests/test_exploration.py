import pytest

from reelrank import exploration
from reelrank.models import HistoryEntry

TOP = ["Drama", "Crime", "Thriller"]


@pytest.fixture
def details(make_item):
    return {
        1: make_item(1, genres=["Western"]),
        2: make_item(2, genres=["Animation", "Family"]),
        3: make_item(3, genres=["Drama"]),
        4: make_item(4, genres=[]),
    }


def _history(*ratings, item_id=1):
    return [
        HistoryEntry(item_id, rating=r, watched_at=f"2024-01-{i + 1:02d}")
        for i, r in enumerate(ratings)
    ]


def test_is_exploratory(details):
    assert exploration.is_exploratory(details[1], TOP)
    assert not exploration.is_exploratory(details[3], ["drama"])
    # No genres means no evidence either way
    assert not exploration.is_exploratory(details[4], TOP)
    assert not exploration.is_exploratory(None, TOP)


def test_default_rate_without_stats(fresh_db):
    assert exploration.get_exploration_rate("alice") == pytest.approx(0.15)


def test_good_exploratory_ratings_raise_rate(fresh_db, details):
    rate = exploration.update_exploration_rate("alice", _history(4.0, 4.5), details, TOP)

    assert rate == pytest.approx(0.20)
    assert exploration.get_exploration_rate("alice") == pytest.approx(0.20)
    stats = fresh_db.load_exploration_stats("alice")
    assert stats["exploratory_films_rated"] == 2
    assert stats["exploratory_avg_rating"] == pytest.approx(4.25)


def test_bad_exploratory_ratings_lower_rate(fresh_db, details):
    rate = exploration.update_exploration_rate("alice", _history(2.0, 1.5, item_id=2), details, TOP)
    assert rate == pytest.approx(0.10)


def test_middling_ratings_keep_rate(fresh_db, details):
    rate = exploration.update_exploration_rate("alice", _history(3.0, 3.4), details, TOP)
    assert rate == pytest.approx(0.15)


def test_rate_is_clamped(fresh_db, details):
    for _ in range(6):
        rate = exploration.update_exploration_rate("alice", _history(5.0), details, TOP)
    assert rate == pytest.approx(0.30)

    for _ in range(10):
        rate = exploration.update_exploration_rate("alice", _history(0.5), details, TOP)
    assert rate == pytest.approx(0.05)


def test_only_recent_window_counts(fresh_db, details):
    # 20 newer comfort-zone films push the bad exploratory ratings out of the window
    history = _history(1.0, 1.0) + [
        HistoryEntry(3, rating=4.0, watched_at=f"2024-02-{i + 1:02d}") for i in range(20)
    ]
    rate = exploration.update_exploration_rate("alice", history, details, TOP)

    assert rate == pytest.approx(0.15)
    assert fresh_db.load_exploration_stats("alice") is None


def test_unrated_and_comfort_zone_films_leave_rate_alone(fresh_db, details):
    history = [HistoryEntry(1, liked=True), HistoryEntry(3, rating=5.0)]
    assert exploration.update_exploration_rate("alice", history, details, TOP) == pytest.approx(0.15)


def test_blocking_exploratory_pick_lowers_rate(fresh_db, details):
    assert exploration.penalize_blocked_exploration("alice", details[1], TOP) == pytest.approx(0.13)
    assert exploration.get_exploration_rate("alice") == pytest.approx(0.13)


def test_block_on_avoided_genre_is_ignored(fresh_db, details):
    assert exploration.penalize_blocked_exploration("alice", details[1], TOP, avoided_genres=["western"]) is None
    assert exploration.penalize_blocked_exploration("alice", details[3], TOP) is None
    assert exploration.get_exploration_rate("alice") == pytest.approx(0.15)


def _sequence(*steps):
    return [
        HistoryEntry(item_id, rating=rating, watched_at=f"2024-03-{i + 1:02d}")
        for i, (item_id, rating) in enumerate(steps)
    ]


def test_count_genre_transitions_walks_history_in_date_order(details):
    history = _sequence((3, 4.0), (1, 4.0), (3, 3.0), (1, 2.0), (1, 5.0), (4, 4.0), (2, 4.5))

    transitions = exploration.count_genre_transitions(list(reversed(history)), details)
    by_pair = {(t["from_genre_name"], t["to_genre_name"]): t for t in transitions}

    # Same-genre steps and films without genres are skipped
    assert set(by_pair) == {("Drama", "Western"), ("Western", "Drama")}
    assert by_pair[("Drama", "Western")]["rating_count"] == 2
    assert by_pair[("Drama", "Western")]["success_count"] == 1
    assert by_pair[("Drama", "Western")]["avg_rating"] == pytest.approx(3.0)
    assert by_pair[("Western", "Drama")]["success_count"] == 0


def test_undated_or_unrated_films_are_not_transitions(details):
    history = [HistoryEntry(3, rating=4.0), HistoryEntry(1, rating=4.0, watched_at="2024-01-02")]
    assert exploration.count_genre_transitions(history, details) == []


def test_genre_transitions_accumulate_and_need_evidence(fresh_db, details):
    history = _sequence((3, 4.0), (1, 4.0), (3, 4.0), (1, 4.5), (3, 4.0), (1, 2.0))

    assert exploration.update_genre_transitions("alice", history, details) == 2
    learned = exploration.get_genre_transitions("alice")
    # Western -> Drama has only two observations so far
    assert list(learned) == ["Drama"]
    [(to_genre, rate)] = learned["Drama"]
    assert to_genre == "Western"
    assert rate == pytest.approx(2 / 3)

    exploration.update_genre_transitions("alice", history, details)
    learned = exploration.get_genre_transitions("alice")
    assert learned["Western"] == [("Drama", pytest.approx(1.0))]

    rows = {(r["from_genre_name"], r["to_genre_name"]): r for r in fresh_db.load_genre_transitions("alice")}
    assert rows[("Drama", "Western")]["rating_count"] == 6
    assert rows[("Drama", "Western")]["success_count"] == 4
    assert rows[("Drama", "Western")]["avg_rating"] == pytest.approx(3.5)


def test_transition_weights_follow_top_genres():
    transitions = {
        "Drama": [("Western", 0.8), ("Horror", 0.6)],
        "Comedy": [("Western", 0.9)],
        "crime": [("Horror", 0.7)],
    }

    assert exploration.transition_weights(transitions, ["drama", "Crime"]) == {"western": 0.8, "horror": 0.7}
    assert exploration.transition_weights(transitions, []) == {}


def test_comfort_zone_from_genre_feedback(fresh_db):
    fresh_db.increment_feature_feedback("alice", [
        ("genre", 18, "Drama", 6, 0),
        ("genre", 80, "Crime", 2, 1),
        ("genre", 37, "Western", 0, 8),
        ("genre", 99, "Documentary", 1, 1),
    ])

    top, avoided = exploration.comfort_zone("alice")

    assert top == ["Drama", "Crime"]
    assert avoided == ["Western"]
