"""
Per-user exploration learning.

The exploration rate is nudged by how the user rates films outside their
comfort zone. Genre transitions record which genre the user enjoys moving to
after another, and steer which exploratory picks are shown.
"""

import logging
from typing import Iterable, Mapping

from .database import (
    load_exploration_stats,
    save_exploration_stats,
    load_feature_feedback,
    record_genre_transitions,
    load_genre_transitions,
)
from .models import FeatureType, HistoryEntry, ItemDetails
from .utils import clamp
from .config import (
    EXPLORATION_RATE_DEFAULT,
    EXPLORATION_RATE_MIN,
    EXPLORATION_RATE_MAX,
    EXPLORATION_LEARNING_RATE,
    EXPLORATION_GOOD_AVG,
    EXPLORATION_BAD_AVG,
    EXPLORATION_RECENT_WINDOW,
    EXPLORATION_BLOCK_PENALTY,
    EXPLORATION_TOP_GENRES,
    FEEDBACK_AVOID_PREFERENCE,
    FEEDBACK_AVOID_MARGIN,
    TRANSITION_HISTORY_WINDOW,
    TRANSITION_SUCCESS_RATING,
    TRANSITION_MIN_COUNT,
    TRANSITION_MIN_SUCCESS_RATE,
)

logger = logging.getLogger(__name__)


def get_exploration_rate(user_id: str) -> float:
    stats = load_exploration_stats(user_id)
    if not stats:
        return EXPLORATION_RATE_DEFAULT
    return clamp(stats['exploration_rate'], EXPLORATION_RATE_MIN, EXPLORATION_RATE_MAX)


def is_exploratory(details: ItemDetails | None, top_genres: Iterable[str]) -> bool:
    """True when an item has genres and none of them is a top genre."""
    if details is None or not details.genre_names:
        return False
    top = {g.lower() for g in top_genres}
    return not any(g.lower() in top for g in details.genre_names)


def comfort_zone(user_id: str, n: int = EXPLORATION_TOP_GENRES) -> tuple[list[str], list[str]]:
    """The user's top and avoided genres, as learned from stored genre feedback."""
    rows = [r for r in load_feature_feedback(user_id, FeatureType.GENRE) if r.name]
    liked = sorted((r for r in rows if r.inferred_preference > 0.5), key=lambda r: (-r.inferred_preference, -r.total))
    avoided = [
        r.name for r in rows
        if r.inferred_preference < FEEDBACK_AVOID_PREFERENCE or r.negative_count > r.positive_count + FEEDBACK_AVOID_MARGIN
    ]
    return [r.name for r in liked[:n]], avoided


def update_exploration_rate(
    user_id: str,
    recent_rated: Iterable[HistoryEntry],
    details: Mapping[int, ItemDetails],
    top_genres: Iterable[str],
) -> float:
    """
    Nudge the exploration rate by the user's recent exploratory ratings.

    Looks at the 20 most recent rated films. If the exploratory ones average
    >= 3.5 the rate rises by 0.05, below 3.0 it falls by 0.05; the rate stays
    within [0.05, 0.30]. The running count and average are persisted.
    """
    top_genres = list(top_genres)
    stats = load_exploration_stats(user_id) or {}
    rate = stats.get('exploration_rate', EXPLORATION_RATE_DEFAULT)
    films_rated = stats.get('exploratory_films_rated', 0)
    avg_rating = stats.get('exploratory_avg_rating', 0.0)

    rated = [e for e in recent_rated if e.rating is not None]
    rated.sort(key=lambda e: e.watched_at or "", reverse=True)
    recent = rated[:EXPLORATION_RECENT_WINDOW]

    exploratory = [e.rating for e in recent if is_exploratory(details.get(e.item_id), top_genres)]
    if not exploratory:
        logger.debug(f"No recent exploratory films for {user_id}, rate stays {rate:.2f}")
        return rate

    recent_avg = sum(exploratory) / len(exploratory)
    if recent_avg >= EXPLORATION_GOOD_AVG:
        rate += EXPLORATION_LEARNING_RATE
    elif recent_avg < EXPLORATION_BAD_AVG:
        rate -= EXPLORATION_LEARNING_RATE
    rate = clamp(rate, EXPLORATION_RATE_MIN, EXPLORATION_RATE_MAX)

    total = films_rated + len(exploratory)
    avg_rating = (avg_rating * films_rated + sum(exploratory)) / total
    save_exploration_stats(user_id, rate, total, avg_rating)
    logger.info(f"Exploration rate for {user_id}: {rate:.2f} (recent exploratory avg {recent_avg:.2f} over {len(exploratory)})")
    return rate


def penalize_blocked_exploration(
    user_id: str,
    details: ItemDetails,
    top_genres: Iterable[str],
    avoided_genres: Iterable[str] = (),
) -> float | None:
    """
    Lower the rate slightly when the user blocks an exploratory pick.

    A block on a genre the user already avoids says nothing about exploration
    and leaves the rate alone. Returns the new rate, or None if unchanged.
    """
    if not is_exploratory(details, top_genres):
        return None
    avoided = {g.lower() for g in avoided_genres}
    if any(g.lower() in avoided for g in details.genre_names):
        return None

    stats = load_exploration_stats(user_id) or {}
    rate = clamp(
        stats.get('exploration_rate', EXPLORATION_RATE_DEFAULT) - EXPLORATION_BLOCK_PENALTY,
        EXPLORATION_RATE_MIN,
        EXPLORATION_RATE_MAX,
    )
    save_exploration_stats(
        user_id, rate, stats.get('exploratory_films_rated', 0), stats.get('exploratory_avg_rating', 0.0)
    )
    return rate


def count_genre_transitions(history: Iterable[HistoryEntry], details: Mapping[int, ItemDetails]) -> list[dict]:
    """
    Primary-genre transitions between consecutive rated films.

    Only the most recent 50 dated, rated films are walked, oldest first.
    Steps that stay in the same primary genre, or that touch a film without
    genres, are skipped. A step succeeds when the second film is rated 3.5
    or higher.
    """
    dated = sorted((e for e in history if e.watched_at and e.rating is not None), key=lambda e: e.watched_at)
    recent = dated[-TRANSITION_HISTORY_WINDOW:]

    totals: dict[tuple[int, int], dict] = {}
    for current, following in zip(recent, recent[1:]):
        before, after = details.get(current.item_id), details.get(following.item_id)
        if before is None or after is None or not before.genres or not after.genres:
            continue
        src, dst = before.genres[0], after.genres[0]
        if src.id == dst.id:
            continue
        stats = totals.setdefault((src.id, dst.id), {
            'from_genre_id': src.id,
            'from_genre_name': src.name,
            'to_genre_id': dst.id,
            'to_genre_name': dst.name,
            'rating_count': 0,
            'success_count': 0,
            'rating_sum': 0.0,
        })
        stats['rating_count'] += 1
        stats['rating_sum'] += following.rating
        if following.rating >= TRANSITION_SUCCESS_RATING:
            stats['success_count'] += 1

    transitions = []
    for stats in totals.values():
        stats['avg_rating'] = stats.pop('rating_sum') / stats['rating_count']
        transitions.append(stats)
    return transitions


def update_genre_transitions(user_id: str, history: Iterable[HistoryEntry], details: Mapping[int, ItemDetails]) -> int:
    """Add the transitions observed in ``history`` to the user's stored totals."""
    transitions = count_genre_transitions(history, details)
    written = record_genre_transitions(user_id, transitions)
    logger.info(f"Recorded {written} genre transitions for {user_id}")
    return written


def get_genre_transitions(user_id: str) -> dict[str, list[tuple[str, float]]]:
    """
    Learned transitions that work for this user, keyed by the genre moved from.

    Only transitions seen at least 3 times with a success rate of 0.5 or more
    are returned, best first, as ``(to_genre, success_rate)`` pairs.
    """
    transitions: dict[str, list[tuple[str, float]]] = {}
    for row in load_genre_transitions(user_id, TRANSITION_MIN_COUNT, TRANSITION_MIN_SUCCESS_RATE):
        transitions.setdefault(row['from_genre_name'], []).append((row['to_genre_name'], row['success_rate']))
    return transitions


def transition_weights(
    transitions: Mapping[str, list[tuple[str, float]]],
    top_genres: Iterable[str],
) -> dict[str, float]:
    """Best success rate for moving from any top genre into each other genre, by lowercased name."""
    top = {g.lower() for g in top_genres}
    weights: dict[str, float] = {}
    for from_genre, targets in transitions.items():
        if from_genre.lower() not in top:
            continue
        for to_genre, rate in targets:
            key = to_genre.lower()
            weights[key] = max(weights.get(key, 0.0), rate)
    return weights
