import logging
from collections import defaultdict
from dataclasses import dataclass, field
from statistics import mean
from typing import Iterable, Mapping

from .features import decade_label, genre_combo_key, normalize_name, ordered_cast
from .models import FeatureFeedback, FeatureType, HistoryEntry, ItemDetails
from .subgenres import (
    CrossGenrePattern,
    PatternFilm,
    SubgenrePattern,
    analyze_cross_genre_patterns,
    analyze_subgenre_patterns,
)
from .config import (
    PROFILE_WEIGHT_TIERS,
    UNRATED_DEFAULT_RATING,
    REWATCH_MULTIPLIER,
    MAX_DIRECTORS_PER_FILM,
    MAX_CAST_ORDER,
    CAST_WEIGHT_MULTIPLIER,
    NEGATIVE_SAMPLE_CAP,
    HIGHLY_RATED_THRESHOLD,
    FAVORITE_THRESHOLD,
    WATCHLIST_TOP_N,
    PROFILE_TOP_N,
    FEEDBACK_AVOID_PREFERENCE,
    FEEDBACK_AVOID_MARGIN,
    FEEDBACK_PREFER_PREFERENCE,
    FEEDBACK_MIN_EVIDENCE,
    FEEDBACK_PROFILE_SCALE,
)

logger = logging.getLogger(__name__)


@dataclass
class ProfileStats:
    total_watched: int = 0
    total_rated: int = 0
    total_liked: int = 0
    avg_rating: float | None = None
    highly_rated_count: int = 0
    absolute_favorites: int = 0


@dataclass
class TasteProfile:
    """Weighted preferences derived from a user's history plus explicit feedback."""
    genres: dict[str, float] = field(default_factory=dict)
    keywords: dict[str, float] = field(default_factory=dict)
    directors: dict[str, float] = field(default_factory=dict)
    actors: dict[str, float] = field(default_factory=dict)
    decades: dict[str, float] = field(default_factory=dict)
    languages: dict[str, float] = field(default_factory=dict)

    runtime_min: int = 0
    runtime_max: int = 0
    runtime_avg: float = 0.0

    # Negative signals (lower-cased)
    avoided_genres: set[str] = field(default_factory=set)
    avoided_keywords: set[str] = field(default_factory=set)
    avoided_genre_combos: set[str] = field(default_factory=set)
    # Features explicitly rejected through feedback, by type (lower-cased names)
    feedback_avoided: dict[FeatureType, set[str]] = field(default_factory=dict)

    # Watchlist intent
    watchlist_genres: dict[str, int] = field(default_factory=dict)
    watchlist_keywords: dict[str, int] = field(default_factory=dict)
    watchlist_directors: dict[str, int] = field(default_factory=dict)

    subgenre_patterns: dict[str, SubgenrePattern] = field(default_factory=dict)
    cross_genre_patterns: dict[str, CrossGenrePattern] = field(default_factory=dict)

    stats: ProfileStats = field(default_factory=ProfileStats)
    missing_metadata: int = 0

    def weights_for(self, feature_type: FeatureType) -> dict[str, float]:
        return {
            FeatureType.GENRE: self.genres,
            FeatureType.KEYWORD: self.keywords,
            FeatureType.DIRECTOR: self.directors,
            FeatureType.ACTOR: self.actors,
            FeatureType.DECADE: self.decades,
        }.get(feature_type, {})

    def top_genres(self, n: int = 3) -> list[str]:
        return list(self.genres)[:n]

    def is_avoided(self, feature_type: FeatureType, name: str) -> bool:
        return normalize_name(name) in self.feedback_avoided.get(feature_type, set())


def film_weight(rating: float | None, liked: bool) -> float:
    """
    Per-film weight from rating and liked flag.

    Liked films outweigh unliked films at every rating tier. An unrated,
    unliked film carries no signal and returns 0.
    """
    if rating is None and not liked:
        return 0.0
    effective = rating if rating is not None else UNRATED_DEFAULT_RATING
    for min_rating, liked_weight, unliked_weight in PROFILE_WEIGHT_TIERS:
        if effective >= min_rating:
            return liked_weight if liked else unliked_weight
    return 0.0


def _top_n(scores: Mapping[str, float], n: int) -> dict[str, float]:
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    return dict(ranked[:n])


def _accumulate_positive(
    entry: HistoryEntry,
    details: ItemDetails,
    weight: float,
    scores: dict[str, dict[str, float]],
    runtimes: list[int],
) -> None:
    for name in details.genre_names:
        scores['genre'][name] += weight
    for name in details.keyword_names:
        scores['keyword'][name] += weight
    for person in details.directors[:MAX_DIRECTORS_PER_FILM]:
        scores['director'][person.name] += weight
    for person in ordered_cast(details, MAX_CAST_ORDER):
        scores['actor'][person.name] += weight * CAST_WEIGHT_MULTIPLIER

    label = decade_label(details.year)
    if label:
        scores['decade'][label] += weight
    if details.language:
        scores['language'][details.language] += weight
    if details.runtime and details.runtime > 0:
        runtimes.append(details.runtime)


def _compute_stats(history: list[HistoryEntry]) -> ProfileStats:
    ratings = [e.rating for e in history if e.rating is not None]
    return ProfileStats(
        total_watched=len(history),
        total_rated=len(ratings),
        total_liked=sum(1 for e in history if e.liked),
        avg_rating=mean(ratings) if ratings else None,
        highly_rated_count=sum(1 for r in ratings if r >= HIGHLY_RATED_THRESHOLD),
        absolute_favorites=sum(
            1 for e in history if e.liked and e.rating is not None and e.rating >= FAVORITE_THRESHOLD
        ),
    )


def _apply_feature_feedback(profile: TasteProfile, feedback: Iterable[FeatureFeedback]) -> None:
    """
    Fold persisted explicit feedback into the profile.

    Strongly negative rows become avoidance entries; well-evidenced positive
    rows add weight (creating the entry if needed); anything else scales an
    existing weight by (0.5 + preference).
    """
    for row in feedback:
        pref = row.inferred_preference
        name = row.name
        if not name:
            continue

        if pref < FEEDBACK_AVOID_PREFERENCE or row.negative_count > row.positive_count + FEEDBACK_AVOID_MARGIN:
            profile.feedback_avoided.setdefault(row.feature_type, set()).add(normalize_name(name))
            continue

        weights = profile.weights_for(row.feature_type)
        if row.feature_type not in (
            FeatureType.GENRE, FeatureType.KEYWORD, FeatureType.DIRECTOR,
            FeatureType.ACTOR, FeatureType.DECADE,
        ):
            continue

        existing_key = next((k for k in weights if normalize_name(k) == normalize_name(name)), None)
        if row.total >= FEEDBACK_MIN_EVIDENCE and pref >= FEEDBACK_PREFER_PREFERENCE:
            key = existing_key or name
            weights[key] = weights.get(key, 0.0) + (pref - 0.5) * 2 * FEEDBACK_PROFILE_SCALE
        elif existing_key is not None:
            weights[existing_key] *= 0.5 + pref

    for feature_type in (FeatureType.GENRE, FeatureType.KEYWORD, FeatureType.DIRECTOR, FeatureType.ACTOR, FeatureType.DECADE):
        weights = profile.weights_for(feature_type)
        reordered = dict(sorted(weights.items(), key=lambda kv: (-kv[1], kv[0])))
        weights.clear()
        weights.update(reordered)


def build_taste_profile(
    history: list[HistoryEntry],
    details: Mapping[int, ItemDetails],
    watchlist: list[HistoryEntry] | None = None,
    feedback: Iterable[FeatureFeedback] | None = None,
) -> TasteProfile:
    """
    Build a TasteProfile from watch history and item metadata.

    Args:
        history: Watched films with rating / liked / rewatch flags
        details: Metadata keyed by item id; films without an entry are skipped
        watchlist: Unwatched films the user intends to see
        feedback: Persisted FeatureFeedback rows for this user

    Returns:
        TasteProfile with top-N weights per feature type, avoidance sets,
        watchlist intent counters and subgenre / cross-genre patterns
    """
    profile = TasteProfile(stats=_compute_stats(history))
    scores: dict[str, dict[str, float]] = {k: defaultdict(float) for k in PROFILE_TOP_N}
    runtimes: list[int] = []
    pattern_films: list[PatternFilm] = []

    for entry in history:
        item = details.get(entry.item_id)
        if item is None:
            profile.missing_metadata += 1
            logger.debug(f"No metadata for {entry.item_id}, skipping")
            continue

        pattern_films.append(PatternFilm.from_history(entry, item))

        weight = film_weight(entry.rating, entry.liked)
        if weight <= 0:
            continue
        if entry.rewatch:
            weight *= REWATCH_MULTIPLIER
        _accumulate_positive(entry, item, weight, scores, runtimes)

    profile.genres = _top_n(scores['genre'], PROFILE_TOP_N['genre'])
    profile.keywords = _top_n(scores['keyword'], PROFILE_TOP_N['keyword'])
    profile.directors = _top_n(scores['director'], PROFILE_TOP_N['director'])
    profile.actors = _top_n(scores['actor'], PROFILE_TOP_N['actor'])
    profile.decades = _top_n(scores['decade'], PROFILE_TOP_N['decade'])
    profile.languages = _top_n(scores['language'], PROFILE_TOP_N['language'])

    if runtimes:
        profile.runtime_min = min(runtimes)
        profile.runtime_max = max(runtimes)
        profile.runtime_avg = mean(runtimes)

    negatives = [e for e in history if e.is_explicit_negative][:NEGATIVE_SAMPLE_CAP]
    for entry in negatives:
        item = details.get(entry.item_id)
        if item is None:
            continue
        combo = genre_combo_key(item.genre_names)
        if combo:
            profile.avoided_genre_combos.add(combo.lower())
        profile.avoided_genres.update(g.lower() for g in item.genre_names)
        profile.avoided_keywords.update(k.lower() for k in item.keyword_names)

    watched_ids = {e.item_id for e in history}
    wl_genres: dict[str, int] = defaultdict(int)
    wl_keywords: dict[str, int] = defaultdict(int)
    wl_directors: dict[str, int] = defaultdict(int)
    for entry in watchlist or []:
        if entry.item_id in watched_ids:
            continue
        item = details.get(entry.item_id)
        if item is None:
            continue
        for name in item.genre_names:
            wl_genres[name] += 1
        for name in item.keyword_names:
            wl_keywords[name] += 1
        for person in item.directors:
            wl_directors[person.name] += 1
    profile.watchlist_genres = {k: int(v) for k, v in _top_n(wl_genres, WATCHLIST_TOP_N).items()}
    profile.watchlist_keywords = {k: int(v) for k, v in _top_n(wl_keywords, WATCHLIST_TOP_N).items()}
    profile.watchlist_directors = {k: int(v) for k, v in _top_n(wl_directors, WATCHLIST_TOP_N).items()}

    profile.subgenre_patterns = analyze_subgenre_patterns(pattern_films)
    profile.cross_genre_patterns = analyze_cross_genre_patterns(pattern_films)

    if feedback:
        _apply_feature_feedback(profile, feedback)

    if profile.missing_metadata:
        logger.info(
            f"Profile built from {len(history) - profile.missing_metadata}/{len(history)} films "
            f"({profile.missing_metadata} missing metadata)"
        )
    return profile
