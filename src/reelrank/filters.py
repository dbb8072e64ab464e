"""
Hard filters and score adjustments applied to aggregated candidates.

Every check compares item features with profile sets through the matchers in
features.py and subgenres.py, so the filter used at ranking time and the one
used when explaining an exclusion cannot drift apart.
"""

import logging
from typing import Iterable, Mapping

from .features import genre_combo_key, match_names, ordered_cast, decade_label
from .models import AggregatedCandidate, FeatureType, HistoryEntry, ItemDetails
from .profile import TasteProfile
from .subgenres import should_filter_by_subgenre, boost_for_cross_genre_match, item_subgenres, subgenre_label
from .config import (
    MATCH_WEIGHTS,
    MATCH_CAPS,
    PERSONAL_MATCH_WEIGHT,
    CROSS_GENRE_BOOST_WEIGHT,
    WATCHLIST_INTENT_WEIGHT,
    SEED_POSITIVE_BOOST,
    AVOIDED_KEYWORD_MIN_MATCHES,
    RUNTIME_TIGHT_RANGE,
    RUNTIME_TOLERANCE,
    MAX_CAST_ORDER,
)

logger = logging.getLogger(__name__)

MAX_MATCH_SCORE = sum(MATCH_WEIGHTS[k] * MATCH_CAPS[k] for k in MATCH_WEIGHTS)
WATCHLIST_INTENT_SATURATION = 5


def hard_filter_reason(
    candidate: AggregatedCandidate,
    profile: TasteProfile | None,
    history_by_id: Mapping[int, HistoryEntry],
    blocked: set[int] = frozenset(),
    exclude_ids: set[int] = frozenset(),
) -> str | None:
    """
    Return why a candidate must be excluded, or None if it passes.

    Checks run in a fixed order and the first hit wins. Checks that need
    metadata are skipped when the candidate has none.
    """
    if candidate.item_id is None:
        return "Missing item id"
    if candidate.item_id in exclude_ids:
        return "Excluded by caller"
    if candidate.item_id in blocked:
        return "Blocked by user"

    entry = history_by_id.get(candidate.item_id)
    if entry is not None and entry.is_explicit_negative:
        return f"You rated this {entry.rating:g} and did not like it"

    details = candidate.details
    if details is None or profile is None:
        return None

    reason = should_filter_by_subgenre(
        details.genre_names, details.keyword_names, details.keyword_ids, details.title, profile.subgenre_patterns
    )
    if reason:
        return reason
    for subgenre in sorted(item_subgenres(details)):
        if profile.is_avoided(FeatureType.SUBGENRE, subgenre):
            return f"You marked {subgenre_label(subgenre)} as avoided"

    combo = genre_combo_key(details.genre_names)
    if combo and combo.lower() in profile.avoided_genre_combos:
        return f"Genre combination {combo} matches films you disliked"

    avoided_keywords = match_names(details.keyword_names, profile.avoided_keywords)
    if len(avoided_keywords) >= AVOIDED_KEYWORD_MIN_MATCHES:
        return f"Themes you tend to dislike: {', '.join(avoided_keywords[:3])}"

    for person in ordered_cast(details, MAX_CAST_ORDER):
        if profile.is_avoided(FeatureType.ACTOR, person.name):
            return f"Features {person.name}, whom you avoid"
    for person in details.directors:
        if profile.is_avoided(FeatureType.DIRECTOR, person.name):
            return f"Directed by {person.name}, whom you avoid"
    for name in details.keyword_names:
        if profile.is_avoided(FeatureType.KEYWORD, name):
            return f"Theme you avoid: {name}"

    return None


def runtime_warning(details: ItemDetails, profile: TasteProfile) -> str | None:
    """Soft warning for runtimes well outside a user's usual range."""
    if not details.runtime or not profile.runtime_max:
        return None
    if profile.runtime_max - profile.runtime_min > RUNTIME_TIGHT_RANGE:
        return None
    if details.runtime > profile.runtime_max + RUNTIME_TOLERANCE:
        return f"Longer than usual ({details.runtime} min)"
    if details.runtime < profile.runtime_min - RUNTIME_TOLERANCE:
        return f"Shorter than usual ({details.runtime} min)"
    return None


def personal_match(details: ItemDetails, profile: TasteProfile) -> tuple[float, list[str], list[str]]:
    """
    Overlap between an item and a profile.

    Returns:
        (score in [0, 1], human-readable reasons, reason tags)
    """
    raw = 0.0
    reasons = []
    tags = []

    genres = match_names(details.genre_names, profile.genres)[:MATCH_CAPS['genre']]
    if genres:
        raw += MATCH_WEIGHTS['genre'] * len(genres)
        reasons.append(f"Matches your taste in {', '.join(genres)}")
        tags.append("genre_match")

    directors = match_names([p.name for p in details.directors], profile.directors)[:MATCH_CAPS['director']]
    if directors:
        raw += MATCH_WEIGHTS['director'] * len(directors)
        reasons.append(f"Directed by {', '.join(directors)}")
        tags.append("director_match")

    actors = match_names([p.name for p in ordered_cast(details, MAX_CAST_ORDER)], profile.actors)[:MATCH_CAPS['actor']]
    if actors:
        raw += MATCH_WEIGHTS['actor'] * len(actors)
        reasons.append(f"Stars {', '.join(actors)}")
        tags.append("actor_match")

    keywords = match_names(details.keyword_names, profile.keywords)[:MATCH_CAPS['keyword']]
    if keywords:
        raw += MATCH_WEIGHTS['keyword'] * len(keywords)
        reasons.append(f"Themes: {', '.join(keywords[:3])}")
        tags.append("keyword_match")

    label = decade_label(details.year)
    if label and label in profile.decades:
        raw += MATCH_WEIGHTS['decade']
        tags.append("decade_match")

    if details.language and details.language in profile.languages:
        raw += MATCH_WEIGHTS['language']

    return min(raw / MAX_MATCH_SCORE, 1.0), reasons, tags


def watchlist_intent(details: ItemDetails, profile: TasteProfile) -> float:
    """Fraction in [0, 1] of how strongly an item lines up with the user's watchlist."""
    hits = (
        len(match_names(details.genre_names, profile.watchlist_genres))
        + len(match_names(details.keyword_names, profile.watchlist_keywords))
        + len(match_names([p.name for p in details.directors], profile.watchlist_directors))
    )
    return min(hits / WATCHLIST_INTENT_SATURATION, 1.0)


def adjust_score(
    candidate: AggregatedCandidate,
    profile: TasteProfile | None,
    seed_positive_ids: set[int],
) -> AggregatedCandidate:
    """
    Add personal-match, cross-genre, watchlist and seed boosts to the aggregate score.

    A candidate without metadata keeps its aggregate score (plus the seed boost,
    which needs no metadata).
    """
    if candidate.item_id in seed_positive_ids:
        candidate.score += SEED_POSITIVE_BOOST
        candidate.reasons.append("You loved this before")
        candidate.tags.append("seed")

    details = candidate.details
    if details is None or profile is None:
        return candidate

    match, reasons, tags = personal_match(details, profile)
    candidate.score += match * PERSONAL_MATCH_WEIGHT
    candidate.reasons.extend(reasons)
    candidate.tags.extend(tags)

    boost, reason = boost_for_cross_genre_match(details.genre_names, details.keyword_names, profile.cross_genre_patterns)
    if boost > 0:
        candidate.score += boost * CROSS_GENRE_BOOST_WEIGHT
        if reason:
            candidate.reasons.append(reason)
        candidate.tags.append("cross_genre")

    intent = watchlist_intent(details, profile)
    if intent > 0:
        candidate.score += intent * WATCHLIST_INTENT_WEIGHT
        candidate.tags.append("watchlist")

    warning = runtime_warning(details, profile)
    if warning:
        candidate.warnings.append(warning)

    return candidate


def filter_and_score(
    candidates: Iterable[AggregatedCandidate],
    profile: TasteProfile | None,
    history: Iterable[HistoryEntry],
    blocked: set[int] = frozenset(),
    exclude_ids: set[int] = frozenset(),
    quality_gate_threshold: float | None = None,
) -> tuple[list[AggregatedCandidate], dict[int, str]]:
    """
    Apply hard filters then score adjustments.

    Returns:
        (kept candidates sorted by score, excluded item id -> reason)
    """
    history = list(history)
    history_by_id = {e.item_id: e for e in history}
    seed_positive_ids = {e.item_id for e in history if e.is_positive}

    kept = []
    excluded: dict[int, str] = {}
    for candidate in candidates:
        if quality_gate_threshold is not None and candidate.score < quality_gate_threshold:
            excluded[candidate.item_id] = f"Below quality gate ({candidate.score:.2f} < {quality_gate_threshold:.2f})"
            continue

        reason = hard_filter_reason(candidate, profile, history_by_id, blocked, exclude_ids)
        if reason:
            excluded[candidate.item_id] = reason
            logger.debug(f"Excluded {candidate.item_id}: {reason}")
            continue

        kept.append(adjust_score(candidate, profile, seed_positive_ids))

    kept.sort(key=lambda c: (-c.score, c.item_id))
    if excluded:
        logger.info(f"Filtered {len(excluded)} candidates, {len(kept)} remain")
    return kept, excluded


def generate_filtering_report(excluded: Mapping[int, str]) -> str:
    """Group exclusion reasons by their leading phrase for display."""
    if not excluded:
        return "No candidates were filtered."
    counts: dict[str, int] = {}
    for reason in excluded.values():
        key = reason.split(":")[0]
        counts[key] = counts.get(key, 0) + 1
    lines = [f"Filtered {len(excluded)} candidates:"]
    for key, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"  {n:>3}  {key}")
    return "\n".join(lines)
