"""
Subgenre and cross-genre pattern analysis.

Coarse genre weights cannot express "likes Action, avoids Superhero Action".
This module detects subgenres per parent genre from keyword ids (authoritative)
or text cues (fallback), classifies them as preferred/avoided from watch history,
and learns genre-combination affinities used as a continuous score boost.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from .config import (
    SUBGENRE_AVOID_MIN_WATCHED,
    SUBGENRE_AVOID_MAX_LIKE_RATIO,
    SUBGENRE_PREFER_MIN_WATCH_RATIO,
    SUBGENRE_PREFER_MIN_LIKE_RATIO,
    SUBGENRE_MAJOR_GENRES,
    CROSS_GENRE_MAX_GENRES,
    CROSS_GENRE_MIN_WATCHED,
    CROSS_GENRE_KEYWORD_FACTOR,
    CROSS_GENRE_MAX_EXAMPLES,
)
from .features import genre_combo_key
from .models import HistoryEntry, ItemDetails
from .taxonomy import SUBGENRE_KEYWORDS, KEYWORD_ID_TO_SUBGENRE

logger = logging.getLogger(__name__)

# Parent genres whose normalized name differs from the taxonomy family prefix
_FAMILY_ALIASES = {
    "SCIENCEFICTION": ("SCIFI",),
    "DOCUMENTARY": ("DOC",),
    "ANIMATION": ("ANIMATION", "ANIME"),
}

_KEYS_BY_FAMILY: dict[str, list[str]] = {}
for _key in SUBGENRE_KEYWORDS:
    _KEYS_BY_FAMILY.setdefault(_key.split("_", 1)[0], []).append(_key)


@dataclass
class SubgenreStats:
    watched: int = 0
    liked: int = 0
    rated: int = 0
    avg_rating: float = 0.0
    weight: float = 0.0

    @property
    def like_ratio(self) -> float:
        return self.liked / self.watched if self.watched else 0.0


@dataclass
class SubgenrePattern:
    parent_genre: str
    subgenre_stats: dict[str, SubgenreStats] = field(default_factory=dict)
    avoided_subgenres: set[str] = field(default_factory=set)
    preferred_subgenres: set[str] = field(default_factory=set)


@dataclass
class CrossGenrePattern:
    genre_combo: str
    keywords: set[str] = field(default_factory=set)
    watched: int = 0
    liked: int = 0
    rated: int = 0
    avg_rating: float = 0.0
    weight: float = 0.0
    example_titles: list[str] = field(default_factory=list)


@dataclass
class PatternFilm:
    """The slice of a watched film that pattern analysis needs."""
    title: str
    genres: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    keyword_ids: list[int] = field(default_factory=list)
    rating: float | None = None
    liked: bool = False

    @classmethod
    def from_history(cls, entry: HistoryEntry, details: ItemDetails) -> "PatternFilm":
        return cls(
            title=details.title or entry.title,
            genres=details.genre_names,
            keywords=details.keyword_names,
            keyword_ids=details.keyword_ids,
            rating=entry.rating,
            liked=entry.liked,
        )


def genre_families(genre: str) -> tuple[str, ...]:
    """Taxonomy family prefixes that may be attributed to a parent genre."""
    normalized = re.sub(r"[^A-Z]", "", genre.upper())
    return _FAMILY_ALIASES.get(normalized, (normalized,)) if normalized else ()


def subgenre_label(key: str) -> str:
    return key.replace("_", " ").lower()


def detect_subgenres(
    genre: str,
    title: str,
    keywords: Iterable[str],
    keyword_ids: Iterable[int] = (),
) -> set[str]:
    """
    Detect subgenres of ``genre`` present in an item.

    Keyword ids are matched exactly against the taxonomy. Text cues (substring
    match over the title and keyword names) are used only when the item has no
    keyword ids at all. Only subgenres in the families of ``genre`` are returned,
    so a Horror subgenre is never attributed to the item's Comedy entry.
    """
    families = genre_families(genre)
    if not families:
        return set()

    keyword_ids = list(keyword_ids)
    if keyword_ids:
        detected = set()
        for keyword_id in keyword_ids:
            key = KEYWORD_ID_TO_SUBGENRE.get(keyword_id)
            if key and key.split("_", 1)[0] in families:
                detected.add(key)
        return detected

    keywords_lower = [k.lower() for k in keywords]
    text = " ".join([title.lower(), *keywords_lower])
    detected = set()
    for family in families:
        for key in _KEYS_BY_FAMILY.get(family, []):
            for cue in SUBGENRE_KEYWORDS[key]:
                cue = cue.lower()
                if cue in text or any(cue in k for k in keywords_lower):
                    detected.add(key)
                    break
    return detected


def _is_liked(film: PatternFilm) -> bool:
    return film.liked or (film.rating or 0) >= 4


def _is_disliked(film: PatternFilm) -> bool:
    return not film.liked and (film.rating or 0) < 3


def _update_running_mean(mean: float, count: int, value: float) -> float:
    return mean + (value - mean) / count


def analyze_subgenre_patterns(
    films: Iterable[PatternFilm],
    major_genres: Iterable[str] = SUBGENRE_MAJOR_GENRES,
) -> dict[str, SubgenrePattern]:
    """
    Build per-parent-genre subgenre statistics and classify preferred/avoided subgenres.

    A subgenre is avoided only with strong evidence of active dislike
    (watched >= 10 and like ratio < 0.2); rarely watched subgenres are never avoided.
    """
    patterns = {genre: SubgenrePattern(parent_genre=genre) for genre in major_genres}

    for film in films:
        liked = _is_liked(film)
        disliked = _is_disliked(film)

        for genre in film.genres:
            pattern = patterns.get(genre)
            if pattern is None:
                continue

            for subgenre in detect_subgenres(genre, film.title, film.keywords, film.keyword_ids):
                stats = pattern.subgenre_stats.setdefault(subgenre, SubgenreStats())
                stats.watched += 1

                if liked:
                    stats.liked += 1
                    stats.weight += 2.0 if (film.rating or 0) >= 4.5 else 1.5
                elif not disliked:
                    stats.weight += 0.5

                if film.rating:
                    stats.rated += 1
                    stats.avg_rating = _update_running_mean(stats.avg_rating, stats.rated, film.rating)

    for genre, pattern in patterns.items():
        total_watched = sum(s.watched for s in pattern.subgenre_stats.values())
        if total_watched == 0:
            continue

        for subgenre, stats in pattern.subgenre_stats.items():
            watch_ratio = stats.watched / total_watched
            if watch_ratio >= SUBGENRE_PREFER_MIN_WATCH_RATIO and stats.like_ratio >= SUBGENRE_PREFER_MIN_LIKE_RATIO:
                pattern.preferred_subgenres.add(subgenre)
            if stats.watched >= SUBGENRE_AVOID_MIN_WATCHED and stats.like_ratio < SUBGENRE_AVOID_MAX_LIKE_RATIO:
                pattern.avoided_subgenres.add(subgenre)

        if pattern.avoided_subgenres:
            logger.debug(f"{genre}: avoided subgenres {sorted(pattern.avoided_subgenres)}")

    return patterns


def analyze_cross_genre_patterns(films: Iterable[PatternFilm]) -> dict[str, CrossGenrePattern]:
    """Group liked or >=3-rated films by genre combination, keeping their keyword vocabulary."""
    patterns: dict[str, CrossGenrePattern] = {}

    for film in films:
        liked = _is_liked(film)
        rating = film.rating or 0
        if not liked and rating < 3:
            continue
        if len(set(film.genres)) < 2:
            continue

        combo = genre_combo_key(film.genres, CROSS_GENRE_MAX_GENRES)
        pattern = patterns.setdefault(combo, CrossGenrePattern(genre_combo=combo))
        pattern.watched += 1
        if liked:
            pattern.liked += 1
        if rating > 0:
            pattern.rated += 1
            pattern.avg_rating = _update_running_mean(pattern.avg_rating, pattern.rated, rating)

        if rating >= 4.5:
            pattern.weight += 2.0 if liked else 1.5
        elif rating >= 3.5:
            pattern.weight += 1.5 if liked else 1.0

        pattern.keywords.update(k.lower() for k in film.keywords)
        if len(pattern.example_titles) < CROSS_GENRE_MAX_EXAMPLES:
            pattern.example_titles.append(film.title)

    return patterns


def should_filter_by_subgenre(
    genres: Iterable[str],
    keywords: Iterable[str],
    keyword_ids: Iterable[int],
    title: str,
    patterns: dict[str, SubgenrePattern],
) -> str | None:
    """Return an exclusion reason if the item falls in a subgenre the user avoids."""
    keywords = list(keywords)
    keyword_ids = list(keyword_ids)
    for genre in genres:
        pattern = patterns.get(genre)
        if pattern is None or not pattern.avoided_subgenres:
            continue
        for subgenre in sorted(detect_subgenres(genre, title, keywords, keyword_ids)):
            if subgenre in pattern.avoided_subgenres:
                return f"User avoids {subgenre_label(subgenre)} within {genre}"
    return None


def boost_for_cross_genre_match(
    genres: Iterable[str],
    keywords: Iterable[str],
    patterns: dict[str, CrossGenrePattern],
) -> tuple[float, str | None]:
    """
    Continuous boost for items matching a learned genre combination.

    boost = (weight / watched) * (1 + matched_keywords * 0.2), taking the best
    of the 2- and 3-genre prefixes of the sorted genre list. Patterns with fewer
    than 3 watched films are ignored.
    """
    sorted_genres = sorted(set(genres))
    keyword_set = {k.lower() for k in keywords}

    best_boost = 0.0
    best_reason = None
    for size in range(2, min(CROSS_GENRE_MAX_GENRES, len(sorted_genres)) + 1):
        combo = "+".join(sorted_genres[:size])
        pattern = patterns.get(combo)
        if pattern is None or pattern.watched < CROSS_GENRE_MIN_WATCHED:
            continue

        matches = sorted(pattern.keywords & keyword_set)
        if not matches:
            continue

        boost = (pattern.weight / pattern.watched) * (1 + len(matches) * CROSS_GENRE_KEYWORD_FACTOR)
        if boost > best_boost:
            best_boost = boost
            examples = ", ".join(pattern.example_titles[:2])
            best_reason = f"Matches your taste in {combo} with themes: {', '.join(matches[:3])} (like {examples})"

    return best_boost, best_reason


def generate_subgenre_report(patterns: dict[str, SubgenrePattern]) -> str:
    lines = []
    for genre, pattern in patterns.items():
        if not pattern.preferred_subgenres and not pattern.avoided_subgenres:
            continue
        lines.append(f"{genre}:")
        if pattern.preferred_subgenres:
            lines.append("  Prefers: " + ", ".join(subgenre_label(s) for s in sorted(pattern.preferred_subgenres)))
        if pattern.avoided_subgenres:
            lines.append("  Avoids: " + ", ".join(subgenre_label(s) for s in sorted(pattern.avoided_subgenres)))
    return "\n".join(lines)


def item_subgenres(details: ItemDetails) -> set[str]:
    """All subgenres detected for an item across its own genres."""
    found: set[str] = set()
    for genre in details.genre_names:
        found |= detect_subgenres(genre, details.title, details.keyword_names, details.keyword_ids)
    return found
