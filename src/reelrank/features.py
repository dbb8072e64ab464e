"""
Feature vocabulary shared by profile building, candidate scoring and feedback learning.

Every call site that needs to turn an item into features, or to compare item
features with a set of preferred names, goes through the functions here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from .models import FeatureType, ItemDetails, Person


@dataclass(frozen=True)
class FeatureRef:
    feature_type: FeatureType
    feature_id: int
    name: str


def normalize_name(name: str) -> str:
    return " ".join(name.split()).lower()


def stable_feature_id(text: str) -> int:
    """Deterministic non-negative id for a string key (31-multiplier hash, signed 32-bit, absolute value)."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def decade_start(year: int | None) -> int | None:
    if year is None:
        return None
    return (year // 10) * 10


def decade_label(year: int | None) -> str | None:
    start = decade_start(year)
    return f"{start}s" if start is not None else None


def genre_combo_key(genres: Iterable[str], max_genres: int = 3) -> str:
    """Canonical key for a genre combination: sorted, de-duplicated, capped, joined with '+'."""
    unique = sorted({g for g in genres if g})
    return "+".join(unique[:max_genres])


def ordered_cast(details: ItemDetails, limit: int | None = None) -> list[Person]:
    cast = sorted(details.cast, key=lambda p: p.order)
    return cast[:limit] if limit is not None else cast


def match_names(candidate_names: Iterable[str], preferred: Mapping[str, float] | Iterable[str]) -> list[str]:
    """
    Return the candidate names present in ``preferred`` (case-insensitive), in candidate order.

    ``preferred`` may be a weight mapping or any iterable of names.
    """
    lookup = {normalize_name(p) for p in preferred}
    seen: set[str] = set()
    hits = []
    for name in candidate_names:
        key = normalize_name(name)
        if key in lookup and key not in seen:
            seen.add(key)
            hits.append(name)
    return hits


def extract_features(
    details: ItemDetails,
    max_genres: int | None = None,
    max_keywords: int | None = None,
    max_cast: int | None = None,
    max_directors: int | None = None,
    include_decade: bool = True,
) -> list[FeatureRef]:
    """Decompose an item into feature references, most salient first within each type."""
    genres = details.genres[:max_genres] if max_genres is not None else details.genres
    keywords = details.keywords[:max_keywords] if max_keywords is not None else details.keywords
    directors = details.directors[:max_directors] if max_directors is not None else details.directors

    refs = [FeatureRef(FeatureType.GENRE, g.id, g.name) for g in genres if g.name]
    refs.extend(FeatureRef(FeatureType.KEYWORD, k.id, k.name) for k in keywords if k.name)
    refs.extend(FeatureRef(FeatureType.ACTOR, p.id, p.name) for p in ordered_cast(details, max_cast) if p.name)
    refs.extend(FeatureRef(FeatureType.DIRECTOR, p.id, p.name) for p in directors if p.name)

    if include_decade:
        start = decade_start(details.year)
        if start is not None:
            refs.append(FeatureRef(FeatureType.DECADE, start, f"{start}s"))

    return refs


def subgenre_refs(subgenre_keys: Iterable[str]) -> list[FeatureRef]:
    return [
        FeatureRef(FeatureType.SUBGENRE, stable_feature_id(key), key)
        for key in sorted(set(subgenre_keys))
    ]


def find_feature(details: ItemDetails, feature_type: FeatureType, name: str) -> FeatureRef | None:
    """Look up a single named feature of an item (e.g. the actor behind an ``actor:<name>`` reason)."""
    target = normalize_name(name)
    for ref in extract_features(details):
        if ref.feature_type == feature_type and normalize_name(ref.name) == target:
            return ref
    return None
