"""
Core data types shared across the engine.

Feature records use a closed ``FeatureType`` enum with a fixed schema per type.
Only experiment variants carry a free-form ``params`` mapping (see experiments.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class FeatureType(str, Enum):
    GENRE = "genre"
    KEYWORD = "keyword"
    ACTOR = "actor"
    DIRECTOR = "director"
    DECADE = "decade"
    SUBGENRE = "subgenre"

    @classmethod
    def parse(cls, value: "str | FeatureType") -> "FeatureType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown feature type: {value!r}") from None


class ConsensusLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RankStatus(str, Enum):
    OK = "ok"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True)
class Tag:
    """A named taxonomy entry (genre or keyword) with its provider id."""
    id: int
    name: str


@dataclass(frozen=True)
class Person:
    id: int
    name: str
    order: int = 0


@dataclass
class ItemDetails:
    """Metadata for one movie as returned by a metadata provider."""
    item_id: int
    title: str = ""
    genres: list[Tag] = field(default_factory=list)
    keywords: list[Tag] = field(default_factory=list)
    cast: list[Person] = field(default_factory=list)
    directors: list[Person] = field(default_factory=list)
    runtime: int | None = None
    language: str | None = None
    release_date: str | None = None

    @property
    def year(self) -> int | None:
        if not self.release_date or len(self.release_date) < 4:
            return None
        try:
            return int(self.release_date[:4])
        except ValueError:
            return None

    @property
    def genre_names(self) -> list[str]:
        return [g.name for g in self.genres if g.name]

    @property
    def keyword_names(self) -> list[str]:
        return [k.name for k in self.keywords if k.name]

    @property
    def keyword_ids(self) -> list[int]:
        return [k.id for k in self.keywords]

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ItemDetails":
        """Build from a TMDB-shaped movie payload (credits and keywords appended)."""
        credits = payload.get("credits") or {}
        keywords_block = payload.get("keywords") or {}
        if isinstance(keywords_block, dict):
            raw_keywords = keywords_block.get("keywords") or keywords_block.get("results") or []
        else:
            raw_keywords = keywords_block

        cast = [
            Person(id=int(c.get("id", 0)), name=c.get("name", ""), order=int(c.get("order", i)))
            for i, c in enumerate(credits.get("cast") or payload.get("cast") or [])
            if isinstance(c, dict)
        ]
        crew = credits.get("crew") or []
        directors = [
            Person(id=int(c.get("id", 0)), name=c.get("name", ""))
            for c in crew
            if isinstance(c, dict) and c.get("job") == "Director"
        ]
        directors.extend(
            Person(id=int(d.get("id", 0)), name=d.get("name", ""))
            for d in payload.get("directors") or []
            if isinstance(d, dict)
        )

        return cls(
            item_id=int(payload["id"] if "id" in payload else payload["item_id"]),
            title=payload.get("title") or "",
            genres=[Tag(int(g.get("id", 0)), g.get("name", "")) for g in payload.get("genres") or []],
            keywords=[Tag(int(k.get("id", 0)), k.get("name", "")) for k in raw_keywords],
            cast=cast,
            directors=directors,
            runtime=payload.get("runtime") or None,
            language=payload.get("original_language") or payload.get("language"),
            release_date=payload.get("release_date") or None,
        )


@dataclass
class Candidate:
    """An item under consideration, with whatever features are known for it."""
    item_id: int
    title: str = ""
    details: ItemDetails | None = None


@dataclass(frozen=True)
class SourceSignal:
    """One provider's vote for one item in one recommendation cycle."""
    source: str
    item_id: int
    confidence: float
    reason: str = ""
    title: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            clamped = max(0.0, min(1.0, self.confidence))
            logger.warning(
                f"Confidence {self.confidence} from {self.source} for {self.item_id} outside [0,1], clamping to {clamped}"
            )
            object.__setattr__(self, "confidence", clamped)


@dataclass
class AggregatedCandidate:
    """Signals for one item merged across sources, plus scoring output."""
    item_id: int
    title: str
    sources: list[SourceSignal]
    score: float = 0.0
    consensus_level: ConsensusLevel = ConsensusLevel.LOW
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: ItemDetails | None = None
    exploratory: bool = False
    # Reason categories ("genre_match", "cross_genre", ...) used for similarity and pairwise logs
    tags: list[str] = field(default_factory=list)

    @property
    def source_names(self) -> list[str]:
        return [s.source for s in self.sources]

    @property
    def reason_tags(self) -> set[str]:
        return set(self.source_names) | set(self.tags)

    @property
    def source_count(self) -> int:
        return len({s.source for s in self.sources})


@dataclass
class FeatureFeedback:
    """Persisted positive/negative evidence for one feature of one user."""
    user_id: str
    feature_type: FeatureType
    feature_id: int
    name: str = ""
    positive_count: int = 0
    negative_count: int = 0

    @property
    def inferred_preference(self) -> float:
        return laplace_preference(self.positive_count, self.negative_count)

    @property
    def total(self) -> int:
        return self.positive_count + self.negative_count


def laplace_preference(positive: int, negative: int) -> float:
    """Laplace-smoothed preference; strictly inside (0, 1) for non-negative counts."""
    return (positive + 1) / (positive + negative + 2)


@dataclass
class HistoryEntry:
    """One film in a user's watch history (or watchlist)."""
    item_id: int
    rating: float | None = None
    liked: bool = False
    rewatch: bool = False
    title: str = ""
    watched_at: str | None = None

    @property
    def is_positive(self) -> bool:
        return self.liked or (self.rating is not None and self.rating >= 4.0)

    @property
    def is_explicit_negative(self) -> bool:
        return not self.liked and self.rating is not None and self.rating < 3.0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "HistoryEntry":
        rating = payload.get("rating")
        return cls(
            item_id=int(payload.get("item_id", payload.get("id"))),
            rating=float(rating) if rating is not None else None,
            liked=bool(payload.get("liked", False)),
            rewatch=bool(payload.get("rewatch", False)),
            title=payload.get("title") or "",
            watched_at=payload.get("watched_at"),
        )


@dataclass
class RankOptions:
    """Caller-tunable ranking options. ``mmr_lambda`` wins over ``discovery`` when both are set."""
    mmr_lambda: float | None = None
    discovery: float | None = None
    result_count: int = 20
    exclude_ids: set[int] = field(default_factory=set)
    exploration_rate: float | None = None
    quality_gate_threshold: float | None = None
    top_k_factor: float | None = None


@dataclass
class RankResult:
    status: RankStatus
    candidates: list[AggregatedCandidate] = field(default_factory=list)
    excluded: dict[int, str] = field(default_factory=dict)
    lambda_used: float | None = None
    variant: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.status == RankStatus.NO_CANDIDATES
