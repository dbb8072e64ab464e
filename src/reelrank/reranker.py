"""
Maximal Marginal Relevance reranking.

Greedy selection of argmax  lambda * relevance(c) - (1 - lambda) * max_sim(c, selected)
over a pool capped at ceil(k * top_k_factor). No randomness: equal inputs give
equal orderings.
"""

import logging
import math
from typing import Iterable, Mapping, Sequence

import numpy as np

from .models import AggregatedCandidate
from .utils import clamp
from .config import (
    MMR_LAMBDA_MIN,
    MMR_LAMBDA_MAX,
    MMR_TOPK_FACTOR_MIN,
    MMR_TOPK_FACTOR_MAX,
    DEFAULT_DISCOVERY,
    SIMILARITY_WEIGHTS,
    TRANSITION_SCORE_BONUS,
)

logger = logging.getLogger(__name__)


def lambda_from_discovery(discovery: float = DEFAULT_DISCOVERY) -> float:
    """Map the 0-100 discovery control linearly onto [0.15, 0.5]."""
    d = clamp(discovery, 0.0, 100.0) / 100.0
    return MMR_LAMBDA_MIN + d * (MMR_LAMBDA_MAX - MMR_LAMBDA_MIN)


def top_k_factor_from_discovery(discovery: float = DEFAULT_DISCOVERY) -> float:
    d = clamp(discovery, 0.0, 100.0) / 100.0
    return MMR_TOPK_FACTOR_MIN + d * (MMR_TOPK_FACTOR_MAX - MMR_TOPK_FACTOR_MIN)


def _jaccard(a: set, b: set) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _feature_sets(candidate: AggregatedCandidate) -> tuple[set[str], set[str], set[str]]:
    details = candidate.details
    genres = {g.lower() for g in details.genre_names} if details else set()
    keywords = {k.lower() for k in details.keyword_names} if details else set()
    return genres, keywords, candidate.reason_tags


def candidate_similarity(a: AggregatedCandidate, b: AggregatedCandidate) -> float:
    """Weighted Jaccard overlap of genres, keywords and reason tags."""
    ga, ka, ra = _feature_sets(a)
    gb, kb, rb = _feature_sets(b)
    return (
        SIMILARITY_WEIGHTS['genre'] * _jaccard(ga, gb)
        + SIMILARITY_WEIGHTS['keyword'] * _jaccard(ka, kb)
        + SIMILARITY_WEIGHTS['reason'] * _jaccard(ra, rb)
    )


def similarity_matrix(candidates: Sequence[AggregatedCandidate]) -> np.ndarray:
    n = len(candidates)
    sets = [_feature_sets(c) for c in candidates]
    sim = np.zeros((n, n), dtype=float)
    for i in range(n):
        gi, ki, ri = sets[i]
        for j in range(i + 1, n):
            gj, kj, rj = sets[j]
            value = (
                SIMILARITY_WEIGHTS['genre'] * _jaccard(gi, gj)
                + SIMILARITY_WEIGHTS['keyword'] * _jaccard(ki, kj)
                + SIMILARITY_WEIGHTS['reason'] * _jaccard(ri, rj)
            )
            sim[i, j] = sim[j, i] = value
    return sim


def _dedupe_sorted(candidates: Iterable[AggregatedCandidate]) -> list[AggregatedCandidate]:
    seen: set[int] = set()
    unique = []
    for c in sorted(candidates, key=lambda c: (-c.score, c.item_id)):
        if c.item_id in seen:
            continue
        seen.add(c.item_id)
        unique.append(c)
    return unique


def mmr_rerank(
    candidates: Iterable[AggregatedCandidate],
    k: int,
    mmr_lambda: float,
    top_k_factor: float = MMR_TOPK_FACTOR_MIN,
) -> list[AggregatedCandidate]:
    """
    Select up to k candidates balancing relevance and diversity.

    Relevance is the candidate score min-max normalized within the pool. Ties
    resolve to the higher raw score, then the lower item id.
    """
    if k <= 0:
        return []
    mmr_lambda = clamp(mmr_lambda, 0.0, 1.0)
    pool = _dedupe_sorted(candidates)[:max(k, math.ceil(k * top_k_factor))]
    if not pool:
        return []

    scores = np.array([c.score for c in pool], dtype=float)
    spread = scores.max() - scores.min()
    relevance = (scores - scores.min()) / spread if spread > 0 else np.ones_like(scores)
    sim = similarity_matrix(pool)

    max_sim = np.zeros(len(pool))
    available = np.ones(len(pool), dtype=bool)
    order = []
    for _ in range(min(k, len(pool))):
        mmr = mmr_lambda * relevance - (1.0 - mmr_lambda) * max_sim
        mmr[~available] = -np.inf
        # Pool is sorted by (-score, item_id), so argmax's first-index rule is the tie-break
        pick = int(np.argmax(mmr))
        order.append(pick)
        available[pick] = False
        max_sim = np.maximum(max_sim, sim[pick])

    logger.debug(f"MMR selected {len(order)} of {len(pool)} (lambda={mmr_lambda:.2f})")
    return [pool[i] for i in order]


def select_exploratory(
    candidates: Iterable[AggregatedCandidate],
    top_genres: Iterable[str],
    n: int,
    exclude_ids: set[int] = frozenset(),
    transition_weights: Mapping[str, float] | None = None,
) -> list[AggregatedCandidate]:
    """
    Best candidates whose genres avoid the user's top genres entirely.

    With ``transition_weights`` (lowercased genre -> learned success rate for
    moving there from a top genre), a candidate's rank among the exploratory
    picks is its score plus 0.2 times its best genre weight. Candidate scores
    themselves are left alone.
    """
    if n <= 0:
        return []
    top = {g.lower() for g in top_genres}
    weights = transition_weights or {}
    eligible = []
    for c in _dedupe_sorted(candidates):
        if c.item_id in exclude_ids or c.details is None:
            continue
        genres = {g.lower() for g in c.details.genre_names}
        if not genres or genres & top:
            continue
        boost = TRANSITION_SCORE_BONUS * max((weights.get(g, 0.0) for g in genres), default=0.0)
        eligible.append((c.score + boost, c))
    eligible.sort(key=lambda pair: (-pair[0], pair[1].item_id))
    return [c for _, c in eligible[:n]]


def rerank(
    candidates: Iterable[AggregatedCandidate],
    k: int,
    mmr_lambda: float,
    top_k_factor: float = MMR_TOPK_FACTOR_MIN,
    exploration_rate: float = 0.0,
    top_genres: Iterable[str] = (),
    transition_weights: Mapping[str, float] | None = None,
) -> list[AggregatedCandidate]:
    """
    MMR selection with ``round(exploration_rate * k)`` slots reserved for exploration.

    Exploratory picks come after the MMR picks. Unfilled exploration slots fall
    back to the next MMR picks.
    """
    candidates = list(candidates)
    full = mmr_rerank(candidates, k, mmr_lambda, top_k_factor)
    n_explore = int(clamp(exploration_rate, 0.0, 1.0) * k + 0.5) if top_genres else 0
    if n_explore == 0:
        return full

    main = full[:max(0, k - n_explore)]
    main_ids = {c.item_id for c in main}
    explorers = select_exploratory(
        candidates, top_genres, n_explore, exclude_ids=main_ids, transition_weights=transition_weights
    )
    for c in explorers:
        c.exploratory = True
        if "exploration" not in c.tags:
            c.tags.append("exploration")

    chosen_ids = main_ids | {c.item_id for c in explorers}
    fill = [c for c in full[len(main):] if c.item_id not in chosen_ids]
    result = main + explorers + fill
    return result[:k]
