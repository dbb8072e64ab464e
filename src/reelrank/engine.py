"""
Ranking entry point.

``RankingEngine.rank`` is the single synchronous surface: profile, filter,
score, rerank. ``RankingEngine.recommend`` is the async pipeline around it:
aggregate, hydrate, rank, and record an exposure metric.
"""

import logging
from dataclasses import replace
from typing import Iterable, Mapping, Union

from .aggregator import Aggregator, select_seeds
from .database import load_blocked_suggestions, load_feature_feedback
from .experiments import MetricEvent, Variant, get_running_configs, get_variant_for_user, record_metric
from .exploration import (
    get_exploration_rate,
    get_genre_transitions,
    transition_weights,
    update_exploration_rate,
    update_genre_transitions,
)
from .feedback import FeedbackWorker, seed_preferences_from_history
from .filters import filter_and_score
from .metadata import MetadataProvider, attach_details, hydrate_details
from .models import AggregatedCandidate, Candidate, HistoryEntry, ItemDetails, RankOptions, RankResult, RankStatus
from .profile import TasteProfile, build_taste_profile
from .reranker import lambda_from_discovery, rerank, top_k_factor_from_discovery
from .config import (
    AB_SHOWN_METRIC,
    DEFAULT_AGGREGATE_LIMIT,
    DEFAULT_DISCOVERY,
    EXPLORATION_RATE_DEFAULT,
    EXPLORATION_TOP_GENRES,
)

logger = logging.getLogger(__name__)

PoolItem = Union[AggregatedCandidate, Candidate, int]


def _as_aggregated(item: PoolItem) -> AggregatedCandidate:
    """Copy pool entries so ranking never mutates the caller's objects."""
    if isinstance(item, AggregatedCandidate):
        return replace(item, sources=list(item.sources), reasons=list(item.reasons),
                       warnings=list(item.warnings), tags=list(item.tags))
    if isinstance(item, Candidate):
        return AggregatedCandidate(item_id=item.item_id, title=item.title, sources=[], details=item.details)
    return AggregatedCandidate(item_id=item, title="", sources=[])


class RankingEngine:
    """
    Personalized ranking over an aggregated candidate pool.

    Args:
        aggregator: Used by ``recommend`` to build the pool
        metadata_provider: Used by ``recommend`` to hydrate details
        feedback_worker: If given, exposure metrics are queued on it instead of written inline
        use_store: Read feedback, blocklist, exploration rate and experiments from the database
    """

    def __init__(
        self,
        aggregator: Aggregator | None = None,
        metadata_provider: MetadataProvider | None = None,
        feedback_worker: FeedbackWorker | None = None,
        use_store: bool = True,
    ):
        self.aggregator = aggregator
        self.metadata_provider = metadata_provider
        self.feedback_worker = feedback_worker
        self.use_store = use_store

    def resolve_variant(self, user_id: str, history: Iterable[HistoryEntry]) -> tuple[str | None, Variant | None]:
        """The first running experiment that has (or accepts) this user, and the user's variant."""
        if not self.use_store:
            return None, None
        films_rated = sum(1 for e in history if e.rating is not None)
        for config in get_running_configs():
            variant = get_variant_for_user(config.id, user_id, films_rated, config=config)
            if variant is not None:
                return config.id, variant
        return None, None

    def build_profile(
        self,
        user_id: str,
        history: list[HistoryEntry],
        details: Mapping[int, ItemDetails],
        watchlist: list[HistoryEntry] | None = None,
    ) -> TasteProfile:
        feedback = load_feature_feedback(user_id) if self.use_store else None
        return build_taste_profile(history, details, watchlist, feedback)

    def rank(
        self,
        user_id: str,
        seed_history: list[HistoryEntry],
        candidate_pool: Iterable[PoolItem],
        options: RankOptions | None = None,
        details: Mapping[int, ItemDetails] | None = None,
        watchlist: list[HistoryEntry] | None = None,
        experiment: tuple[str | None, Variant | None] | None = None,
    ) -> RankResult:
        """
        Rank a candidate pool for one user.

        An empty pool, or one emptied by filters, returns status
        ``no_candidates``; it is never an exception.

        Args:
            user_id: User whose feedback, blocklist and experiments apply
            seed_history: Watch history (ratings, likes, rewatches)
            candidate_pool: AggregatedCandidates, Candidates or bare item ids
            options: Lambda / discovery, result count, exclusions
            details: Metadata for history and candidate items
            watchlist: Unwatched films the user intends to see
            experiment: Pre-resolved (test_id, variant); resolved here when None
        """
        options = options or RankOptions()
        details = details or {}
        seed_history = list(seed_history)
        pool = [_as_aggregated(item) for item in candidate_pool]
        attach_details(pool, details)

        test_id, variant = experiment if experiment is not None else self.resolve_variant(user_id, seed_history)
        params = variant.params if variant else {}

        if not pool:
            logger.info(f"No candidates for {user_id}")
            return RankResult(status=RankStatus.NO_CANDIDATES, variant=variant.name if variant else None)

        profile = self.build_profile(user_id, seed_history, details, watchlist)
        blocked = load_blocked_suggestions(user_id) if self.use_store else set()

        quality_gate = options.quality_gate_threshold
        if quality_gate is None:
            quality_gate = params.get('quality_gate_threshold')

        kept, excluded = filter_and_score(
            pool, profile, seed_history,
            blocked=blocked,
            exclude_ids=set(options.exclude_ids),
            quality_gate_threshold=quality_gate,
        )

        discovery = options.discovery if options.discovery is not None else DEFAULT_DISCOVERY
        if options.mmr_lambda is not None:
            mmr_lambda = options.mmr_lambda
        elif params.get('mmr_lambda') is not None:
            mmr_lambda = float(params['mmr_lambda'])
        else:
            mmr_lambda = lambda_from_discovery(discovery)

        if not kept:
            logger.info(f"All {len(pool)} candidates filtered for {user_id}")
            return RankResult(
                status=RankStatus.NO_CANDIDATES,
                excluded=excluded,
                lambda_used=mmr_lambda,
                variant=variant.name if variant else None,
            )

        top_k_factor = options.top_k_factor
        if top_k_factor is None:
            top_k_factor = params.get('diversity_top_k') or top_k_factor_from_discovery(discovery)

        exploration_rate = options.exploration_rate
        if exploration_rate is None:
            exploration_rate = params.get('exploration_rate')
        if exploration_rate is None:
            exploration_rate = get_exploration_rate(user_id) if self.use_store else EXPLORATION_RATE_DEFAULT

        top_genres = profile.top_genres(EXPLORATION_TOP_GENRES)
        weights = transition_weights(get_genre_transitions(user_id), top_genres) if self.use_store else None

        ranked = rerank(
            kept,
            k=options.result_count,
            mmr_lambda=mmr_lambda,
            top_k_factor=float(top_k_factor),
            exploration_rate=float(exploration_rate),
            top_genres=top_genres,
            transition_weights=weights,
        )
        logger.info(
            f"Ranked {len(ranked)} of {len(pool)} candidates for {user_id} "
            f"(lambda={mmr_lambda:.2f}, {len(excluded)} excluded{f', variant {variant.name}' if variant else ''})"
        )
        return RankResult(
            status=RankStatus.OK,
            candidates=ranked,
            excluded=excluded,
            lambda_used=mmr_lambda,
            variant=variant.name if variant else None,
        )

    def learn_from_history(
        self,
        user_id: str,
        history: list[HistoryEntry],
        details: Mapping[int, ItemDetails],
        seed_feedback: bool = False,
    ) -> dict:
        """
        Update the stored exploration state from a watch history.

        Adjusts the exploration rate from recent exploratory ratings and adds
        the history's genre transitions. With ``seed_feedback`` the history
        also bootstraps the feature feedback counters; do that once per import,
        as seeding adds to whatever is already stored.
        """
        if not self.use_store:
            raise ValueError("learn_from_history() needs the store")
        history = list(history)
        summary = {}
        if seed_feedback:
            summary['features_seeded'] = seed_preferences_from_history(user_id, history, details)
        top_genres = self.build_profile(user_id, history, details).top_genres(EXPLORATION_TOP_GENRES)
        summary['exploration_rate'] = update_exploration_rate(user_id, history, details, top_genres)
        summary['transitions'] = update_genre_transitions(user_id, history, details)
        return summary

    def _record_shown(self, test_id: str, user_id: str, count: int) -> None:
        if self.feedback_worker is not None:
            self.feedback_worker.submit(MetricEvent(test_id, user_id, AB_SHOWN_METRIC, float(count)))
            return
        try:
            record_metric(test_id, user_id, AB_SHOWN_METRIC, float(count))
        except Exception as exc:
            logger.warning(f"Could not record {AB_SHOWN_METRIC} for {user_id} in {test_id}: {exc}")

    async def recommend(
        self,
        user_id: str,
        history: list[HistoryEntry],
        options: RankOptions | None = None,
        details: Mapping[int, ItemDetails] | None = None,
        watchlist: list[HistoryEntry] | None = None,
        limit: int = DEFAULT_AGGREGATE_LIMIT,
        show_progress: bool = False,
    ) -> RankResult:
        """Aggregate candidates from sources, hydrate their metadata, then rank."""
        if self.aggregator is None:
            raise ValueError("recommend() needs an aggregator")

        history = list(history)
        test_id, variant = self.resolve_variant(user_id, history)
        source_weights = variant.get('source_weights') if variant else None

        pool = await self.aggregator.aggregate(select_seeds(history), limit=limit, source_weights=source_weights)

        known = dict(details or {})
        if self.metadata_provider is not None:
            wanted = [c.item_id for c in pool] + [e.item_id for e in history] + [e.item_id for e in watchlist or []]
            missing = [item_id for item_id in wanted if item_id not in known]
            known.update(await hydrate_details(missing, self.metadata_provider, show_progress=show_progress))

        result = self.rank(user_id, history, pool, options, known, watchlist, experiment=(test_id, variant))
        if test_id is not None:
            self._record_shown(test_id, user_id, len(result.candidates))
        return result
