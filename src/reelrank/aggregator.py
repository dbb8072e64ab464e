"""
Multi-source candidate aggregation.

All adapters are called concurrently (bounded by a semaphore) under one global
timeout. Each call settles independently; whatever succeeded is merged by item
id and scored by weighted confidence plus a consensus bonus.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Mapping

from .models import AggregatedCandidate, ConsensusLevel, HistoryEntry, SourceSignal
from .sources import ProviderHealth, ProviderUnavailable, SourceAdapter
from .config import (
    AGGREGATOR_TIMEOUT,
    AGGREGATOR_MAX_CONCURRENT,
    DEFAULT_AGGREGATE_LIMIT,
    SOURCE_WEIGHTS,
    DEFAULT_SOURCE_WEIGHT,
    CONSENSUS_BONUS_MAX,
    QUALITY_SOURCE_BONUS,
    CONSENSUS_HIGH_MIN,
    CONSENSUS_MEDIUM_MIN,
    PROVIDER_COOLDOWN_SECONDS,
    SEEDS_PER_SOURCE,
    SEED_MIN_RATING,
)

logger = logging.getLogger(__name__)


def select_seeds(history: Iterable[HistoryEntry], limit: int = SEEDS_PER_SOURCE) -> list[HistoryEntry]:
    """Highest-rated liked / >=4 star films, best first."""
    positives = [e for e in history if e.liked or (e.rating is not None and e.rating >= SEED_MIN_RATING)]
    positives.sort(key=lambda e: (e.rating or 0.0, e.liked), reverse=True)
    return positives[:limit]


def consensus_level(source_count: int) -> ConsensusLevel:
    """Bucket agreement by the number of distinct sources that recommended an item."""
    if source_count >= CONSENSUS_HIGH_MIN:
        return ConsensusLevel.HIGH
    if source_count >= CONSENSUS_MEDIUM_MIN:
        return ConsensusLevel.MEDIUM
    return ConsensusLevel.LOW


def consensus_score(
    signals: list[SourceSignal],
    active_sources: int,
    source_weights: Mapping[str, float] | None = None,
) -> float:
    """
    Weighted mean confidence, plus a consensus bonus and fixed bonuses for trusted sources.

    score = sum(conf * w) / sum(w) + min(n / active, 1) * 0.3 + quality bonuses
    """
    weights = {**SOURCE_WEIGHTS, **(source_weights or {})}
    total_weight = 0.0
    weighted = 0.0
    for signal in signals:
        w = weights.get(signal.source, DEFAULT_SOURCE_WEIGHT)
        weighted += signal.confidence * w
        total_weight += w
    base = weighted / total_weight if total_weight > 0 else 0.0

    source_names = {s.source for s in signals}
    bonus = min(len(source_names) / active_sources, 1.0) * CONSENSUS_BONUS_MAX if active_sources else 0.0
    quality = sum(QUALITY_SOURCE_BONUS.get(name, 0.0) for name in source_names)
    return base + bonus + quality


def merge_signals(signals: Iterable[SourceSignal]) -> dict[int, AggregatedCandidate]:
    """
    Group signals by item id, one signal per source per item.

    When a source voted several times for the same item, its highest-confidence
    signal is kept. The first non-empty title wins.
    """
    merged: dict[int, AggregatedCandidate] = {}
    for signal in signals:
        candidate = merged.get(signal.item_id)
        if candidate is None:
            candidate = AggregatedCandidate(item_id=signal.item_id, title=signal.title, sources=[])
            merged[signal.item_id] = candidate
        if not candidate.title and signal.title:
            candidate.title = signal.title

        for i, existing in enumerate(candidate.sources):
            if existing.source == signal.source:
                if signal.confidence > existing.confidence:
                    candidate.sources[i] = signal
                break
        else:
            candidate.sources.append(signal)

    for candidate in merged.values():
        candidate.reasons = list(dict.fromkeys(s.reason for s in candidate.sources if s.reason))
    return merged


class Aggregator:
    """
    Fan out to source adapters and merge their votes.

    Provider health is held here, keyed by source name, and is updated from
    each cycle's outcomes. The clock is injectable for cooldown tests.
    """

    def __init__(
        self,
        adapters: list[SourceAdapter],
        timeout: float = AGGREGATOR_TIMEOUT,
        max_concurrent: int = AGGREGATOR_MAX_CONCURRENT,
        cooldown: float = PROVIDER_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        health: Mapping[str, ProviderHealth] | None = None,
    ):
        self.adapters = adapters
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self.cooldown = cooldown
        self.clock = clock
        self.health: dict[str, ProviderHealth] = dict(health or {})

    def _ready_adapters(self) -> list[SourceAdapter]:
        now = self.clock()
        ready = []
        for adapter in self.adapters:
            health = self.health.get(adapter.name, ProviderHealth())
            if health.is_available(now):
                ready.append(adapter)
            else:
                remaining = (health.cooldown_until or now) - now
                logger.info(f"Skipping {adapter.name}: cooling down for another {remaining:.0f}s")
        return ready

    async def _call(self, adapter: SourceAdapter, semaphore: asyncio.Semaphore, seeds: list[HistoryEntry]):
        async with semaphore:
            return await adapter.fetch_recommendations(seeds)

    async def aggregate(
        self,
        seeds: list[HistoryEntry],
        limit: int = DEFAULT_AGGREGATE_LIMIT,
        source_weights: Mapping[str, float] | None = None,
    ) -> list[AggregatedCandidate]:
        """
        Collect, merge and score recommendations for the given seeds.

        Never raises for adapter failures or timeouts; failed sources simply
        contribute nothing and do not count as active.

        Args:
            seeds: Seed films, usually from select_seeds()
            limit: Maximum candidates to return
            source_weights: Per-call overrides of the source reliability weights

        Returns:
            Candidates sorted by score descending, then item id
        """
        adapters = self._ready_adapters()
        if not adapters:
            logger.warning("No source adapters available")
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent)
        tasks = {
            asyncio.ensure_future(self._call(adapter, semaphore, seeds)): adapter
            for adapter in adapters
        }
        _, pending = await asyncio.wait(list(tasks), timeout=self.timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        signals: list[SourceSignal] = []
        succeeded = []
        error_summary: dict[str, int] = {}
        now = self.clock()

        for task, adapter in tasks.items():
            if task in pending:
                error_summary["Timeout"] = error_summary.get("Timeout", 0) + 1
                logger.warning(f"{adapter.name} did not finish within {self.timeout}s")
                continue

            exc = task.exception()
            if exc is None:
                result = task.result() or []
                signals.extend(result)
                succeeded.append(adapter.name)
                self.health[adapter.name] = ProviderHealth()
                logger.debug(f"{adapter.name}: {len(result)} signals")
                continue

            error_type = type(exc).__name__
            error_summary[error_type] = error_summary.get(error_type, 0) + 1
            if isinstance(exc, ProviderUnavailable):
                current = self.health.get(adapter.name, ProviderHealth())
                self.health[adapter.name] = current.trip(now, self.cooldown)
                logger.warning(f"{adapter.name} unavailable (HTTP {exc.status_code}), cooling down for {self.cooldown:.0f}s")
            else:
                logger.warning(f"{adapter.name} failed: {error_type}: {exc}")

        active = len(succeeded)
        merged = merge_signals(signals)
        for candidate in merged.values():
            candidate.score = consensus_score(candidate.sources, active, source_weights)
            candidate.consensus_level = consensus_level(candidate.source_count)

        ranked = sorted(merged.values(), key=lambda c: (-c.score, c.item_id))[:limit]

        if error_summary:
            logger.warning(
                f"Aggregation complete: {active}/{len(adapters)} sources succeeded, {len(merged)} candidates"
            )
            logger.info(f"Error breakdown: {error_summary}")
        else:
            logger.info(f"Aggregation complete: {active}/{len(adapters)} sources succeeded, {len(merged)} candidates")

        return ranked
