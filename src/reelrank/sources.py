"""
Source adapters: the normalized boundary to external recommendation providers.

Each adapter turns a list of seed films into ``SourceSignal`` votes. Adapters
may raise; isolating failures is the aggregator's job. ``ProviderUnavailable``
is the one exception with meaning beyond "this call failed": it tells the
aggregator to put the provider into cooldown.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterable, Union

import httpx

from .models import HistoryEntry, SourceSignal
from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    TRAKT_CLIENT_ID,
    TRAKT_BASE_URL,
    HTTP_TIMEOUT,
    USER_AGENT,
    SEEDS_PER_SOURCE,
    TMDB_RESULTS_PER_SEED,
    TRAKT_RESULTS_PER_SEED,
    SIGNAL_CONFIDENCE,
    PROVIDER_TRIP_STATUS_CODES,
)

logger = logging.getLogger(__name__)


class ProviderUnavailable(Exception):
    """A provider answered with an auth or rate-limit class status."""

    def __init__(self, source: str, status_code: int, message: str = ""):
        self.source = source
        self.status_code = status_code
        super().__init__(message or f"{source} unavailable (HTTP {status_code})")


@dataclass(frozen=True)
class ProviderHealth:
    """
    Circuit-breaker state for one provider.

    Immutable: ``trip`` and ``reset`` return new values, which the owner
    stores. Time is always passed in, so tests drive it with a fake clock.
    """
    available: bool = True
    cooldown_until: float | None = None

    def is_available(self, now: float) -> bool:
        if self.available:
            return True
        return self.cooldown_until is not None and now >= self.cooldown_until

    def trip(self, now: float, cooldown: float) -> "ProviderHealth":
        return replace(self, available=False, cooldown_until=now + cooldown)

    def reset(self) -> "ProviderHealth":
        return ProviderHealth()


class SourceAdapter:
    """Base interface for recommendation providers."""

    name: str = "source"

    def is_configured(self) -> bool:
        return True

    async def fetch_recommendations(self, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        raise NotImplementedError


class StaticSourceAdapter(SourceAdapter):
    """Adapter backed by a fixed signal list (offline runs and tests)."""

    def __init__(self, name: str, signals: Iterable[SourceSignal]):
        self.name = name
        self._signals = list(signals)

    async def fetch_recommendations(self, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        return list(self._signals)


SignalFunc = Callable[[list[HistoryEntry]], Union[list[SourceSignal], Awaitable[list[SourceSignal]]]]


class CallableSourceAdapter(SourceAdapter):
    """Wrap a plain function (sync or async) as an adapter."""

    def __init__(self, name: str, func: SignalFunc):
        self.name = name
        self._func = func

    async def fetch_recommendations(self, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        result = self._func(seeds)
        if inspect.isawaitable(result):
            result = await result
        return list(result)


class HttpSourceAdapter(SourceAdapter):
    """
    Shared httpx plumbing for JSON providers.

    Pass a client to reuse a connection pool (or to inject a MockTransport);
    otherwise a temporary client is opened per fetch.
    """

    base_url = ""

    def __init__(self, client: httpx.AsyncClient | None = None, delay: float = 0.0):
        self.client = client
        self.delay = delay

    def _headers(self) -> dict:
        return {"User-Agent": USER_AGENT}

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: dict | None = None):
        """GET and decode JSON. Returns None on 404 and non-fatal HTTP errors."""
        if self.delay:
            await asyncio.sleep(self.delay)
        url = f"{self.base_url}{path}"
        try:
            resp = await client.get(url, params=params, headers=self._headers())
            if resp.status_code == 404:
                logger.debug(f"{self.name}: not found {path}")
                return None
            if resp.status_code in PROVIDER_TRIP_STATUS_CODES:
                raise ProviderUnavailable(self.name, resp.status_code)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(f"{self.name}: HTTP {exc.response.status_code} on {path}")
            return None

    async def _collect(self, client: httpx.AsyncClient, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        raise NotImplementedError

    async def fetch_recommendations(self, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        seeds = seeds[:SEEDS_PER_SOURCE]
        if not seeds:
            return []
        if self.client is not None:
            return await self._collect(self.client, seeds)
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
            return await self._collect(client, seeds)


class TmdbSourceAdapter(HttpSourceAdapter):
    """TMDB similar + recommended lists per seed."""

    name = "tmdb"
    base_url = TMDB_BASE_URL

    def __init__(self, api_key: str | None = TMDB_API_KEY, client: httpx.AsyncClient | None = None, delay: float = 0.0):
        super().__init__(client=client, delay=delay)
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _collect(self, client: httpx.AsyncClient, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        signals = []
        for seed in seeds:
            label = seed.title or f"#{seed.item_id}"
            for endpoint, signal_key, verb in (
                ("recommendations", "tmdb_recommended", "Recommended for fans of"),
                ("similar", "tmdb_similar", "Similar to"),
            ):
                data = await self._get_json(client, f"/movie/{seed.item_id}/{endpoint}", {"api_key": self.api_key})
                if not data:
                    continue
                for result in (data.get("results") or [])[:TMDB_RESULTS_PER_SEED]:
                    if not result.get("id"):
                        continue
                    signals.append(SourceSignal(
                        source=self.name,
                        item_id=int(result["id"]),
                        confidence=SIGNAL_CONFIDENCE[signal_key],
                        reason=f"{verb} {label}",
                        title=result.get("title") or "",
                    ))
        return signals


class TraktSourceAdapter(HttpSourceAdapter):
    """Trakt related movies, mapped back to TMDB ids."""

    name = "trakt"
    base_url = TRAKT_BASE_URL

    def __init__(self, client_id: str | None = TRAKT_CLIENT_ID, client: httpx.AsyncClient | None = None, delay: float = 0.0):
        super().__init__(client=client, delay=delay)
        self.client_id = client_id

    def is_configured(self) -> bool:
        return bool(self.client_id)

    def _headers(self) -> dict:
        return {
            **super()._headers(),
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": self.client_id or "",
        }

    async def _collect(self, client: httpx.AsyncClient, seeds: list[HistoryEntry]) -> list[SourceSignal]:
        signals = []
        for seed in seeds:
            data = await self._get_json(client, f"/movies/{seed.item_id}/related", {"limit": TRAKT_RESULTS_PER_SEED})
            if not data:
                continue
            for movie in data[:TRAKT_RESULTS_PER_SEED]:
                tmdb_id = (movie.get("ids") or {}).get("tmdb")
                if not tmdb_id:
                    continue
                signals.append(SourceSignal(
                    source=self.name,
                    item_id=int(tmdb_id),
                    confidence=SIGNAL_CONFIDENCE["trakt_related"],
                    reason=f"Trakt users who liked {seed.title or seed.item_id} also liked this",
                    title=movie.get("title") or "",
                ))
        return signals


def default_adapters(client: httpx.AsyncClient | None = None) -> list[SourceAdapter]:
    """Adapters for every provider with credentials in the environment."""
    adapters = [TmdbSourceAdapter(client=client), TraktSourceAdapter(client=client)]
    configured = [a for a in adapters if a.is_configured()]
    skipped = [a.name for a in adapters if not a.is_configured()]
    if skipped:
        logger.info(f"Sources without credentials: {', '.join(skipped)}")
    return configured
