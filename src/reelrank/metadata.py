"""
Metadata provider interface and the worker-pool hydration loop.

``hydrate_details`` runs N workers over a shared queue; each worker waits a
fixed pacing delay between its calls. A miss or an error for one item is
logged and skipped, never fatal.
"""

import asyncio
import logging
from typing import Iterable, Mapping, Protocol

import httpx
from tqdm import tqdm

from .models import ItemDetails
from .sources import ProviderUnavailable
from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    HTTP_TIMEOUT,
    USER_AGENT,
    METADATA_WORKERS,
    METADATA_PACING_DELAY,
    PROVIDER_TRIP_STATUS_CODES,
)

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    async def get_item_details(self, item_id: int) -> ItemDetails | None:
        ...


class StaticMetadataProvider:
    """Serve details from an in-memory mapping (offline runs and tests)."""

    def __init__(self, details: Mapping[int, ItemDetails]):
        self._details = dict(details)

    async def get_item_details(self, item_id: int) -> ItemDetails | None:
        return self._details.get(item_id)


class TmdbMetadataProvider:
    """Movie details from TMDB with credits and keywords appended in one request."""

    def __init__(self, api_key: str | None = TMDB_API_KEY, client: httpx.AsyncClient | None = None):
        self.api_key = api_key
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT},
                timeout=HTTP_TIMEOUT,
                follow_redirects=True,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
        return False

    async def get_item_details(self, item_id: int) -> ItemDetails | None:
        if self.client is None:
            raise RuntimeError("TmdbMetadataProvider must be used as an async context manager or given a client")

        resp = await self.client.get(
            f"{TMDB_BASE_URL}/movie/{item_id}",
            params={"api_key": self.api_key, "append_to_response": "credits,keywords"},
        )
        if resp.status_code == 404:
            logger.debug(f"No TMDB entry for {item_id}")
            return None
        if resp.status_code in PROVIDER_TRIP_STATUS_CODES:
            raise ProviderUnavailable("tmdb", resp.status_code)
        resp.raise_for_status()
        return ItemDetails.from_dict(resp.json())


async def hydrate_details(
    item_ids: Iterable[int],
    provider: MetadataProvider,
    workers: int = METADATA_WORKERS,
    delay: float = METADATA_PACING_DELAY,
    show_progress: bool = False,
) -> dict[int, ItemDetails]:
    """
    Fetch details for many items with a bounded pool of paced workers.

    Args:
        item_ids: Items to hydrate (duplicates are fetched once)
        provider: Any object with ``async get_item_details(item_id)``
        workers: Number of concurrent workers
        delay: Seconds each worker waits between its calls
        show_progress: Show a tqdm progress bar

    Returns:
        Mapping of item id to details for every item that was found
    """
    ids = list(dict.fromkeys(item_ids))
    if not ids:
        return {}

    queue: asyncio.Queue[int] = asyncio.Queue()
    for item_id in ids:
        queue.put_nowait(item_id)

    results: dict[int, ItemDetails] = {}
    error_summary: dict[str, int] = {}
    misses = 0
    pbar = tqdm(total=len(ids), desc="Fetching details", disable=not show_progress)

    async def worker():
        nonlocal misses
        while True:
            try:
                item_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                details = await provider.get_item_details(item_id)
                if details is None:
                    misses += 1
                    logger.debug(f"Metadata miss for {item_id}")
                else:
                    results[item_id] = details
            except Exception as exc:
                error_type = type(exc).__name__
                error_summary[error_type] = error_summary.get(error_type, 0) + 1
                logger.warning(f"Metadata fetch failed for {item_id}: {error_type}: {exc}")
            finally:
                queue.task_done()
                pbar.update(1)
            if delay:
                await asyncio.sleep(delay)

    try:
        await asyncio.gather(*(worker() for _ in range(max(1, min(workers, len(ids))))))
    finally:
        pbar.close()

    failed = sum(error_summary.values())
    if failed or misses:
        logger.warning(f"Hydration complete: {len(results)}/{len(ids)} found, {misses} missing, {failed} failed")
        if error_summary:
            logger.info(f"Error breakdown: {error_summary}")
    else:
        logger.info(f"Hydration complete: {len(results)}/{len(ids)} found")
    return results


def attach_details(candidates, details: Mapping[int, ItemDetails]) -> None:
    """Set ``details`` on candidates that have none yet."""
    for candidate in candidates:
        if candidate.details is None:
            candidate.details = details.get(candidate.item_id)
