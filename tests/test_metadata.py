import httpx
import pytest

from reelrank import metadata
from reelrank.models import AggregatedCandidate, ItemDetails
from reelrank.sources import ProviderUnavailable


class FlakyProvider:
    def __init__(self, details):
        self.details = details
        self.calls = []

    async def get_item_details(self, item_id):
        self.calls.append(item_id)
        if item_id == 13:
            raise RuntimeError("upstream exploded")
        return self.details.get(item_id)


@pytest.mark.asyncio
async def test_hydrate_skips_misses_and_errors():
    provider = FlakyProvider({1: ItemDetails(1, "One"), 2: ItemDetails(2, "Two")})

    results = await metadata.hydrate_details([1, 2, 2, 13, 99], provider, workers=3, delay=0.0)

    assert set(results) == {1, 2}
    assert sorted(provider.calls) == [1, 2, 13, 99]


@pytest.mark.asyncio
async def test_hydrate_empty_input():
    assert await metadata.hydrate_details([], metadata.StaticMetadataProvider({})) == {}


@pytest.mark.asyncio
async def test_tmdb_provider_parses_appended_credits():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["append_to_response"] == "credits,keywords"
        if request.url.path == "/3/movie/404":
            return httpx.Response(404)
        return httpx.Response(200, json={
            "id": 27205,
            "title": "Inception",
            "genres": [{"id": 878, "name": "Science Fiction"}],
            "keywords": {"keywords": [{"id": 1, "name": "dream"}]},
            "credits": {"cast": [], "crew": [{"id": 5, "name": "Christopher Nolan", "job": "Director"}]},
            "release_date": "2010-07-15",
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        async with metadata.TmdbMetadataProvider(api_key="key", client=client) as provider:
            details = await provider.get_item_details(27205)
            missing = await provider.get_item_details(404)

    assert details.title == "Inception"
    assert details.directors[0].name == "Christopher Nolan"
    assert missing is None


@pytest.mark.asyncio
async def test_tmdb_provider_raises_on_auth_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = metadata.TmdbMetadataProvider(api_key="bad", client=client)
        with pytest.raises(ProviderUnavailable):
            await provider.get_item_details(1)


def test_attach_details_keeps_existing():
    existing = ItemDetails(1, "Kept")
    candidates = [
        AggregatedCandidate(1, "", [], details=existing),
        AggregatedCandidate(2, "", []),
        AggregatedCandidate(3, "", []),
    ]

    metadata.attach_details(candidates, {1: ItemDetails(1, "Replaced"), 2: ItemDetails(2, "Two")})

    assert candidates[0].details is existing
    assert candidates[1].details.title == "Two"
    assert candidates[2].details is None
