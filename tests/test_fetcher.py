"""Unit tests for the httpx raw fetcher - httpx.MockTransport, no network."""

import json

import httpx
import pytest

from conftest import load_fixture
from xcred.core.fetcher import ABOUT_ACCOUNT_QUERY, HttpxRawFetcher
from xcred.exceptions import FetchError


def make_fetcher(handler) -> HttpxRawFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxRawFetcher("bearer-token", "csrf-token", client=client)


class TestHttpxRawFetcher:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["variables"] = json.loads(request.url.params["variables"])
            seen["auth"] = request.headers["authorization"]
            seen["csrf"] = request.headers["x-csrf-token"]
            return httpx.Response(200, json=load_fixture("about_jack"))

        async with make_fetcher(handler) as fetcher:
            result = await fetcher.fetch_raw_profile("jack")

        assert result.ok
        assert not result.rate_limited
        assert result.body["data"]["user_result_by_screen_name"]["result"]["core"]["name"] == "jack"
        assert seen["path"] == f"/i/api/graphql/{ABOUT_ACCOUNT_QUERY}"
        assert seen["variables"] == {"screenName": "jack"}
        assert seen["auth"] == "Bearer bearer-token"
        assert seen["csrf"] == "csrf-token"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        async with make_fetcher(lambda request: httpx.Response(429)) as fetcher:
            result = await fetcher.fetch_raw_profile("jack")

        assert result.rate_limited
        assert result.body is None

    @pytest.mark.asyncio
    async def test_non_json_success_body(self):
        async with make_fetcher(lambda request: httpx.Response(200, text="<html>")) as fetcher:
            result = await fetcher.fetch_raw_profile("jack")

        assert result.ok
        assert result.body is None

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_fetcher(handler) as fetcher:
            with pytest.raises(FetchError):
                await fetcher.fetch_raw_profile("jack")
