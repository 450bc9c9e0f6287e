"""Raw profile fetch capability and an httpx-backed implementation."""

import json
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from xcred.exceptions import FetchError

RATE_LIMITED_STATUS = 429

# AboutAccountQuery carries the transparency fields (account_based_in, source, ...)
ABOUT_ACCOUNT_QUERY = "XRqGa7EeokUU5kppkh13EA/AboutAccountQuery"


@dataclass
class RawFetchResult:
    """Status and decoded body of one profile fetch."""

    status: int
    body: Any = None

    @property
    def rate_limited(self) -> bool:
        return self.status == RATE_LIMITED_STATUS

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class RawFetcher(Protocol):
    """Anything that can turn a username into a raw profile response."""

    async def fetch_raw_profile(self, username: str) -> RawFetchResult:
        """
        Fetch one profile.

        Raises:
            FetchError: On transport failure
        """
        ...


class HttpxRawFetcher:
    """
    Fetches AboutAccountQuery responses over httpx.

    Example:
        async with HttpxRawFetcher(bearer_token=token, csrf_token=ct0) as fetcher:
            result = await fetcher.fetch_raw_profile("jack")
    """

    def __init__(
        self,
        bearer_token: str,
        csrf_token: str,
        base_url: str = "https://x.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            bearer_token: Web client bearer token
            csrf_token: Session ``ct0`` cookie value
            base_url: Platform origin
            timeout: Request timeout in seconds
            client: Optional preconfigured client (used in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {
            "authorization": f"Bearer {bearer_token}",
            "x-csrf-token": csrf_token,
            "x-twitter-active-user": "yes",
            "x-twitter-auth-type": "OAuth2Session",
            "x-twitter-client-language": "en",
            "content-type": "application/json",
        }
        self._cookies = {"ct0": csrf_token}
        self._client = client
        self._owns_client = client is None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, cookies=self._cookies)
        return self._client

    async def fetch_raw_profile(self, username: str) -> RawFetchResult:
        client = self._ensure_client()
        url = f"{self.base_url}/i/api/graphql/{ABOUT_ACCOUNT_QUERY}"
        params = {"variables": json.dumps({"screenName": username}, separators=(",", ":"))}

        try:
            response = await client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise FetchError(f"Transport error fetching @{username}: {e}") from e

        if response.status_code != 200:
            return RawFetchResult(status=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = None
        return RawFetchResult(status=response.status_code, body=body)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HttpxRawFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
