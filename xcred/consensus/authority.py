"""Client for the consensus authority that signs validation tasks."""

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from xcred import __version__
from xcred.exceptions import AuthorityError
from xcred.logging import get_logger
from xcred.models.profile import ProfileRecord


class AuthorityClient(ABC):
    """Operations a validator node needs from the authority."""

    @abstractmethod
    async def fetch_public_key(self) -> str:
        """Base64 raw Ed25519 key the authority signs tasks with."""
        ...

    @abstractmethod
    async def register(self, node_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def heartbeat(self, node_id: str) -> bool:
        ...

    @abstractmethod
    async def request_validation(self, username: str, requester_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def submit_result(self, task_id: str, node_id: str, record: ProfileRecord) -> bool:
        ...

    @abstractmethod
    async def validated_profile(self, username: str) -> ProfileRecord | None:
        ...

    async def close(self) -> None:
        pass


class HttpAuthorityClient(AuthorityClient):
    """
    JSON-over-HTTP authority client.

    Example:
        async with HttpAuthorityClient("https://api.xcred.org") as authority:
            key = await authority.fetch_public_key()
            await authority.register(node_id)
    """

    def __init__(
        self,
        base_url: str = "https://api.xcred.org",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._log = get_logger("authority")

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise AuthorityError(f"Authority unreachable: {e}") from e

    async def fetch_public_key(self) -> str:
        response = await self._request("GET", "/api/public-key")
        if not response.is_success:
            raise AuthorityError(f"Failed to fetch public key: HTTP {response.status_code}")
        key = response.json().get("publicKey")
        if not key:
            raise AuthorityError("Authority returned no public key")
        return key

    async def register(self, node_id: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            "/api/validator/register",
            json={"nodeId": node_id, "metadata": {"version": __version__, "client": "xcred-python"}},
        )
        if not response.is_success:
            raise AuthorityError(f"Registration failed: HTTP {response.status_code}")
        data = response.json()
        self._log.info("validator_registered", node_id=node_id,
                       reputation=(data.get("validator") or {}).get("reputation"))
        return data

    async def heartbeat(self, node_id: str) -> bool:
        """Best effort; failures are logged and reported as False."""
        try:
            response = await self._request("POST", "/api/validator/heartbeat", json={"nodeId": node_id})
        except AuthorityError as e:
            self._log.warning("heartbeat_failed", error=str(e))
            return False
        return response.is_success

    async def request_validation(self, username: str, requester_id: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            "/api/validate",
            json={"username": username.lower(), "requesterId": requester_id},
        )
        if not response.is_success:
            raise AuthorityError(f"Validation request failed: HTTP {response.status_code}")
        return response.json()

    async def submit_result(self, task_id: str, node_id: str, record: ProfileRecord) -> bool:
        response = await self._request(
            "POST",
            "/api/validator/result",
            json={"taskId": task_id, "nodeId": node_id, "result": record.persisted()},
        )
        if not response.is_success:
            self._log.error("result_submission_failed", task_id=task_id, status=response.status_code)
            return False
        return response.json().get("success") is True

    async def task_status(self, task_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/api/task/{quote(task_id, safe='')}")
        if not response.is_success:
            return None
        return response.json()

    async def validated_profile(self, username: str) -> ProfileRecord | None:
        key = username.lstrip("@").lower()
        response = await self._request("GET", f"/api/profile/{quote(key, safe='')}")
        if not response.is_success:
            return None

        data = response.json()
        if isinstance(data, dict) and isinstance(data.get("profile"), dict):
            data = data["profile"]
        if not isinstance(data, dict):
            return None

        try:
            return ProfileRecord.model_validate({"username": key, **data})
        except ValidationError as e:
            self._log.warning("authority_profile_invalid", username=key, error=str(e))
            return None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpAuthorityClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
