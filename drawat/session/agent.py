"""XRPC agent for reading and writing repository records."""

import logging
from typing import Any

import httpx

from ..errors import StoreError

logger = logging.getLogger(__name__)

BACKEND = "repository"
NOT_FOUND_ERRORS = ("RecordNotFound", "NotFound")


class RepoAgent:
    """Minimal ``com.atproto.repo`` client over httpx.

    Without a session the agent can only read public records.
    """

    def __init__(
        self,
        service_url: str,
        session: Any = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the agent.

        Args:
            service_url: Base URL of the PDS or AppView.
            session: Optional OAuthSession providing ``auth_headers()``.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport override.
        """
        self.service_url = service_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = self.session.auth_headers() if self.session else {}
            self._client = httpx.AsyncClient(
                base_url=self.service_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        method: str,
        nsid: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            if method == "GET":
                return await client.get(f"/xrpc/{nsid}", params=params)
            return await client.post(f"/xrpc/{nsid}", json=body)
        except httpx.HTTPError as e:
            raise StoreError(BACKEND, f"{nsid} failed: {e}") from e

    @staticmethod
    def _error_name(response: httpx.Response) -> str | None:
        try:
            return response.json().get("error")
        except ValueError:
            return None

    def _require_session(self, nsid: str) -> None:
        if self.session is None:
            raise StoreError(BACKEND, f"{nsid} requires an authenticated session")

    async def get_record(
        self, repo: str, collection: str, rkey: str
    ) -> dict[str, Any] | None:
        """Fetch a record value, or None if the repository has no such record.

        Raises:
            StoreError: On transport failure or an unexpected status.
        """
        nsid = "com.atproto.repo.getRecord"
        response = await self._call(
            "GET",
            nsid,
            params={"repo": repo, "collection": collection, "rkey": rkey},
        )

        if response.status_code == 404 or (
            response.status_code == 400
            and self._error_name(response) in NOT_FOUND_ERRORS
        ):
            return None
        if response.status_code != 200:
            raise StoreError(
                BACKEND,
                f"{nsid} for {repo}: HTTP {response.status_code}",
                response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(BACKEND, f"{nsid} for {repo}: invalid JSON") from e
        if not isinstance(data, dict):
            raise StoreError(BACKEND, f"{nsid} for {repo}: unexpected response body")
        return data.get("value")

    async def put_record(
        self, repo: str, collection: str, rkey: str, record: dict[str, Any]
    ) -> dict[str, Any]:
        """Create or replace a record.

        Returns:
            The response body (uri and cid of the written record).
        """
        nsid = "com.atproto.repo.putRecord"
        self._require_session(nsid)
        response = await self._call(
            "POST",
            nsid,
            body={
                "repo": repo,
                "collection": collection,
                "rkey": rkey,
                "record": record,
            },
        )
        if response.status_code != 200:
            raise StoreError(
                BACKEND,
                f"{nsid} for {repo}: HTTP {response.status_code}",
                response.status_code,
            )
        logger.debug(f"Put record {collection}/{rkey} for {repo}")
        return response.json()

    async def delete_record(self, repo: str, collection: str, rkey: str) -> None:
        """Delete a record. Deleting a missing record succeeds."""
        nsid = "com.atproto.repo.deleteRecord"
        self._require_session(nsid)
        response = await self._call(
            "POST",
            nsid,
            body={"repo": repo, "collection": collection, "rkey": rkey},
        )
        if response.status_code != 200:
            raise StoreError(
                BACKEND,
                f"{nsid} for {repo}: HTTP {response.status_code}",
                response.status_code,
            )
        logger.debug(f"Deleted record {collection}/{rkey} for {repo}")
