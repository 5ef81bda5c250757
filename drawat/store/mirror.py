"""Client for the centralized mirror table.

The mirror is a single HTTP endpoint dispatching on method:

- ``GET``: every row as ``{did, vector, created_at, updated_at}``
- ``POST {did, vector, updated_at}``: upsert one row
- ``DELETE {did}``: remove one row
"""

import logging
from typing import Any

import httpx

from ..config import MirrorConfig
from ..errors import StoreError
from ..models import VectorRecord

logger = logging.getLogger(__name__)

BACKEND = "mirror"


class MirrorClient:
    """Async client for the mirror endpoint.

    Requests carry a bearer key only outside production; production
    deployments rely on network-level trust.
    """

    def __init__(
        self,
        config: MirrorConfig,
        production: bool = False,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the mirror client.

        Args:
            config: Mirror endpoint configuration.
            production: Whether this is a production deployment.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport override.
        """
        self.url = config.url
        self.api_key = config.api_key
        self.production = production
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self.production and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, body: dict[str, Any] | None = None
    ) -> httpx.Response:
        if not self.url:
            raise StoreError(BACKEND, "No mirror URL configured")

        client = await self._get_client()
        try:
            # DELETE carries a JSON body, which client.delete() does not accept
            response = await client.request(method, self.url, json=body)
        except httpx.HTTPError as e:
            raise StoreError(BACKEND, f"{method} failed: {e}") from e

        if not response.is_success:
            raise StoreError(
                BACKEND,
                f"{method} returned HTTP {response.status_code}: {response.text}",
                response.status_code,
            )
        return response

    async def get_all_rows(self) -> list[dict[str, Any]]:
        """Fetch every row in the table, in the order the endpoint returns them."""
        response = await self._request("GET")
        data = response.json()
        if not isinstance(data, list):
            raise StoreError(BACKEND, "GET did not return a list of rows")
        return data

    async def get_all_records(self) -> list[VectorRecord]:
        """Fetch every row decoded as a VectorRecord.

        Rows that fail to decode are skipped with a warning.
        """
        records = []
        for row in await self.get_all_rows():
            try:
                records.append(VectorRecord.from_mirror_row(row))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed mirror row: {e}")
        return records

    async def upsert(self, record: VectorRecord) -> None:
        """Insert or replace the row for record.did."""
        await self._request("POST", record.to_mirror_row())
        logger.debug(f"Upserted mirror row for {record.did}")

    async def delete(self, did: str) -> None:
        """Remove the row for did."""
        await self._request("DELETE", {"did": did})
        logger.debug(f"Deleted mirror row for {did}")

    async def check_connection(self) -> bool:
        """Check whether the endpoint answers a listing request."""
        try:
            await self.get_all_rows()
            return True
        except StoreError as e:
            logger.debug(f"Mirror check failed: {e}")
            return False
