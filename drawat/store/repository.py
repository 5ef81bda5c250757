"""Client for the per-user decentralized repository record."""

import logging
from collections.abc import Callable

import httpx

from ..config import RepositoryConfig
from ..errors import StoreError
from ..models import VectorRecord
from ..session.agent import BACKEND, RepoAgent

logger = logging.getLogger(__name__)


class RepositoryClient:
    """Reads and writes the ``<collection>/<rkey>`` record of each identity.

    Reads go through an unauthenticated agent against the public service.
    Writes need the signed-in agent, fetched on each call so that a login or
    logout in between is honoured.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        agent_provider: Callable[[], RepoAgent | None],
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the repository client.

        Args:
            config: Repository collection and service configuration.
            agent_provider: Returns the current authenticated agent, if any.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport override.
        """
        self.collection = config.collection
        self.rkey = config.rkey
        self._agent_provider = agent_provider
        self._public = RepoAgent(
            config.service_url, timeout=timeout, transport=transport
        )

    def _writer(self, did: str) -> RepoAgent:
        agent = self._agent_provider()
        if agent is None or agent.session is None:
            raise StoreError(BACKEND, f"No signed-in agent to write for {did}")
        return agent

    async def close(self) -> None:
        await self._public.close()

    async def get_record(self, did: str) -> VectorRecord | None:
        """Fetch did's record, or None if it has none.

        Raises:
            StoreError: On transport failure or an undecodable record.
        """
        value = await self._public.get_record(did, self.collection, self.rkey)
        if value is None:
            return None
        try:
            return VectorRecord.from_repository_value(did, value)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise StoreError(BACKEND, f"Malformed record for {did}: {e}") from e

    async def put_record(self, record: VectorRecord) -> None:
        """Replace did's record with record."""
        agent = self._writer(record.did)
        await agent.put_record(
            record.did,
            self.collection,
            self.rkey,
            record.to_repository_value(self.collection),
        )
        logger.info(f"Put repository record for {record.did}")

    async def delete_record(self, did: str) -> None:
        """Delete did's record."""
        agent = self._writer(did)
        await agent.delete_record(did, self.collection, self.rkey)
        logger.info(f"Deleted repository record for {did}")
