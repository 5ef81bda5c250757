"""Uniform record store facade over the repository and the mirror.

The variant is chosen once from ``sync.backend``:

- ``DecentralizedOnly``: records live only in each user's repository
- ``CentralizedOnly``: records live only in the mirror table
- ``Dual``: the mirror indexes holders; records are written to both

Physical clients raise ``StoreError``. The adapter catches it at each call,
logs, and degrades to "no data" or a failed ``WriteResult``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..config import Config
from ..errors import StoreError
from ..models import StrokePoint, VectorRecord, utcnow
from ..session.context import SessionContext
from .mirror import MirrorClient
from .repository import RepositoryClient

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of a best-effort write across one or more backends."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and bool(self.succeeded)

    @property
    def partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)


def _dedupe(dids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for did in dids:
        if did and did not in seen:
            seen.add(did)
            ordered.append(did)
    return ordered


class RecordStoreAdapter(ABC):
    """Fetch, replace and delete per-identity vector records."""

    kind: str = ""

    @abstractmethod
    async def list_record_holders(self) -> list[str]:
        """Identities that currently hold a record, in backend order."""
        pass

    @abstractmethod
    async def get_record(self, did: str) -> VectorRecord | None:
        """Fetch did's record.

        Raises:
            StoreError: If the backend could not be reached. Callers batching
                over many identities isolate this per identity.
        """
        pass

    @abstractmethod
    async def put_record(self, did: str, paths: list[StrokePoint]) -> WriteResult:
        """Replace did's record wholesale and stamp the update time."""
        pass

    @abstractmethod
    async def delete_record(self, did: str) -> WriteResult:
        """Remove did's record from every backend holding it."""
        pass

    async def register_identity(self, did: str) -> WriteResult:
        """Make did discoverable before it has drawn anything."""
        return WriteResult()

    async def close(self) -> None:
        pass

    @staticmethod
    async def _attempt(result: WriteResult, backend: str, action: str, coro) -> None:
        try:
            await coro
            result.succeeded.append(backend)
        except StoreError as e:
            logger.error(f"Failed to {action} in {backend}: {e}")
            result.failed[backend] = str(e)


class _MirrorHolders:
    """Holder listing backed by a mirror table scan."""

    mirror: MirrorClient

    def _init_rows(self) -> None:
        self._rows: dict[str, VectorRecord] = {}

    async def list_record_holders(self) -> list[str]:
        try:
            records = await self.mirror.get_all_records()
        except StoreError as e:
            logger.error(f"Failed to list record holders: {e}")
            return []
        self._rows = {r.did: r for r in records}
        holders = _dedupe([r.did for r in records])
        logger.info(f"Found {len(holders)} record holders")
        return holders

    async def register_identity(self, did: str) -> WriteResult:
        """Add an empty row for did unless the mirror already lists it.

        An upsert carries the whole row, so writing over an existing one
        would erase its stored paths.
        """
        result = WriteResult()
        try:
            records = await self.mirror.get_all_records()
        except StoreError as e:
            logger.error(f"Failed to check registration of {did}: {e}")
            result.failed["mirror"] = str(e)
            return result
        self._rows = {r.did: r for r in records}
        if did in self._rows:
            logger.debug(f"{did} already registered")
            return result
        await self._attempt(
            result,
            "mirror",
            f"register {did}",
            self.mirror.upsert(VectorRecord(did=did, paths=None, updated_at=utcnow())),
        )
        return result


class DecentralizedOnly(RecordStoreAdapter):
    """Records live only in each identity's own repository.

    The repository cannot be enumerated, so holders are the identities known
    locally: the signed-in identity plus ``sync.known_identities``.
    """

    kind = "decentralized"

    def __init__(
        self,
        repository: RepositoryClient,
        context: SessionContext,
        known_identities: list[str] | None = None,
    ):
        self.repository = repository
        self.context = context
        self.known_identities = list(known_identities or [])

    async def list_record_holders(self) -> list[str]:
        return _dedupe([self.context.did, *self.known_identities])

    async def get_record(self, did: str) -> VectorRecord | None:
        return await self.repository.get_record(did)

    async def put_record(self, did: str, paths: list[StrokePoint]) -> WriteResult:
        result = WriteResult()
        record = VectorRecord(did=did, paths=list(paths), updated_at=utcnow())
        await self._attempt(
            result, "repository", f"put record for {did}",
            self.repository.put_record(record),
        )
        return result

    async def delete_record(self, did: str) -> WriteResult:
        result = WriteResult()
        await self._attempt(
            result, "repository", f"delete record for {did}",
            self.repository.delete_record(did),
        )
        return result

    async def close(self) -> None:
        await self.repository.close()


class CentralizedOnly(_MirrorHolders, RecordStoreAdapter):
    """Records live only in the mirror table, paths stored as a blob."""

    kind = "centralized"

    def __init__(self, mirror: MirrorClient):
        self.mirror = mirror
        self._init_rows()

    async def get_record(self, did: str) -> VectorRecord | None:
        # The endpoint has no single-row read; reuse the last scan when possible
        if did not in self._rows:
            self._rows = {r.did: r for r in await self.mirror.get_all_records()}
        return self._rows.get(did)

    async def put_record(self, did: str, paths: list[StrokePoint]) -> WriteResult:
        result = WriteResult()
        record = VectorRecord(did=did, paths=list(paths), updated_at=utcnow())
        await self._attempt(
            result, "mirror", f"put record for {did}", self.mirror.upsert(record)
        )
        if result.ok:
            self._rows[did] = record
        return result

    async def delete_record(self, did: str) -> WriteResult:
        result = WriteResult()
        await self._attempt(
            result, "mirror", f"delete record for {did}", self.mirror.delete(did)
        )
        self._rows.pop(did, None)
        return result

    async def close(self) -> None:
        await self.mirror.close()


class Dual(_MirrorHolders, RecordStoreAdapter):
    """Mirror for discovery, repository as the record of truth.

    Writes go to both backends independently. A failure in one is logged and
    reported in the WriteResult; the other write is not rolled back.
    """

    kind = "dual"

    def __init__(self, repository: RepositoryClient, mirror: MirrorClient):
        self.repository = repository
        self.mirror = mirror
        self._init_rows()

    async def get_record(self, did: str) -> VectorRecord | None:
        return await self.repository.get_record(did)

    async def put_record(self, did: str, paths: list[StrokePoint]) -> WriteResult:
        result = WriteResult()
        record = VectorRecord(did=did, paths=list(paths), updated_at=utcnow())
        await self._attempt(
            result, "repository", f"put record for {did}",
            self.repository.put_record(record),
        )
        await self._attempt(
            result, "mirror", f"put record for {did}", self.mirror.upsert(record)
        )
        if result.partial:
            logger.warning(
                f"Record for {did} written to {', '.join(result.succeeded)} only"
            )
        return result

    async def delete_record(self, did: str) -> WriteResult:
        result = WriteResult()
        await self._attempt(
            result, "repository", f"delete record for {did}",
            self.repository.delete_record(did),
        )
        await self._attempt(
            result, "mirror", f"delete record for {did}", self.mirror.delete(did)
        )
        self._rows.pop(did, None)
        if result.partial:
            logger.warning(
                f"Record for {did} deleted from {', '.join(result.succeeded)} only"
            )
        return result

    async def close(self) -> None:
        await self.repository.close()
        await self.mirror.close()


def build_adapter(config: Config, context: SessionContext) -> RecordStoreAdapter:
    """Build the adapter variant named by ``config.sync.backend``."""
    timeout = config.sync.request_timeout_seconds
    backend = config.sync.backend

    def repository() -> RepositoryClient:
        return RepositoryClient(
            config.repository,
            lambda: context.agent,
            timeout=timeout,
            transport=context.transport,
        )

    def mirror() -> MirrorClient:
        return MirrorClient(
            config.mirror,
            production=config.app.is_production,
            timeout=timeout,
            transport=context.transport,
        )

    if backend == "decentralized":
        adapter: RecordStoreAdapter = DecentralizedOnly(
            repository(), context, config.sync.known_identities
        )
    elif backend == "centralized":
        adapter = CentralizedOnly(mirror())
    elif backend == "dual":
        adapter = Dual(repository(), mirror())
    else:
        raise ValueError(f"Unknown sync backend: {backend}")

    logger.info(f"Record store backend: {adapter.kind}")
    return adapter
