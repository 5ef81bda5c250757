"""Pull, merge and push of vector records across all identities.

A pull lists every record holder, fetches each record concurrently, drops
records outside the retention window and splits the rest into the local
identity's own record and everybody else's, oldest first. A push replaces
the local identity's record with its full current path sequence.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models import StrokePoint, VectorRecord, split_strokes, utcnow
from ..retention import filter_retained
from ..session.context import SessionContext
from ..store.adapter import RecordStoreAdapter, WriteResult

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a sync pass."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some identities or backends failed
    FAILED = "failed"
    STALE = "stale"  # Identity changed while the pull was in flight


@dataclass
class PullResult:
    """Snapshot of the shared store as seen by one identity."""

    own_record: VectorRecord | None
    others_records: list[VectorRecord]
    holder_identities: list[str]
    pulled_at: datetime
    failed_identities: list[str] = field(default_factory=list)
    own_fetched: bool = False  # The local identity's record was read successfully

    @property
    def own_paths(self) -> list[StrokePoint]:
        if self.own_record is None:
            return []
        return list(self.own_record.paths or [])

    @property
    def others_paths(self) -> list[StrokePoint]:
        points: list[StrokePoint] = []
        for record in self.others_records:
            points.extend(record.paths or [])
        return points


@dataclass
class MergedCanvas:
    """Everything the renderer should draw after one pull."""

    did: str | None
    epoch: int
    points: list[StrokePoint]
    holder_identities: list[str]
    pulled_at: datetime

    @property
    def strokes(self) -> list[list[StrokePoint]]:
        return split_strokes(self.points)


@dataclass
class SyncResult:
    """Result of one push-then-pull pass."""

    status: SyncStatus
    pushed: bool = False
    holders: int = 0
    records_pulled: int = 0
    failed_identities: list[str] = field(default_factory=list)
    error: str | None = None
    timestamp: datetime | None = None


class SyncEngine:
    """Keeps the local canvas in step with the shared record store.

    Local drawing is buffered in ``local_paths``. The buffer belongs to the
    identity that was signed in when it started; an identity change empties
    it and the next pull seeds it from that identity's own record.
    """

    def __init__(
        self,
        adapter: RecordStoreAdapter,
        context: SessionContext,
        max_concurrency: int = 8,
        fetch_timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the engine.

        Args:
            adapter: Record store facade.
            context: Shared session context.
            max_concurrency: Maximum record fetches in flight during a pull.
            fetch_timeout: Seconds before a single fetch is abandoned.
            clock: Returns the current aware datetime.
        """
        self.adapter = adapter
        self.context = context
        self.max_concurrency = max_concurrency
        self.fetch_timeout = fetch_timeout
        self.clock = clock

        self._local_paths: list[StrokePoint] = []
        self._buffer_epoch = context.epoch
        self._seeded = False
        self._dirty = False
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0
        self.canvas: MergedCanvas | None = None
        self._last_pull: PullResult | None = None

    @property
    def local_paths(self) -> list[StrokePoint]:
        self._check_epoch()
        return list(self._local_paths)

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def _check_epoch(self) -> None:
        if self._buffer_epoch != self.context.epoch:
            self._local_paths = []
            self._buffer_epoch = self.context.epoch
            self._seeded = False
            self._dirty = False

    def draw(self, points: list[StrokePoint]) -> None:
        """Append newly drawn points to the local buffer."""
        self._check_epoch()
        self._local_paths.extend(points)
        if points:
            self._dirty = True

    def adopt(self, result: PullResult) -> None:
        """Seed the local buffer from the own record on the first pull.

        A pull that could not read the own record leaves the buffer unseeded,
        so nothing is pushed over paths that were never loaded.
        """
        self._check_epoch()
        if self._seeded:
            return
        if not result.own_fetched:
            logger.debug("Own record not read, buffer stays unseeded")
            return
        self._local_paths = result.own_paths + self._local_paths
        self._seeded = True

    async def _fetch(
        self, did: str, semaphore: asyncio.Semaphore
    ) -> tuple[str, VectorRecord | None, str | None]:
        async with semaphore:
            try:
                record = await asyncio.wait_for(
                    self.adapter.get_record(did), timeout=self.fetch_timeout
                )
                return did, record, None
            except asyncio.TimeoutError:
                logger.warning(f"Timed out fetching record for {did}, skipping")
                return did, None, "timeout"
            except Exception as e:
                logger.warning(f"Failed to get record for {did}, skipping: {e}")
                return did, None, str(e)

    async def pull(self, local_did: str | None) -> PullResult:
        """Fetch and filter every holder's record.

        The local identity's record is fetched even when the listing omits
        it, so an unlisted or failed listing still tells the caller whether
        the stored paths were read.

        Args:
            local_did: Identity whose record is returned as ``own_record``.

        Returns:
            PullResult with others' records sorted oldest first.
        """
        now = self.clock()
        holders = await self.adapter.list_record_holders()

        targets = list(holders)
        if local_did is not None and local_did not in holders:
            targets.append(local_did)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        fetched = await asyncio.gather(
            *(self._fetch(did, semaphore) for did in targets)
        )

        drawable: list[VectorRecord] = []
        failed: list[str] = []
        own_fetched = False
        for did, record, error in fetched:
            if did == local_did:
                own_fetched = error is None
            if error is not None:
                if did in holders:
                    failed.append(did)
            elif record is not None and record.has_drawable_paths:
                drawable.append(record)

        own_record = None
        others: list[VectorRecord] = []
        for record in filter_retained(drawable, now):
            if record.did == local_did:
                own_record = record
            else:
                others.append(record)

        # Records can only be ordered by their own timestamps; did breaks ties
        others.sort(key=lambda r: (r.updated_at, r.did))

        logger.info(
            f"Pulled {len(others) + (own_record is not None)} records "
            f"from {len(holders)} holders ({len(failed)} failed)"
        )
        return PullResult(
            own_record=own_record,
            others_records=others,
            holder_identities=holders,
            pulled_at=now,
            failed_identities=failed,
            own_fetched=own_fetched,
        )

    async def push(self, local_did: str, paths: list[StrokePoint]) -> WriteResult:
        """Replace local_did's record with the full path sequence."""
        result = await self.adapter.put_record(local_did, list(paths))
        if result.ok:
            logger.info(f"Pushed {len(paths)} points for {local_did}")
        return result

    async def refresh(self) -> MergedCanvas | None:
        """Pull for the current identity and rebuild the merged canvas.

        Returns:
            The new canvas, or None if the identity changed before the pull
            completed, in which case the result is discarded.
        """
        did = self.context.did
        epoch = self.context.epoch

        result = await self.pull(did)

        if self.context.epoch != epoch:
            logger.info("Identity changed during pull, discarding result")
            return None

        self.adopt(result)
        self.canvas = MergedCanvas(
            did=did,
            epoch=epoch,
            points=result.others_paths + self._local_paths,
            holder_identities=result.holder_identities,
            pulled_at=result.pulled_at,
        )
        self._last_pull = result
        return self.canvas

    async def sync_once(self) -> SyncResult:
        """Push pending local drawing, then refresh the canvas."""
        self._check_epoch()
        did = self.context.did
        pushed = False
        push_error = None
        push_partial = False

        # An unseeded buffer lacks the stored paths and would overwrite them
        if did is not None and self.context.is_authenticated and self._dirty and self._seeded:
            sent = list(self._local_paths)
            result = await self.push(did, sent)
            if result.succeeded:
                pushed = True
                self._dirty = len(self._local_paths) != len(sent)
            push_partial = bool(result.failed)
            if result.failed:
                push_error = "; ".join(f"{k}: {v}" for k, v in result.failed.items())

        canvas = await self.refresh()
        if canvas is None:
            return SyncResult(status=SyncStatus.STALE, pushed=pushed, timestamp=self.clock())

        pull = self._last_pull
        if push_error and not pushed:
            status = SyncStatus.FAILED
        elif push_partial or pull.failed_identities:
            status = SyncStatus.PARTIAL
        else:
            status = SyncStatus.SUCCESS

        if status == SyncStatus.FAILED:
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
            self._last_sync = pull.pulled_at

        return SyncResult(
            status=status,
            pushed=pushed,
            holders=len(pull.holder_identities),
            records_pulled=len(pull.others_records) + (pull.own_record is not None),
            failed_identities=pull.failed_identities,
            error=push_error,
            timestamp=pull.pulled_at,
        )

    async def sync_loop(
        self,
        interval_seconds: int = 30,
        stop_event: asyncio.Event | None = None,
        on_canvas: Callable[[MergedCanvas], Any] | None = None,
    ) -> None:
        """Run continuous sync passes.

        Args:
            interval_seconds: Seconds between passes.
            stop_event: Event to signal loop should stop.
            on_canvas: Called with each freshly built canvas.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                result = await self.sync_once()
                logger.info(
                    f"Sync: {result.status.value}, pushed={result.pushed}, "
                    f"holders={result.holders}, records={result.records_pulled}"
                )
                if on_canvas is not None and result.status != SyncStatus.STALE and self.canvas:
                    on_canvas(self.canvas)
            except Exception as e:
                logger.error(f"Sync loop error: {e}")
                self._consecutive_failures += 1

            # Back off after consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status."""
        return {
            "did": self.context.did,
            "backend": self.adapter.kind,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "local_points": len(self.local_paths),
            "pending_push": self._dirty,
        }
