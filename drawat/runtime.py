"""Wiring of config, session context, record store and sync engine."""

import logging
from dataclasses import dataclass

import httpx

from .config import Config
from .session import (
    BrowserEnvironment,
    OAuthSession,
    SessionContext,
    SessionManager,
    load_persisted_session,
)
from .session.context import ClientFactory
from .storage import LocalStorage
from .store import RecordStoreAdapter, build_adapter
from .sync import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Components of one running drawat application."""

    config: Config
    context: SessionContext
    adapter: RecordStoreAdapter
    sessions: SessionManager
    engine: SyncEngine
    storage: LocalStorage | None = None

    async def close(self) -> None:
        """Tear down in reverse order of construction."""
        await self.adapter.close()
        await self.context.teardown()
        if self.storage is not None:
            self.storage.close()


async def create_runtime(
    config: Config,
    storage: LocalStorage | None = None,
    client_factory: ClientFactory | None = None,
    session: OAuthSession | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Build every component from config.

    Args:
        config: Loaded configuration.
        storage: Local storage; without it there is no interactive
            environment and login is unavailable.
        client_factory: Builds the OAuth client for interactive login.
        session: Session to activate immediately, e.g. from a pre-issued
            token. Otherwise the session persisted by the last login is used.
        transport: Optional httpx transport shared by every HTTP client.

    Returns:
        The assembled Runtime.
    """
    environment = BrowserEnvironment(storage=storage) if storage else None
    context = SessionContext(
        config,
        environment=environment,
        client_factory=client_factory,
        transport=transport,
    )

    adapter = build_adapter(config, context)
    sessions = SessionManager(context, adapter)
    engine = SyncEngine(
        adapter,
        context,
        max_concurrency=config.sync.max_concurrency,
        fetch_timeout=config.sync.request_timeout_seconds,
    )

    if session is None:
        session = load_persisted_session(context)
    if session is not None:
        await context.set_session(session)

    return Runtime(
        config=config,
        context=context,
        adapter=adapter,
        sessions=sessions,
        engine=engine,
        storage=storage,
    )
