"""Explicit session context shared by the session manager and sync engine."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from ..config import Config
from ..storage import LocalStorage, SessionSlot
from .agent import RepoAgent

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of the authenticated identity."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


@dataclass
class OAuthSession:
    """Credential material for one authenticated identity."""

    did: str
    access_token: str
    token_type: str = "DPoP"
    handle: str | None = None
    refresh_token: str | None = None
    expires_at: str | None = None
    pds_url: str | None = None

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"{self.token_type} {self.access_token}"}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthSession":
        return cls(
            did=data["did"],
            access_token=data["access_token"],
            token_type=data.get("token_type", "DPoP"),
            handle=data.get("handle"),
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            pds_url=data.get("pds_url"),
        )


@dataclass
class ClientMetadata:
    """OAuth client metadata document."""

    client_id: str
    redirect_uris: list[str]
    scope: str
    grant_types: list[str] = field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: list[str] = field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "none"
    dpop_bound_access_tokens: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_client_metadata(config: Config) -> ClientMetadata:
    """Build client metadata for the configured deployment environment.

    Production and preview deployments publish a metadata document next to
    the app. Development uses the loopback client id, which carries the
    redirect target and scope in its query string.
    """
    url = config.app.url.rstrip("/")
    callback = config.app.callback_url
    scope = config.oauth.scope

    if config.app.environment == "production":
        client_id = f"{url}/client-metadata.json"
    elif config.app.environment == "preview":
        client_id = f"{url}/client-metadata-preview.json"
    else:
        client_id = (
            f"http://localhost?redirect_uri={quote(callback, safe='')}"
            f"&scope={quote(scope, safe='')}"
        )

    return ClientMetadata(
        client_id=client_id,
        redirect_uris=[callback],
        scope=scope,
    )


class OAuthClient(ABC):
    """Authorization-code OAuth client for the identity provider.

    Implementations resolve the handle passed to ``sign_in`` and record the
    result in the handle cache of the ``LocalStorage`` they were built with.
    """

    @abstractmethod
    async def init(self) -> OAuthSession | None:
        """Restore a previously persisted session, if any."""
        pass

    @abstractmethod
    async def sign_in(self, handle: str, **options: Any) -> str:
        """Start authorization and return the URL to redirect to."""
        pass

    @abstractmethod
    async def restore(self, did: str) -> OAuthSession:
        """Load the stored session for did after the redirect returns."""
        pass

    @abstractmethod
    async def revoke(self, did: str) -> None:
        """Revoke the remote tokens for did."""
        pass


ClientFactory = Callable[[str, ClientMetadata, LocalStorage], OAuthClient]


@dataclass
class BrowserEnvironment:
    """Host capabilities available to an interactive client."""

    storage: LocalStorage
    slot: SessionSlot = field(default_factory=SessionSlot)
    navigate: Callable[[str], None] | None = None


class SessionContext:
    """Current client, session and repo agent for one running application.

    ``epoch`` increments on every identity change so that work started for
    one identity can detect it finished under another.
    """

    def __init__(
        self,
        config: Config,
        environment: BrowserEnvironment | None = None,
        client_factory: ClientFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.environment = environment
        self.client_factory = client_factory
        self.transport = transport
        self.state = SessionState.UNINITIALIZED
        self.client: OAuthClient | None = None
        self.session: OAuthSession | None = None
        self.agent: RepoAgent | None = None
        self.epoch = 0

    @property
    def did(self) -> str | None:
        return self.session.did if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.session is not None

    async def set_session(self, session: OAuthSession) -> None:
        """Make session current and derive a repo agent from it."""
        if self.agent is not None:
            await self.agent.close()
        self.session = session
        self.agent = RepoAgent(
            session.pds_url or self.config.repository.service_url,
            session=session,
            timeout=self.config.sync.request_timeout_seconds,
            transport=self.transport,
        )
        self.state = SessionState.AUTHENTICATED
        self.epoch += 1
        logger.info(f"Session active for {session.did}")

    async def clear_session(self) -> None:
        """Drop the current session and close its agent."""
        agent, self.agent = self.agent, None
        had_session = self.session is not None
        self.session = None
        self.state = SessionState.ANONYMOUS
        self.epoch += 1
        if agent is not None:
            await agent.close()
        if had_session:
            logger.info("Session cleared")

    async def teardown(self) -> None:
        """Release network resources at application shutdown."""
        if self.agent is not None:
            await self.agent.close()
            self.agent = None
        self.client = None
