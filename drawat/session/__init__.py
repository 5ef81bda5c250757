"""Session layer: OAuth client boundary, session context and manager."""

from .agent import RepoAgent
from .context import (
    BrowserEnvironment,
    ClientMetadata,
    OAuthClient,
    OAuthSession,
    SessionContext,
    SessionState,
    build_client_metadata,
)
from .manager import SessionManager, load_persisted_session

__all__ = [
    "BrowserEnvironment",
    "ClientMetadata",
    "OAuthClient",
    "OAuthSession",
    "RepoAgent",
    "SessionContext",
    "SessionManager",
    "SessionState",
    "build_client_metadata",
    "load_persisted_session",
]
