"""Login, callback, restore and logout for the signed-in identity."""

import logging
from typing import TYPE_CHECKING

import httpx

from ..errors import SessionError
from ..storage import SESSION_KEY
from .context import (
    OAuthClient,
    OAuthSession,
    SessionContext,
    SessionState,
    build_client_metadata,
)

if TYPE_CHECKING:
    from ..store.adapter import RecordStoreAdapter

logger = logging.getLogger(__name__)

# Session-scoped slots that must survive the authorization redirect
PROVIDER_SLOT = "provider"
HANDLE_SLOT = "handle"


class SessionManager:
    """Owns the credential lifecycle of one SessionContext.

    No public method raises: failures are logged and leave the context
    anonymous or unchanged.
    """

    def __init__(
        self,
        context: SessionContext,
        adapter: "RecordStoreAdapter | None" = None,
    ):
        """Initialize the manager.

        Args:
            context: Shared session context to update.
            adapter: Record store used to register and delete identities.
        """
        self.context = context
        self.adapter = adapter

    @property
    def state(self) -> SessionState:
        return self.context.state

    def _remembered_provider(self) -> str:
        env = self.context.environment
        provider = env.slot.get_item(PROVIDER_SLOT) if env else None
        return provider or self.context.config.oauth.handle_resolver

    def lookup_identity_by_handle(self, handle: str) -> str | None:
        """Resolve a handle through the durable cache the OAuth client fills."""
        env = self.context.environment
        if env is None:
            return None
        try:
            return env.storage.lookup_identity_by_handle(handle)
        except Exception as e:
            logger.error(f"Failed to look up identity for handle {handle}: {e}")
            return None

    async def initialize(self, provider: str) -> OAuthClient | None:
        """Create the OAuth client and restore a persisted session.

        Does nothing and returns None when a client already exists or there
        is no interactive environment.

        Args:
            provider: Handle resolver service URL.

        Returns:
            The new client, or None.
        """
        ctx = self.context
        if ctx.environment is None or ctx.client is not None:
            return None
        if ctx.client_factory is None:
            logger.error("No OAuth client factory configured")
            ctx.state = SessionState.ANONYMOUS
            return None

        ctx.state = SessionState.INITIALIZING
        metadata = build_client_metadata(ctx.config)

        try:
            client = ctx.client_factory(provider, metadata, ctx.environment.storage)
            restored = await client.init()
        except Exception as e:
            logger.error(f"OAuth client initialization failed: {e}")
            ctx.state = SessionState.ANONYMOUS
            return None

        ctx.client = client
        if restored is not None:
            await ctx.set_session(restored)
        else:
            ctx.state = SessionState.ANONYMOUS

        logger.info("OAuth client initialized")
        return client

    async def login(self, provider: str, handle: str) -> str | None:
        """Start the authorization-code flow for handle.

        The provider and handle are remembered in the session slot so the
        callback can find them after the redirect.

        Returns:
            The authorization URL handed to the host for navigation, or None.
        """
        env = self.context.environment
        if env is None:
            return None

        try:
            env.slot.set_item(PROVIDER_SLOT, provider)
            env.slot.set_item(HANDLE_SLOT, handle)

            await self.initialize(provider)
            client = self.context.client
            if client is None:
                raise SessionError("OAuth client is not available")

            auth_url = await client.sign_in(
                handle,
                prompt="login",
                ui_locales=self.context.config.app.ui_locales,
            )
            _validate_auth_url(auth_url)

            if env.navigate is not None:
                env.navigate(auth_url)
            logger.info(f"Redirecting {handle} to authorization server")
            return auth_url
        except Exception as e:
            logger.error(f"Failed to log in: {e}")
            return None

    async def handle_callback(self) -> str | None:
        """Finish login after the authorization redirect returns.

        Returns:
            The authenticated DID, or None.
        """
        env = self.context.environment
        if env is None:
            return None

        provider = self._remembered_provider()
        await self.initialize(provider)
        client = self.context.client
        if client is None:
            logger.error("OAuth callback without a client")
            return None

        handle = env.slot.get_item(HANDLE_SLOT)
        did = self.lookup_identity_by_handle(handle) if handle else None
        if did is None:
            logger.error(f"No cached identity for handle {handle}")
            return None

        try:
            session = await client.restore(did)
            env.storage.set_item(SESSION_KEY, session.to_dict())
            await self.context.set_session(session)
        except Exception as e:
            logger.error(f"Failed to restore session for {did}: {e}")
            return None

        if self.adapter is not None:
            try:
                result = await self.adapter.register_identity(did)
                if result.failed:
                    logger.error(f"Failed to register {did}: {result.failed}")
            except Exception as e:
                logger.error(f"Failed to register {did}: {e}")

        logger.info(f"Login completed for {did}")
        return did

    async def logout(self, did: str) -> None:
        """Sign did out, continuing past each failed step.

        The record is deleted first, while the session can still authorize
        repository writes, then the token is revoked and local state cleared.
        """
        env = self.context.environment
        if env is None:
            return

        if self.adapter is not None:
            try:
                result = await self.adapter.delete_record(did)
                if result.failed:
                    logger.error(f"Record deletion incomplete for {did}: {result.failed}")
            except Exception as e:
                logger.error(f"Failed to delete record for {did}: {e}")

        try:
            provider = self._remembered_provider()
            await self.initialize(provider)
            if self.context.client is None:
                raise SessionError("OAuth client is not available")
            await self.context.client.revoke(did)
        except Exception as e:
            logger.error(f"Failed to revoke token for {did}: {e}")

        try:
            env.storage.remove_item(SESSION_KEY)
            env.storage.forget_identity(did)
        except Exception as e:
            logger.error(f"Failed to clear stored session: {e}")
        env.slot.remove_item(HANDLE_SLOT)
        await self.context.clear_session()

        logger.info(f"Logged out {did}")


def load_persisted_session(context: SessionContext) -> OAuthSession | None:
    """Read the session blob stored by the last successful callback."""
    env = context.environment
    if env is None:
        return None
    data = env.storage.get_item(SESSION_KEY)
    if not data:
        return None
    try:
        return OAuthSession.from_dict(data)
    except (KeyError, TypeError) as e:
        logger.warning(f"Ignoring malformed stored session: {e}")
        return None


def _validate_auth_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise SessionError(f"Malformed authorization URL: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise SessionError(f"Authorization URL must be absolute http(s): {url}")
