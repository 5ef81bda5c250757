"""Tests for the session context and manager."""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest

from drawat.session import (
    BrowserEnvironment,
    OAuthClient,
    OAuthSession,
    SessionContext,
    SessionManager,
    SessionState,
    build_client_metadata,
    load_persisted_session,
)
from drawat.storage import SESSION_KEY, LocalStorage
from drawat.store import WriteResult

ALICE = "did:plc:alice"


class FakeOAuthClient(OAuthClient):
    """In-memory OAuth client that resolves handles into the storage cache."""

    def __init__(self, storage, restored=None, fail_init=False, fail_revoke=False):
        self.storage = storage
        self.restored = restored
        self.fail_init = fail_init
        self.fail_revoke = fail_revoke
        self.sign_in_calls = []
        self.revoked = []

    async def init(self):
        if self.fail_init:
            raise ConnectionError("resolver unreachable")
        return self.restored

    async def sign_in(self, handle, **options):
        self.sign_in_calls.append((handle, options))
        self.storage.cache_handle(handle, ALICE)
        return "https://auth.test/oauth/authorize?request_uri=urn%3Areq%3A1"

    async def restore(self, did):
        return OAuthSession(did=did, access_token="tok", handle="alice.test")

    async def revoke(self, did):
        if self.fail_revoke:
            raise ConnectionError("revoke failed")
        self.revoked.append(did)


@pytest.fixture
def storage():
    storage = LocalStorage(":memory:")
    storage.connect()
    yield storage
    storage.close()


@pytest.fixture
def navigated():
    return []


@pytest.fixture
def environment(storage, navigated):
    return BrowserEnvironment(storage=storage, navigate=navigated.append)


@pytest.fixture
def adapter():
    adapter = MagicMock()
    adapter.register_identity = AsyncMock(return_value=WriteResult(succeeded=["mirror"]))
    adapter.delete_record = AsyncMock(
        return_value=WriteResult(succeeded=["repository", "mirror"])
    )
    return adapter


def make_manager(config, environment, adapter, **client_kwargs):
    clients = []

    def factory(provider, metadata, storage):
        client = FakeOAuthClient(storage, **client_kwargs)
        client.provider = provider
        client.metadata = metadata
        clients.append(client)
        return client

    context = SessionContext(config, environment=environment, client_factory=factory)
    return SessionManager(context, adapter), clients


class TestClientMetadata:
    """Tests for environment-dependent client metadata."""

    def test_development_loopback(self, config):
        metadata = build_client_metadata(config)

        parts = urlsplit(metadata.client_id)
        query = parse_qs(parts.query)
        assert parts.netloc == "localhost"
        assert query["redirect_uri"] == ["http://127.0.0.1:5173/api/callback"]
        assert query["scope"] == ["atproto transition:generic"]
        assert metadata.redirect_uris == ["http://127.0.0.1:5173/api/callback"]
        assert metadata.dpop_bound_access_tokens is True

    def test_production(self, config):
        config.app.url = "https://drawat.example"
        config.app.environment = "production"

        metadata = build_client_metadata(config)

        assert metadata.client_id == "https://drawat.example/client-metadata.json"
        assert metadata.grant_types == ["authorization_code", "refresh_token"]

    def test_preview(self, config):
        config.app.url = "https://preview.drawat.example/"
        config.app.environment = "preview"

        metadata = build_client_metadata(config)

        assert metadata.client_id == "https://preview.drawat.example/client-metadata-preview.json"
        assert metadata.redirect_uris == ["https://preview.drawat.example/api/callback"]


class TestInitialize:
    """Tests for client initialization and restore."""

    @pytest.mark.asyncio
    async def test_noop_without_environment(self, config, adapter):
        manager, clients = make_manager(config, None, adapter)

        assert await manager.initialize("https://bsky.social") is None
        assert clients == []
        assert manager.state == SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_anonymous_when_nothing_restored(self, config, environment, adapter):
        manager, clients = make_manager(config, environment, adapter)

        client = await manager.initialize("https://bsky.social")

        assert client is clients[0]
        assert clients[0].provider == "https://bsky.social"
        assert manager.state == SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_restores_session(self, config, environment, adapter):
        restored = OAuthSession(did=ALICE, access_token="tok")
        manager, _ = make_manager(config, environment, adapter, restored=restored)

        await manager.initialize("https://bsky.social")

        assert manager.state == SessionState.AUTHENTICATED
        assert manager.context.did == ALICE
        assert manager.context.agent is not None
        assert manager.context.agent.session is restored

    @pytest.mark.asyncio
    async def test_idempotent(self, config, environment, adapter):
        manager, clients = make_manager(config, environment, adapter)

        await manager.initialize("https://bsky.social")
        second = await manager.initialize("https://bsky.social")

        assert second is None
        assert len(clients) == 1

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, config, environment, adapter):
        manager, _ = make_manager(config, environment, adapter, fail_init=True)

        assert await manager.initialize("https://bsky.social") is None
        assert manager.state == SessionState.ANONYMOUS
        assert manager.context.client is None


class TestLogin:
    """Tests for the login redirect and callback."""

    @pytest.mark.asyncio
    async def test_login_navigates(self, config, environment, adapter, navigated):
        manager, clients = make_manager(config, environment, adapter)

        url = await manager.login("https://bsky.social", "alice.test")

        assert url.startswith("https://auth.test/")
        assert navigated == [url]
        handle, options = clients[0].sign_in_calls[0]
        assert handle == "alice.test"
        assert options == {"prompt": "login", "ui_locales": "ja-JP"}
        assert environment.slot.get_item("handle") == "alice.test"
        assert environment.slot.get_item("provider") == "https://bsky.social"

    @pytest.mark.asyncio
    async def test_login_rejects_malformed_url(self, config, environment, adapter, navigated):
        manager, clients = make_manager(config, environment, adapter)
        await manager.initialize("https://bsky.social")
        clients[0].sign_in = AsyncMock(return_value="/relative/path")

        assert await manager.login("https://bsky.social", "alice.test") is None
        assert navigated == []

    @pytest.mark.asyncio
    async def test_callback_registers_identity(self, config, environment, adapter, storage):
        manager, _ = make_manager(config, environment, adapter)
        await manager.login("https://bsky.social", "alice.test")

        did = await manager.handle_callback()

        assert did == ALICE
        assert manager.state == SessionState.AUTHENTICATED
        assert storage.get_item(SESSION_KEY)["did"] == ALICE
        adapter.register_identity.assert_awaited_once_with(ALICE)

    @pytest.mark.asyncio
    async def test_callback_without_cached_handle(self, config, environment, adapter):
        manager, _ = make_manager(config, environment, adapter)
        environment.slot.set_item("handle", "ghost.test")

        assert await manager.handle_callback() is None
        adapter.register_identity.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_identity_by_handle(self, config, environment, adapter, storage):
        manager, _ = make_manager(config, environment, adapter)
        storage.cache_handle("bob.test", "did:plc:bob")

        assert manager.lookup_identity_by_handle("bob.test") == "did:plc:bob"
        assert manager.lookup_identity_by_handle("nobody.test") is None


class TestLogout:
    """Tests for best-effort logout."""

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self, config, environment, adapter, storage):
        manager, clients = make_manager(config, environment, adapter)
        await manager.login("https://bsky.social", "alice.test")
        await manager.handle_callback()
        epoch = manager.context.epoch

        await manager.logout(ALICE)

        adapter.delete_record.assert_awaited_once_with(ALICE)
        assert clients[0].revoked == [ALICE]
        assert storage.get_item(SESSION_KEY) is None
        assert manager.state == SessionState.ANONYMOUS
        assert manager.context.session is None
        assert manager.context.agent is None
        assert manager.context.epoch > epoch

    @pytest.mark.asyncio
    async def test_logout_forgets_cached_handle(self, config, environment, adapter, storage):
        manager, _ = make_manager(config, environment, adapter)
        await manager.login("https://bsky.social", "alice.test")
        await manager.handle_callback()
        assert manager.lookup_identity_by_handle("alice.test") == ALICE

        await manager.logout(ALICE)

        assert manager.lookup_identity_by_handle("alice.test") is None

    @pytest.mark.asyncio
    async def test_logout_continues_after_revoke_failure(self, config, environment, adapter, storage):
        restored = OAuthSession(did=ALICE, access_token="tok")
        manager, _ = make_manager(config, environment, adapter, restored=restored, fail_revoke=True)
        await manager.initialize("https://bsky.social")
        storage.set_item(SESSION_KEY, restored.to_dict())

        await manager.logout(ALICE)

        adapter.delete_record.assert_awaited_once_with(ALICE)
        assert storage.get_item(SESSION_KEY) is None
        assert manager.state == SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_logout_continues_after_delete_failure(self, config, environment, adapter, storage):
        restored = OAuthSession(did=ALICE, access_token="tok")
        manager, clients = make_manager(config, environment, adapter, restored=restored)
        await manager.initialize("https://bsky.social")
        adapter.delete_record.side_effect = RuntimeError("adapter exploded")

        await manager.logout(ALICE)

        assert clients[0].revoked == [ALICE]
        assert manager.state == SessionState.ANONYMOUS


class TestPersistedSession:
    """Tests for reading the stored session blob."""

    def test_roundtrip(self, config, environment, storage):
        session = OAuthSession(did=ALICE, access_token="tok", handle="alice.test")
        storage.set_item(SESSION_KEY, session.to_dict())

        loaded = load_persisted_session(SessionContext(config, environment=environment))

        assert loaded == session

    def test_malformed(self, config, environment, storage):
        storage.set_item(SESSION_KEY, {"handle": "alice.test"})

        assert load_persisted_session(SessionContext(config, environment=environment)) is None

    def test_without_environment(self, config):
        assert load_persisted_session(SessionContext(config)) is None
