"""Configuration loading for drawat."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

BACKENDS = ("dual", "decentralized", "centralized")
ENVIRONMENTS = ("development", "preview", "production")


@dataclass
class AppConfig:
    url: str = "http://127.0.0.1:5173"
    environment: str = "development"  # "development", "preview" or "production"
    ui_locales: str = "ja-JP"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def callback_url(self) -> str:
        return f"{self.url.rstrip('/')}/api/callback"


@dataclass
class OAuthConfig:
    handle_resolver: str = "https://bsky.social"
    scope: str = "atproto transition:generic"


@dataclass
class RepositoryConfig:
    """Configuration for the decentralized per-user repository."""

    service_url: str = "https://bsky.social"
    collection: str = "blue.drawat.vector"
    rkey: str = "self"


@dataclass
class MirrorConfig:
    """Configuration for the centralized mirror table endpoint."""

    url: str = ""
    api_key: str | None = None  # Only sent outside production


@dataclass
class SyncConfig:
    backend: str = "dual"  # "dual", "decentralized" or "centralized"
    interval_seconds: int = 30
    request_timeout_seconds: float = 10.0
    max_concurrency: int = 8
    known_identities: list[str] = field(default_factory=list)


@dataclass
class StorageConfig:
    db_path: str = "~/.drawat/state.db"


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DRAWAT_ prefix."""
    return os.environ.get(f"DRAWAT_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # App overrides
    if url := _get_env("URL"):
        config.app.url = url
    if environment := _get_env("ENVIRONMENT"):
        config.app.environment = environment.lower()

    # OAuth overrides
    if resolver := _get_env("HANDLE_RESOLVER"):
        config.oauth.handle_resolver = resolver

    # Repository overrides
    if service_url := _get_env("REPOSITORY_SERVICE_URL"):
        config.repository.service_url = service_url

    # Mirror overrides
    if mirror_url := _get_env("MIRROR_URL"):
        config.mirror.url = mirror_url
    if api_key := _get_env("MIRROR_API_KEY"):
        config.mirror.api_key = api_key

    # Sync overrides
    if backend := _get_env("SYNC_BACKEND"):
        config.sync.backend = backend.lower()
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = int(interval)
    if timeout := _get_env("SYNC_TIMEOUT"):
        config.sync.request_timeout_seconds = float(timeout)

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    return config


def _validate(config: Config) -> None:
    if config.sync.backend not in BACKENDS:
        raise ValueError(
            f"Unknown sync backend {config.sync.backend!r}, "
            f"expected one of {', '.join(BACKENDS)}"
        )
    if config.app.environment not in ENVIRONMENTS:
        raise ValueError(
            f"Unknown environment {config.app.environment!r}, "
            f"expected one of {', '.join(ENVIRONMENTS)}"
        )
    if config.sync.max_concurrency < 1:
        raise ValueError("sync.max_concurrency must be at least 1")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If the backend or environment names are unknown.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse app config
            if "app" in data:
                app_data = data["app"]
                config.app = AppConfig(
                    url=app_data.get("url", config.app.url),
                    environment=app_data.get(
                        "environment", config.app.environment
                    ),
                    ui_locales=app_data.get("ui_locales", config.app.ui_locales),
                )

            # Parse oauth config
            if "oauth" in data:
                oauth_data = data["oauth"]
                config.oauth = OAuthConfig(
                    handle_resolver=oauth_data.get(
                        "handle_resolver", config.oauth.handle_resolver
                    ),
                    scope=oauth_data.get("scope", config.oauth.scope),
                )

            # Parse repository config
            if "repository" in data:
                repo_data = data["repository"]
                config.repository = RepositoryConfig(
                    service_url=repo_data.get(
                        "service_url", config.repository.service_url
                    ),
                    collection=repo_data.get(
                        "collection", config.repository.collection
                    ),
                    rkey=repo_data.get("rkey", config.repository.rkey),
                )

            # Parse mirror config
            if "mirror" in data:
                mirror_data = data["mirror"]
                config.mirror = MirrorConfig(
                    url=mirror_data.get("url", config.mirror.url),
                    api_key=mirror_data.get("api_key"),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    backend=sync_data.get("backend", config.sync.backend),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    request_timeout_seconds=sync_data.get(
                        "request_timeout_seconds",
                        config.sync.request_timeout_seconds,
                    ),
                    max_concurrency=sync_data.get(
                        "max_concurrency", config.sync.max_concurrency
                    ),
                    known_identities=sync_data.get("known_identities", []),
                )

            # Parse storage config
            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)

    return config
