"""Shared fixtures for drawat tests."""

from datetime import datetime, timedelta, timezone

import pytest

from drawat.config import Config
from drawat.models import StrokePoint, VectorRecord

NOW = datetime(2026, 2, 3, 12, 0, 0, tzinfo=timezone.utc)


def point(x: float = 0, y: float = 0, new: bool = False, author: str = "did:plc:a") -> StrokePoint:
    return StrokePoint(x=x, y=y, color="#000000", size=2, is_new_stroke=new, author=author)


def record(did: str, paths, days_ago: float) -> VectorRecord:
    return VectorRecord(did=did, paths=paths, updated_at=NOW - timedelta(days=days_ago))


@pytest.fixture
def config():
    """Default config pointed at a fake mirror."""
    config = Config()
    config.mirror.url = "https://mirror.test/vectors"
    config.mirror.api_key = "local-key"
    config.repository.service_url = "https://pds.test"
    return config
