"""Remote record stores: the per-user repository, the mirror table, and the
facade that puts either or both behind one interface."""

from .adapter import (
    CentralizedOnly,
    DecentralizedOnly,
    Dual,
    RecordStoreAdapter,
    WriteResult,
    build_adapter,
)
from .mirror import MirrorClient
from .repository import RepositoryClient

__all__ = [
    "CentralizedOnly",
    "DecentralizedOnly",
    "Dual",
    "MirrorClient",
    "RecordStoreAdapter",
    "RepositoryClient",
    "WriteResult",
    "build_adapter",
]
