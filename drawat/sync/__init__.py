"""Synchronization of the merged canvas with the shared record store."""

from .engine import MergedCanvas, PullResult, SyncEngine, SyncResult, SyncStatus

__all__ = ["MergedCanvas", "PullResult", "SyncEngine", "SyncResult", "SyncStatus"]
