"""Integration sync engine."""
from .engine import BatchSyncResult, SyncEngine, SyncResult

__all__ = [
    "BatchSyncResult",
    "SyncEngine",
    "SyncResult",
]
