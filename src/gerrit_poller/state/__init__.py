"""
Sync state tracking for the Gerrit poller.

This package keeps the per-project watermarks callers feed into each poll.
"""

from .manager import InMemorySyncStateTracker, SyncStateTracker

__all__ = [
    "SyncStateTracker",
    "InMemorySyncStateTracker",
]
