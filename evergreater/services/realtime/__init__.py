"""Realtime infrastructure: connection registry, push dispatch and
channel binding proofs shared by socket handlers and background tasks.
"""

from .registry import ConnectionRegistry
from .dispatcher import BroadcastDispatcher

__all__ = ['ConnectionRegistry', 'BroadcastDispatcher']
