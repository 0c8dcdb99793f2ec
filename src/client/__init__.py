"""
Gift deck client.

A headless deck controller plus its collaborators: the persisted session id,
the transport to the service, and the dispatcher that keeps network calls
off the gesture path.
"""

from client.deck import DeckController, Direction
from client.dispatch import DeferredDispatcher, InlineDispatcher, TaskDispatcher
from client.session_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    SessionIdRepository,
)
from client.transport import HttpDeckTransport, InProcessTransport

__all__ = [
    "DeckController",
    "Direction",
    "DeferredDispatcher",
    "InlineDispatcher",
    "TaskDispatcher",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "SessionIdRepository",
    "HttpDeckTransport",
    "InProcessTransport",
]
