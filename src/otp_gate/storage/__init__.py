"""Attribute stores and the typed challenge store."""

from .attributes import AttributeStore, InMemoryAttributeStore
from .challenge_store import ChallengeStore, CorruptChallengeState
from .sqlite_store import SqliteAttributeStore

__all__ = [
    "AttributeStore",
    "ChallengeStore",
    "CorruptChallengeState",
    "InMemoryAttributeStore",
    "SqliteAttributeStore",
]
