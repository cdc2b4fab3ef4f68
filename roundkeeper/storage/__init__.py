from .local import (
    CURRENT_ROUND_KEY,
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    checkpoint_key,
    holes_key,
)

__all__ = [
    "CURRENT_ROUND_KEY",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "checkpoint_key",
    "holes_key",
]
