"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the storage engine hosting the
database files and the codec turning typed values into bytes.
"""

from db_env.ports.outbound.codec import Codec, DecodeError, Serializable
from db_env.ports.outbound.storage_engine import (
    EngineCursor,
    EngineHandle,
    EngineTransaction,
    StorageEngine,
)

__all__ = [
    "Codec",
    "DecodeError",
    "Serializable",
    "EngineCursor",
    "EngineHandle",
    "EngineTransaction",
    "StorageEngine",
]
