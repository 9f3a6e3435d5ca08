"""Ports layer - interface definitions following Hexagonal Architecture.

Outbound ports describe the external collaborators this layer is built
on: the transactional storage engine and the value codec. Adapters
implement them with concrete libraries.
"""

from db_env.ports.outbound import (
    Codec,
    DecodeError,
    EngineCursor,
    EngineHandle,
    EngineTransaction,
    Serializable,
    StorageEngine,
)

__all__ = [
    "Codec",
    "DecodeError",
    "EngineCursor",
    "EngineHandle",
    "EngineTransaction",
    "Serializable",
    "StorageEngine",
]
