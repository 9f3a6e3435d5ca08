"""Outbound adapters - implementations of outbound ports."""

from db_env.adapters.outbound.lmdb_engine import (
    LmdbCursor,
    LmdbHandle,
    LmdbStorageEngine,
    LmdbTransaction,
)
from db_env.adapters.outbound.msgpack_codec import MsgpackCodec

__all__ = [
    "LmdbCursor",
    "LmdbHandle",
    "LmdbStorageEngine",
    "LmdbTransaction",
    "MsgpackCodec",
]
