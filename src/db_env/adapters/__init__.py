"""Adapters layer - concrete implementations of port interfaces.

Outbound adapters bind the storage engine port to LMDB and the codec
port to msgpack.
"""

from db_env.adapters.outbound import LmdbStorageEngine, MsgpackCodec

__all__ = [
    "LmdbStorageEngine",
    "MsgpackCodec",
]
