"""Application layer - environment, database handles and maintenance."""

from db_env.application.database import Database
from db_env.application.environment import (
    Environment,
    get_environment,
    lmdb_engine_factory,
)
from db_env.application.flush_worker import FlushWorker, shutdown
from db_env.application.recovery import salvage_recover

__all__ = [
    "Database",
    "Environment",
    "FlushWorker",
    "get_environment",
    "lmdb_engine_factory",
    "salvage_recover",
    "shutdown",
]
