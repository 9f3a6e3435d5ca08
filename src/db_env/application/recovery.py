"""Salvage-based recovery strategy for damaged database files.

Pass ``salvage_recover`` (or a ``functools.partial`` of it with a key
filter) to ``Environment.verify``:

    result = env.verify("wallet.dat", salvage_recover)

The damaged file is kept as ``<file>.<unix time>.bak`` next to the
rebuilt one.
"""

from __future__ import annotations

import time
from typing import Callable

from db_env.application.database import Database
from db_env.application.environment import Environment
from db_env.infrastructure.logging import get_logger
from db_env.infrastructure.tracing import trace_span

logger = get_logger(__name__)

KeyFilter = Callable[[bytes, bytes], bool]


def backup_name(file: str, now: float | None = None) -> str:
    return f"{file}.{int(now if now is not None else time.time())}.bak"


def salvage_recover(
    env: Environment,
    file: str,
    key_filter: KeyFilter | None = None,
) -> bool:
    """Rebuild ``file`` from whatever an aggressive salvage can read.

    Args:
        env: Environment hosting the file.
        file: The damaged file, not referenced by any handle.
        key_filter: Optional predicate; records it rejects are dropped.

    Returns:
        True if at least one record was salvaged and written back.
    """
    with trace_span("db_env.salvage_recover", {"file": file}):
        backup = backup_name(file)
        env.rename_db(file, backup)
        logger.warning("recovery_backup_created", file=file, backup=backup)

        records = env.salvage(backup, aggressive=True)
        if not records:
            logger.error("recovery_nothing_salvaged", file=file, backup=backup)
            return False

        kept = dropped = 0
        with Database(env, file, "cw") as db:
            if not db.txn_begin():
                return False
            for key, value in records:
                if key_filter is not None and not key_filter(key, value):
                    dropped += 1
                    continue
                if not db.write_raw(key, value):
                    db.txn_abort()
                    logger.error("recovery_write_failed", file=file, kept=kept)
                    return False
                kept += 1
            if not db.txn_commit():
                return False

        logger.info("recovery_completed", file=file, kept=kept, dropped=dropped)
        return True
