"""Environment Manager - shared engine environment and handle cache.

One Environment owns the engine environment for a directory and a cache
of open per-file engine handles with reference counts. Database handles
register with it on construction and release on close; flush, close and
verify consult the counts to know which files are safe to touch.

Lifecycle:

    closed ──open()──> open ──close()──> closed
                        │
                 flush(shutdown=True)
                 (tears down once no file is referenced)

Handle cache:
    ``_use_counts[file]`` is the number of live Database handles on a file.
    ``_handles[file]`` exists while the engine file is physically open.
    A file whose count drops to zero stays open until the next flush
    (durable mode) or is closed at once (mock mode).

Thread Safety:
    One re-entrant lock guards the cache and every open/close/flush/
    checkpoint transition. Record reads and writes run outside it and
    rely on the engine's own isolation.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

from db_env.adapters.outbound.lmdb_engine import LmdbStorageEngine
from db_env.adapters.outbound.msgpack_codec import MsgpackCodec
from db_env.domain.errors import (
    CorruptFileError,
    DBEnvironmentError,
    EngineError,
    HandleInUseError,
    HandleUnavailableError,
    SalvageUnavailableError,
)
from db_env.domain.value_objects import Durability, KeyValPair, VerifyResult
from db_env.infrastructure.config import Config, get_config
from db_env.infrastructure.bootstrap import configure_observability
from db_env.infrastructure.container import Container, get_container
from db_env.infrastructure.logging import get_logger
from db_env.infrastructure.metrics import MetricsRegistry, get_metrics
from db_env.infrastructure.tracing import trace_span
from db_env.ports.outbound.codec import Codec
from db_env.ports.outbound.storage_engine import EngineHandle, EngineTransaction, StorageEngine

RecoverFunc = Callable[["Environment", str], bool]
EngineFactory = Callable[[Path, Config, bool], StorageEngine]


def lmdb_engine_factory(path: Path, config: Config, ephemeral: bool) -> StorageEngine:
    """Build the LMDB engine for an environment directory."""
    if ephemeral:
        return LmdbStorageEngine.create_ephemeral(map_size=config.storage.map_size)
    return LmdbStorageEngine(
        path,
        map_size=config.storage.map_size,
        max_readers=config.storage.max_readers,
    )


class Environment:
    """Shared storage environment hosting many named database files.

    Usage:
        env = Environment(config)
        env.open()
        with Database(env, "wallet.dat", "cr+") as db:
            db.write("name", "alice")
        env.flush(shutdown=True)
        env.close()
    """

    def __init__(
        self,
        config: Config | None = None,
        engine_factory: EngineFactory | None = None,
        metrics: MetricsRegistry | None = None,
        codec: Codec | None = None,
    ) -> None:
        """Initialize a closed environment.

        Args:
            config: Settings (default: the global configuration).
            engine_factory: Builds the engine on open (default: LMDB).
            metrics: Metrics registry (default: the global registry).
            codec: Codec used by handles that do not bring their own.
        """
        self._config = config or get_config()
        self._engine_factory = engine_factory or lmdb_engine_factory
        self._metrics = metrics or get_metrics()
        self._codec = codec or MsgpackCodec()
        self._logger = get_logger(__name__)

        self._lock = threading.RLock()
        self._engine: StorageEngine | None = None
        self._path: Path | None = None
        self._mock = False

        self._use_counts: dict[str, int] = {}
        self._handles: dict[str, EngineHandle] = {}
        self._quarantined: set[str] = set()

        self._update_counter = 0
        self._last_update = 0.0

    @property
    def config(self) -> Config:
        return self._config

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def codec(self) -> Codec:
        return self._codec

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def is_mock(self) -> bool:
        return self._mock

    @property
    def path(self) -> Path | None:
        """Directory of the open environment."""
        return self._path

    @property
    def default_durability(self) -> Durability:
        return Durability(self._config.storage.sync_mode)

    @property
    def update_counter(self) -> int:
        """Number of successful writes and erases since creation."""
        return self._update_counter

    @property
    def last_update(self) -> float:
        """Monotonic time of the last write or erase."""
        return self._last_update

    def make_mock(self) -> None:
        """Switch to ephemeral, non-durable mode.

        Raises:
            DBEnvironmentError: If the environment is already open.
        """
        with self._lock:
            if self._engine is not None:
                raise DBEnvironmentError("make_mock() called on an open environment")
            self._mock = True

    def open(self, path: str | Path | None = None) -> None:
        """Open the environment. Does nothing if already open.

        Args:
            path: Environment directory (default: ``storage.data_dir``).
                Ignored in mock mode.

        Raises:
            DBEnvironmentError: If the engine cannot be initialized. The
                environment stays closed.
        """
        with self._lock:
            if self._engine is not None:
                return

            target = Path(path) if path is not None else self._config.storage.data_dir
            try:
                engine = self._engine_factory(target, self._config, self._mock)
            except (OSError, EngineError) as exc:
                self._logger.error("environment_open_failed", path=str(target), error=str(exc))
                raise DBEnvironmentError(f"cannot open environment at {target}: {exc}") from exc

            self._engine = engine
            self._path = engine.directory
            self._logger.info("environment_opened", path=str(self._path), mock=self._mock)

    def _require_engine(self) -> StorageEngine:
        """Return the engine, opening the environment first if needed.

        Callers hold the lock for as long as they use the returned engine,
        so a concurrent shutdown cannot tear it down under them.
        """
        if self._engine is None:
            self.open()
        if self._engine is None:
            raise DBEnvironmentError("environment is not open")
        return self._engine

    def close(self) -> bool:
        """Close idle files and tear the environment down.

        Returns:
            True if the environment is closed, False if handles are still
            referenced and the caller must release them and retry.
        """
        with self._lock:
            if self._engine is None:
                return True
            self.flush(shutdown=True)
            if self._engine is not None:
                self._logger.warning(
                    "environment_close_deferred", open_files=sorted(self._use_counts)
                )
                return False
            return True

    def _teardown(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.close()
        self._logger.info("environment_closed", path=str(self._path), mock=self._mock)

    def flush(self, shutdown: bool = False) -> None:
        """Checkpoint and close every file no handle references.

        Args:
            shutdown: Also tear the environment down once nothing is
                referenced, removing crash-recovery artifacts.
        """
        with trace_span("db_env.flush", {"shutdown": shutdown}), self._lock:
            if self._engine is None:
                return
            self._metrics.flushes_total.labels(shutdown=str(shutdown).lower()).inc()

            for name, count in list(self._use_counts.items()):
                if count == 0:
                    self._close_handle(name)

            if shutdown:
                if self._use_counts:
                    self._logger.info("flush_shutdown_deferred", open_files=sorted(self._use_counts))
                    return
                self._engine.remove_recovery_artifacts()
                self._teardown()

    def checkpoint_lsn(self, file: str) -> None:
        """Force everything committed to ``file`` to stable storage."""
        with self._lock:
            if self._engine is None:
                return
            handle = self._handles.get(file)
            if handle is None:
                return
            handle.checkpoint()
            self._metrics.checkpoints_total.inc()

    def _close_handle(self, file: str) -> None:
        self._use_counts.pop(file, None)
        handle = self._handles.pop(file, None)
        if handle is None:
            return
        try:
            handle.checkpoint()
            self._metrics.checkpoints_total.inc()
        except EngineError as exc:
            self._logger.error("checkpoint_failed", file=file, error=str(exc))
        handle.close()
        self._metrics.handles_closed_total.inc()
        self._metrics.handles_open.set(len(self._handles))
        self._logger.debug("db_file_closed", file=file)

    def _ensure_idle(self, file: str) -> None:
        count = self._use_counts.get(file, 0)
        if count > 0:
            raise HandleInUseError(file, count)
        self._close_handle(file)

    def close_db(self, file: str) -> None:
        """Physically close one file.

        Raises:
            HandleInUseError: If a handle still references the file.
        """
        with self._lock:
            self._ensure_idle(file)

    def remove_db(self, file: str, delete_file: bool = True) -> bool:
        """Drop a file from the cache and, by default, from disk.

        Raises:
            HandleInUseError: If a handle still references the file.
        """
        with self._lock:
            self._ensure_idle(file)
            self._quarantined.discard(file)
            if not delete_file or self._engine is None:
                return True
            try:
                self._engine.remove(file)
            except OSError as exc:
                self._logger.error("remove_failed", file=file, error=str(exc))
                return False
            self._logger.info("db_file_removed", file=file)
            return True

    def rename_db(self, src: str, dst: str) -> None:
        """Replace ``dst`` with ``src`` on disk. Both must be unreferenced.

        Raises:
            HandleInUseError: If either file is still referenced.
            OSError: If the rename fails.
        """
        with self._lock:
            engine = self._require_engine()
            self._ensure_idle(src)
            self._ensure_idle(dst)
            engine.rename(src, dst)
            self._quarantined.discard(dst)
            self._logger.info("db_file_renamed", src=src, dst=dst)

    def verify(self, file: str, recover_func: RecoverFunc | None = None) -> VerifyResult:
        """Check a file before its first open, recovering it if damaged.

        Args:
            file: The file to check.
            recover_func: Strategy that rebuilds the file's contents;
                returns True on success.

        Returns:
            OK if the structural check passes, otherwise RECOVERED or
            RECOVERY_FAILED. A file that failed recovery cannot be opened
            by a handle until it verifies again or is removed.

        Raises:
            HandleInUseError: If a handle references the file.
        """
        with trace_span("db_env.verify", {"file": file}) as span, self._lock:
            engine = self._require_engine()
            self._ensure_idle(file)
            self._quarantined.discard(file)

            try:
                engine.verify(file)
                result = VerifyResult.OK
            except CorruptFileError as exc:
                self._logger.warning("verify_failed", file=file, error=exc.detail)
                result = (
                    VerifyResult.RECOVERED
                    if self._recover(file, recover_func)
                    else VerifyResult.RECOVERY_FAILED
                )

            if result is VerifyResult.RECOVERY_FAILED:
                self._quarantined.add(file)

            span.set_attribute("result", result.name)
            self._metrics.verify_results_total.labels(result=result.name.lower()).inc()
            self._logger.info("verify_completed", file=file, result=result.name)
            return result

    def _recover(self, file: str, recover_func: RecoverFunc | None) -> bool:
        if recover_func is None:
            return False
        try:
            return recover_func(self, file)
        except (EngineError, HandleUnavailableError, OSError) as exc:
            self._logger.error("recovery_failed", file=file, error=str(exc))
            return False

    def salvage(self, file: str, aggressive: bool = False) -> list[KeyValPair] | None:
        """Extract every readable record from a damaged file.

        The whole file is read into memory, so this is not suitable for
        very large files. ``aggressive`` keeps reading past damaged
        regions at the risk of returning inconsistent records.

        Returns:
            The salvaged (key, value) pairs, or None if nothing could be read.

        Raises:
            HandleInUseError: If a handle references the file.
        """
        with trace_span("db_env.salvage", {"file": file, "aggressive": aggressive}), self._lock:
            engine = self._require_engine()
            self._ensure_idle(file)

            try:
                records = engine.salvage(file, aggressive)
            except SalvageUnavailableError as exc:
                self._logger.error("salvage_unavailable", file=file, error=str(exc))
                return None

            self._metrics.salvaged_records_total.inc(len(records))
            self._logger.info("salvage_completed", file=file, records=len(records))
            return records

    def txn_begin(
        self,
        handle: EngineHandle,
        write: bool = True,
        durability: Durability | None = None,
    ) -> EngineTransaction | None:
        """Begin an engine transaction, or return None if the engine refuses."""
        if self._engine is None:
            return None
        try:
            return handle.begin(write=write, durability=durability or self.default_durability)
        except EngineError as exc:
            self._logger.warning("txn_begin_failed", file=handle.name, error=str(exc))
            return None

    def acquire(self, file: str, create: bool = False) -> EngineHandle:
        """Register interest in a file, opening it on first reference.

        Raises:
            DBEnvironmentError: If the environment cannot be opened.
            HandleUnavailableError: If the file cannot be opened.
        """
        with self._lock:
            engine = self._require_engine()
            if file in self._quarantined:
                raise HandleUnavailableError(file, "failed verification and recovery")

            handle = self._handles.get(file)
            if handle is None:
                try:
                    handle = engine.open(file, create=create)
                except EngineError as exc:
                    raise HandleUnavailableError(file, str(exc)) from exc
                self._handles[file] = handle
                self._metrics.handles_opened_total.inc()
                self._metrics.handles_open.set(len(self._handles))
                self._logger.debug("db_file_opened", file=file, create=create)

            self._use_counts[file] = self._use_counts.get(file, 0) + 1
            return handle

    def release(self, file: str) -> None:
        """Drop one reference to a file."""
        with self._lock:
            count = self._use_counts.get(file, 0)
            if count <= 0:
                self._logger.warning("release_without_acquire", file=file)
                return
            self._use_counts[file] = count - 1
            if self._mock and count == 1:
                self._close_handle(file)

    def note_update(self) -> None:
        """Record that a file was modified."""
        with self._lock:
            self._update_counter += 1
            self._last_update = time.monotonic()

    def use_count(self, file: str) -> int:
        with self._lock:
            return self._use_counts.get(file, 0)

    def open_files(self) -> list[str]:
        """Files whose engine handle is currently open."""
        with self._lock:
            return sorted(self._handles)


def get_environment() -> Environment:
    """Get the process-wide default environment.

    The first call also configures logging, metrics and tracing from the
    global configuration.
    """
    container = get_container()
    if not container.has(Environment):
        container.register_factory(Environment, _default_environment)
    return container.resolve(Environment)


def _default_environment(container: Container) -> Environment:
    config = get_config()
    configure_observability(config)
    return Environment(config)
