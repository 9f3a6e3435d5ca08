"""Unit tests for the background flush worker."""

import time

import pytest

from db_env.application import Database, Environment, FlushWorker, shutdown


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.mark.unit
class TestFlushWorker:
    """Tests for FlushWorker."""

    def test_tick_without_updates(self, env: Environment) -> None:
        worker = FlushWorker(env)
        assert not worker.tick()

    def test_tick_flushes_idle_files(self, env: Environment) -> None:
        worker = FlushWorker(env, idle_seconds=0)
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")
        assert env.open_files() == ["a.db"]

        assert worker.tick()
        assert env.open_files() == []
        assert not worker.tick()

    def test_tick_waits_for_idle_period(self, env: Environment) -> None:
        worker = FlushWorker(env, idle_seconds=60)
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")

        assert not worker.tick()
        assert env.open_files() == ["a.db"]

    def test_tick_keeps_referenced_files(self, env: Environment) -> None:
        worker = FlushWorker(env, idle_seconds=0)
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")
            assert worker.tick()
            assert env.open_files() == ["a.db"]
            assert db.read("k") == "v"

    def test_tick_on_closed_environment(self, env: Environment) -> None:
        worker = FlushWorker(env, idle_seconds=0)
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")
        env.flush(shutdown=True)

        assert not worker.tick()

    def test_background_thread(self, env: Environment) -> None:
        worker = FlushWorker(env)
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")
        worker.start()
        try:
            assert worker.running
            worker.start()
            assert wait_until(lambda: env.open_files() == [])
        finally:
            worker.stop()
        assert not worker.running


@pytest.mark.unit
class TestShutdown:
    """Tests for the shutdown helper."""

    def test_shutdown_closes_environment(self, env: Environment) -> None:
        worker = FlushWorker(env)
        worker.start()
        with Database(env, "a.db", "cr+") as db:
            db.write("k", "v")

        assert shutdown(env, worker)
        assert not worker.running
        assert not env.is_open

    def test_shutdown_with_open_handle(self, env: Environment) -> None:
        db = Database(env, "a.db", "cr+")
        assert not shutdown(env)
        assert env.is_open

        db.close()
        assert shutdown(env)
