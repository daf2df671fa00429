"""Shared test fixtures."""

from __future__ import annotations

import logging
import time

import pytest

from forkpool.config import effective_settings as config
from forkpool.supervisor import Supervisor, Worker


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Points both state backends at a per-test directory."""
    monkeypatch.setattr(config, "STATE_DB_PATH", tmp_path / "state" / "forkpool-state.db")
    monkeypatch.setattr(config, "STATE_FILE_DIR", tmp_path / "files")
    return tmp_path


@pytest.fixture()
def isolated_root_logger():
    """Lets a test reconfigure the root logger and puts pytest's handlers back afterwards."""
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    for handler in saved_handlers:
        root.removeHandler(handler)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


def _make_supervisor(worker_count: int = 1) -> Supervisor:
    return Supervisor(worker_count).set_poll_interval(20).set_grace_period(1)


def _wait_until_exited(worker: Worker, timeout: float = 10) -> None:
    deadline = time.monotonic() + timeout
    while worker.is_alive():
        assert time.monotonic() < deadline, f"{worker!r} still running after {timeout}s"
        time.sleep(0.02)


@pytest.fixture()
def make_supervisor():
    """Builds supervisors with a short poll interval and grace period."""
    return _make_supervisor


@pytest.fixture()
def wait_until_exited():
    """Blocks until a worker's child process has exited and been reaped."""
    return _wait_until_exited
