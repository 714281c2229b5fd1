"""
Tests for the background task runner.
"""

import threading

from readshelf.services.tasks import TaskRunner


def test_synchronous_runs_inline():
    calls = []
    runner = TaskRunner(synchronous=True)

    assert runner.submit("record", calls.append, 1) is None
    assert calls == [1]


def test_failure_is_logged_not_raised(caplog):
    def explode():
        raise RuntimeError("boom")

    TaskRunner(synchronous=True).submit("explode", explode)

    assert "Background task failed: explode: boom" in caplog.text


def test_pool_runs_in_background():
    done = threading.Event()
    runner = TaskRunner(max_workers=1)
    try:
        future = runner.submit("signal", done.set)
        future.result(timeout=5)
        assert done.is_set()
    finally:
        runner.shutdown(wait=True)


def test_pool_failure_does_not_propagate():
    runner = TaskRunner(max_workers=1)
    try:
        future = runner.submit("explode", lambda: 1 / 0)
        assert future.result(timeout=5) is None
    finally:
        runner.shutdown(wait=True)
