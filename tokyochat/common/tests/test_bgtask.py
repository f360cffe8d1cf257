"""Unit tests for tokyochat.common.bgtask."""

import concurrent.futures
import threading
import time

import pytest

from unpythonic.env import env

from tokyochat.common import bgtask


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class InlineExecutor(concurrent.futures.Executor):
    """Run each submitted task immediately, in the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future = concurrent.futures.Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


@pytest.fixture
def executor():
    with concurrent.futures.ThreadPoolExecutor() as e:
        yield e


def wait_until(predicate, timeout=2.0):
    t0 = time.monotonic()
    while not predicate():
        if time.monotonic() - t0 > timeout:
            return False
        time.sleep(0.01)
    return True


def spin_until_cancelled(task_env):
    while not task_env.cancelled:
        time.sleep(0.01)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            bgtask.TaskManager(name="test", mode="parallel", executor=InlineExecutor())


class TestInline:
    def test_task_runs_and_is_forgotten(self):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=InlineExecutor())
        results = []
        manager.submit(lambda task_env: results.append(task_env.cancelled), env())
        assert results == [False]
        assert not manager.has_tasks()

    def test_task_sees_its_name(self):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=InlineExecutor())
        names = []
        task_name = manager.submit(lambda task_env: names.append(task_env.task_name), env())
        assert names == [task_name]

    def test_done_callback(self):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=InlineExecutor())
        def task(task_env):
            task_env.result = 42
        results = []
        manager.submit(task, env(done_callback=lambda e: results.append(e.result)))
        assert results == [42]

    def test_exception_logged_not_raised(self):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=InlineExecutor())
        called = []
        def task(task_env):
            raise RuntimeError("task failed")
        manager.submit(task, env(done_callback=lambda e: called.append(True)))
        assert called == [True]
        assert not manager.has_tasks()


class TestThreaded:
    def test_cancel(self, executor):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=executor)
        task_name = manager.submit(spin_until_cancelled, env())
        assert manager.has_tasks()
        manager.cancel(task_name)
        assert not manager.has_tasks()

    def test_cancel_unknown_task(self, executor):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=executor)
        with pytest.raises(ValueError):
            manager.cancel("no_such_task")

    def test_done_callback_runs_for_cancelled_task(self, executor):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=executor)
        done = threading.Event()
        task_name = manager.submit(spin_until_cancelled, env(done_callback=lambda e: done.set()))
        manager.cancel(task_name)
        assert done.wait(timeout=2.0)

    def test_concurrent_mode_keeps_all(self, executor):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=executor)
        envs = [env(), env()]
        for e in envs:
            manager.submit(spin_until_cancelled, e)
        assert not any(e.cancelled for e in envs)
        manager.clear(wait=True)
        assert all(e.cancelled for e in envs)

    def test_sequential_mode_cancels_earlier(self, executor):
        manager = bgtask.TaskManager(name="test", mode="sequential", executor=executor)
        first, second = env(), env()
        manager.submit(spin_until_cancelled, first)
        manager.submit(spin_until_cancelled, second)
        assert first.cancelled
        assert not second.cancelled
        manager.clear(wait=True)
        assert second.cancelled

    def test_clear_wait_blocks_until_exit(self, executor):
        manager = bgtask.TaskManager(name="test", mode="concurrent", executor=executor)
        exited = []
        def task(task_env):
            spin_until_cancelled(task_env)
            time.sleep(0.1)
            exited.append(True)
        manager.submit(task, env())
        manager.clear(wait=True)
        assert exited == [True]
        assert wait_until(lambda: not manager.has_tasks())
