"""Background task manager.

Tokyo Chat runs all network traffic (model listing, model loading, streamed generation)
in background tasks on a thread pool, so that the GUI event handlers and the terminal
prompt never block. Cancellation is co-operative: each task gets an `env` with a
`cancelled` flag, which the task body polls.
"""

__all__ = ["TaskManager"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
logger.setLevel(logging.WARNING)

import concurrent.futures
import threading
import time
import traceback
from typing import Callable

from unpythonic import gensym
from unpythonic.symbol import gsym
from unpythonic.env import env

class TaskManager:
    def __init__(self, name: str, mode: str, executor: concurrent.futures.Executor):
        """Track background tasks submitted to `executor`, and cancel them on request.

        If you have several kinds of background tasks, create one `TaskManager` for each kind,
        so that each kind can be cancelled separately. They can all share the same executor.

        `name`: Name for this task manager, lowercase with underscores recommended.
                Used in the generated task names, which show up in log messages.
        `mode`: str, one of:
                    "concurrent": Any number of tasks may run at the same time.
                    "sequential": There Can Be Only One. Submitting a new task cancels
                                  all earlier tasks of this manager. The loading timer
                                  uses this to guarantee a single ticker.
        `executor`: A `ThreadPoolExecutor`, or something duck-compatible with it.
        """
        if mode not in ("concurrent", "sequential"):
            raise ValueError(f"Unknown mode '{mode}'; valid values: 'concurrent', 'sequential'.")
        self.name = name
        self.mode = mode
        self.executor = executor
        self.tasks = {}  # task name (unique) -> (future, env)
        self.cancelled_tasks = {}  # task name -> env, cancelled but done callback not yet run
        self.lock = threading.RLock()

    def submit(self, function: Callable, env: env) -> gsym:
        """Submit a new task.

        `function`: callable, taking one positional argument, `env`.
        `env`: `unpythonic.env.env`. Before the task starts, we add to it:
                   `task_name`: unique name of the task, for log messages.
                   `cancelled`: bool. The task must poll this, and exit as soon as
                                conveniently possible once it becomes `True`.

               If `env` has a `done_callback` attribute when the task exits (or is cancelled),
               it is called with `env` as its only argument. Use this to hand results back
               to the submitter, or to reset GUI state. Its return value is ignored.

        Returns the task name, an `unpythonic.gsym`.
        """
        with self.lock:
            if self.mode == "sequential":
                self.clear()
            env.task_name = gensym(f"{self.name}_task")
            env.cancelled = False
            # Register before submitting, since an inline executor runs the task right away.
            self.tasks[env.task_name] = (None, env)
            future = self.executor.submit(function, env)
            self.tasks[env.task_name] = (future, env)
            future.add_done_callback(self._make_done_callback(env.task_name))
            logger.info(f"TaskManager.submit: instance '{self.name}': task '{env.task_name}' submitted.")
            return env.task_name

    def has_tasks(self) -> bool:
        """Return whether this task manager is currently tracking any tasks."""
        with self.lock:
            return len(self.tasks) > 0

    def _make_done_callback(self, task_name: gsym) -> Callable:
        def _done_callback(future: concurrent.futures.Future) -> None:
            # Avoid silently swallowing exceptions from background tasks
            try:
                exc = future.exception()  # the future is done, so no timeout needed
            except concurrent.futures.CancelledError:
                pass
            else:
                if exc is not None:
                    logger.error(f"TaskManager._done_callback: instance '{self.name}': task '{task_name}' exited with exception {type(exc)}: {exc}")
                    traceback.print_exception(type(exc), exc, exc.__traceback__)

            with self.lock:
                if task_name in self.tasks:
                    future, e = self.tasks[task_name]
                else:
                    e = self.cancelled_tasks.pop(task_name, None)
            # The custom `done_callback` is part of the task; only forget the task after it exits.
            try:
                if e is not None and "done_callback" in e and e.done_callback is not None:
                    logger.info(f"TaskManager._done_callback: instance '{self.name}': {task_name}: calling custom `done_callback`.")
                    e.done_callback(e)
            finally:
                with self.lock:
                    self.tasks.pop(task_name, None)
        return _done_callback

    def cancel(self, task_name: gsym) -> None:
        """Cancel a specific task, by name.

        Raises `ValueError` if no task with `task_name` is being tracked.
        """
        logger.info(f"TaskManager.cancel: instance '{self.name}': cancelling task '{task_name}'.")
        with self.lock:
            if task_name not in self.tasks:
                raise ValueError(f"TaskManager.cancel: instance '{self.name}': no such task '{task_name}'")
            future, e = self.tasks.pop(task_name)
            e.cancelled = True  # co-operative cancellation for a running task
            if future is not None:
                self.cancelled_tasks[task_name] = e
                future.cancel()  # if still queued in the executor, don't start it

    def clear(self, wait: bool = False) -> None:
        """Cancel all tasks.

        `wait`: Whether to wait for all tasks to exit before returning. Useful at app shutdown.
        """
        logger.info(f"TaskManager.clear: instance '{self.name}': cancelling all tasks.")
        with self.lock:
            futures = [future for future, e in self.tasks.values() if future is not None]
            for task_name in list(self.tasks.keys()):
                self.cancel(task_name)
        # Release the lock while we wait, so that the done callbacks can run.
        if wait:
            logger.info(f"TaskManager.clear: instance '{self.name}': waiting for tasks to exit.")
            while not all(future.done() for future in futures):
                time.sleep(0.01)
