"""Elapsed-time ticker for the model loading overlay."""

__all__ = ["LoadingTimer"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import concurrent.futures
import threading
import time
from typing import Callable, Optional

from unpythonic.env import env

from ..common import bgtask

from . import chatutil
from . import config as chat_config

class LoadingTimer:
    def __init__(self,
                 on_tick: Callable,
                 interval: float = chat_config.loading_timer_interval,
                 executor: Optional[concurrent.futures.Executor] = None):
        """Push the time elapsed since `start` to `on_tick` every `interval` seconds.

        `on_tick`: 1-argument callable, receives the elapsed time formatted as 'm:ss'.

        At most one ticker runs at a time: `start` while already running stops the old ticker first.
        """
        if executor is None:
            executor = concurrent.futures.ThreadPoolExecutor()
        self.on_tick = on_tick
        self.interval = interval
        self.poll_interval = 0.05  # how often the ticker checks for cancellation, seconds
        self.task_manager = bgtask.TaskManager(name="loading_timer",
                                               mode="sequential",  # only one ticker at a time
                                               executor=executor)
        self.lock = threading.RLock()
        self.t0 = None
        self.generation = 0  # bumped by `start` and `stop`; a ticker from an older generation must not tick

    def start(self) -> None:
        with self.lock:
            if self.t0 is not None:
                logger.info("LoadingTimer.start: already running; restarting.")
                self.stop()
            self.t0 = time.monotonic()
            self.generation += 1
            t0 = self.t0
            generation = self.generation

        def ticker_task(task_env: env) -> None:
            next_tick = t0 + self.interval
            while not task_env.cancelled:
                time.sleep(min(self.poll_interval, self.interval))
                now = time.monotonic()
                if now >= next_tick:
                    with self.lock:  # `stop` takes the lock, so once it returns, no more ticks
                        if self.generation != generation:
                            return
                        self.on_tick(chatutil.format_elapsed(now - t0))
                    next_tick += self.interval
        with self.lock:
            if self.generation == generation:  # not stopped in the meantime
                self.task_manager.submit(ticker_task, env())

    def stop(self) -> None:
        with self.lock:
            self.task_manager.clear()
            self.t0 = None
            self.generation += 1

    def is_running(self) -> bool:
        with self.lock:
            return self.t0 is not None

    def elapsed(self) -> Optional[float]:
        """Seconds since `start`, or `None` if stopped."""
        with self.lock:
            if self.t0 is None:
                return None
            return time.monotonic() - self.t0
