"""Model registry: cached view of the models installed at, and currently loaded by, the Ollama server."""

__all__ = ["ModelRegistry",
           "format_size"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import concurrent.futures
import threading
import time
from typing import List, Optional

from unpythonic.env import env

from ..client import ollamaclient
from ..common import bgtask
from ..errors import ModelNotFoundError, TransportError

from . import config as chat_config
from .chatutil import format_size

class ModelRegistry:
    def __init__(self,
                 backend_url: str,
                 refresh_interval: float = chat_config.registry_refresh_interval,
                 executor: Optional[concurrent.futures.Executor] = None):
        """Cache the model catalog and the loaded-model set of the server at `backend_url`.

        Each refresh replaces the cached list wholesale. A failed refresh leaves an empty list.
        """
        if executor is None:
            executor = concurrent.futures.ThreadPoolExecutor()
        self.backend_url = backend_url
        self.refresh_interval = refresh_interval
        self.lock = threading.RLock()
        self._catalog = []
        self._loaded = []
        self.task_manager = bgtask.TaskManager(name="model_registry_autorefresh",
                                               mode="sequential",
                                               executor=executor)

    @property
    def catalog(self) -> List[env]:
        """The last-fetched catalog, a list of `env(name, size_bytes)`."""
        with self.lock:
            return list(self._catalog)

    @property
    def loaded(self) -> List[env]:
        """The last-fetched set of resident models, a list of `env(name)`."""
        with self.lock:
            return list(self._loaded)

    def refresh_catalog(self) -> List[env]:
        """Re-fetch the catalog. Return the new catalog.

        On failure, the cached catalog becomes empty, and `TransportError` propagates to the caller.
        """
        try:
            models = ollamaclient.list_models(self.backend_url)
        except TransportError as exc:
            logger.error(f"ModelRegistry.refresh_catalog: {exc}")
            with self.lock:
                self._catalog = []
            raise
        with self.lock:
            self._catalog = models
        return list(models)

    def refresh_loaded(self) -> List[env]:
        """Re-fetch the loaded-model set. Return the new set. Failure policy as in `refresh_catalog`."""
        try:
            models = ollamaclient.list_loaded(self.backend_url)
        except TransportError as exc:
            logger.error(f"ModelRegistry.refresh_loaded: {exc}")
            with self.lock:
                self._loaded = []
            raise
        with self.lock:
            self._loaded = models
        return list(models)

    def refresh(self) -> None:
        """Refresh both lists. Errors are only logged."""
        for refresher in (self.refresh_catalog, self.refresh_loaded):
            try:
                refresher()
            except TransportError:
                pass  # already logged; the cached list is now empty

    def resolve(self, identifier: str) -> str:
        """Turn a user-supplied model identifier into a model name.

        A decimal integer `k` with 1 <= k <= N (N = size of the last-fetched catalog) means the kth model.
        Anything else (including 0 and N + 1) is taken as a literal model name.

        Raises `ModelNotFoundError` if the catalog is non-empty and has no model with that name.
        If the catalog is empty (e.g. the server was unreachable at the last refresh), any name is accepted.
        """
        identifier = identifier.strip()
        with self.lock:
            catalog = list(self._catalog)
        if identifier.isdecimal():
            k = int(identifier)
            if 1 <= k <= len(catalog):
                return catalog[k - 1].name
        if catalog and not any(model.name == identifier for model in catalog):
            raise ModelNotFoundError(f"Model '{identifier}' not found. Use /models to list available models.")
        return identifier

    # --------------------------------------------------------------------------------
    # Periodic refresh

    def start_auto_refresh(self) -> None:
        """Refresh both lists every `refresh_interval` seconds, in the background, until `stop_auto_refresh`."""
        def auto_refresh_task(task_env: env) -> None:
            next_refresh = time.monotonic() + self.refresh_interval
            while not task_env.cancelled:
                time.sleep(0.1)
                if task_env.cancelled:
                    return
                if time.monotonic() >= next_refresh:
                    self.refresh()
                    next_refresh = time.monotonic() + self.refresh_interval
        self.task_manager.submit(auto_refresh_task, env())

    def stop_auto_refresh(self, wait: bool = False) -> None:
        self.task_manager.clear(wait=wait)
