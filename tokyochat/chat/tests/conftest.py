"""Shared fixtures for the tokyochat.chat tests: an inline executor, a recording view, and a fake Ollama."""

import concurrent.futures

import pytest

from unpythonic.env import env

from tokyochat.chat.registry import ModelRegistry
from tokyochat.chat.session import ChatSessionController
from tokyochat.chat.transcript import ChatView, Transcript
from tokyochat.client import ollamaclient
from tokyochat.errors import AbortError


class InlineExecutor(concurrent.futures.Executor):
    """Run each submitted task immediately, in the calling thread. Makes the controller deterministic."""

    def submit(self, fn, /, *args, **kwargs):
        future = concurrent.futures.Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


class RecordingView(ChatView):
    """A `ChatView` that records everything the controller asks it to do."""

    def __init__(self):
        self.entries = []  # env(entry_id, role, text, final)
        self.updates = []  # (entry_id, text), in call order
        self.overlay_events = []
        self.indicator_events = []
        self.statuses = []
        self.on_update = None  # optional hook, called with (entry_id, text) after each update
        self._next_id = 0

    def append_entry(self, role, text):
        entry_id = self._next_id
        self._next_id += 1
        self.entries.append(env(entry_id=entry_id, role=role, text=text, final=False))
        return entry_id

    def _find(self, entry_id):
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        return None

    def update_in_progress(self, entry_id, text):
        self.updates.append((entry_id, text))
        entry = self._find(entry_id)
        if entry is not None:
            entry.text = text
        if self.on_update is not None:
            self.on_update(entry_id, text)

    def finalize(self, entry_id):
        entry = self._find(entry_id)
        if entry is not None:
            entry.final = True

    def clear(self):
        self.entries.clear()

    def show_loading_overlay(self, model_name):
        self.overlay_events.append(("show", model_name))

    def update_loading_overlay(self, elapsed_text):
        self.overlay_events.append(("update", elapsed_text))

    def hide_loading_overlay(self):
        self.overlay_events.append(("hide", None))

    def show_generating_indicator(self):
        self.indicator_events.append("show")

    def hide_generating_indicator(self):
        self.indicator_events.append("hide")

    def update_status(self, state):
        self.statuses.append((state.current_model, state.is_loading, state.is_generating))

    # Convenience accessors for assertions
    def notices(self):
        return [entry.text for entry in self.entries if entry.role == "system"]

    def by_role(self, role):
        return [entry for entry in self.entries if entry.role == role]


class FakeTimer:
    """Stands in for `LoadingTimer`, counting starts and stops."""

    def __init__(self):
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1

    def stop(self):
        self.stops += 1


class FakeOllama:
    """Replaces the network functions of `tokyochat.client.ollamaclient`, recording the calls."""

    def __init__(self):
        self.catalog = [env(name="llama3:8b", size_bytes=4661224676),
                        env(name="mistral:7b", size_bytes=4113301824),
                        env(name="phi3:mini", size_bytes=2176178913)]
        self.loaded = []
        self.chunks = ["Hel", "lo"]
        self.list_models_error = None
        self.warm_load_error = None
        self.stream_error = None  # raised after the first chunk, if set
        self.on_warm_load = None  # optional hook, called with the model name during the load
        self.list_models_calls = 0
        self.warm_load_calls = []
        self.stream_calls = []

    def list_models(self, backend_url):
        self.list_models_calls += 1
        if self.list_models_error is not None:
            raise self.list_models_error
        return list(self.catalog)

    def list_loaded(self, backend_url):
        if self.list_models_error is not None:
            raise self.list_models_error
        return list(self.loaded)

    def warm_load(self, backend_url, model_name):
        self.warm_load_calls.append(model_name)
        if self.on_warm_load is not None:
            self.on_warm_load(model_name)
        if self.warm_load_error is not None:
            raise self.warm_load_error
        self.loaded = [env(name=model_name)]

    def stream_generate(self, backend_url, model_name, messages, cancel_token):
        self.stream_calls.append((model_name, messages))
        if cancel_token.cancelled:
            raise AbortError("Generation stopped by user")
        for k, chunk in enumerate(self.chunks):
            yield chunk
            if cancel_token.cancelled:
                raise AbortError("Generation stopped by user")
            if k == 0 and self.stream_error is not None:
                raise self.stream_error


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_ollama(monkeypatch):
    fake = FakeOllama()
    monkeypatch.setattr(ollamaclient, "list_models", fake.list_models)
    monkeypatch.setattr(ollamaclient, "list_loaded", fake.list_loaded)
    monkeypatch.setattr(ollamaclient, "warm_load", fake.warm_load)
    monkeypatch.setattr(ollamaclient, "stream_generate", fake.stream_generate)
    return fake


@pytest.fixture
def view():
    return RecordingView()


@pytest.fixture
def fake_timer():
    return FakeTimer()


@pytest.fixture
def controller(fake_ollama, view, fake_timer):
    """A session controller wired to fakes. Background tasks run inline, except the registry's auto-refresh."""
    registry = ModelRegistry("http://ollama.invalid/api",
                             refresh_interval=3600.0,
                             executor=concurrent.futures.ThreadPoolExecutor())
    registry.refresh_catalog()
    c = ChatSessionController(view=view,
                              backend_url="http://ollama.invalid/api",
                              registry=registry,
                              transcript=Transcript(),
                              loading_timer=fake_timer,
                              executor=InlineExecutor(),
                              input_executor=InlineExecutor())
    yield c
    c.shutdown()
