"""Chat session controller: model loading, streamed generation, and cancellation.

This is the part of Tokyo Chat that is independent of the front-end. The GUI app and
the terminal client each provide a `tokyochat.chat.transcript.ChatView`, and forward
the user's input to `ChatSessionController.handle_input`.

The session is always in one of these states:

    Idle -> Loading -> Idle          (/load)
    Idle -> Generating -> Idle       (plain chat message; the user may stop it midway)

Loading and Generating exclude each other. A request to enter either while the session
is busy is refused with a notice; nothing is queued.
"""

__all__ = ["SessionState",
           "ChatSessionController"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import concurrent.futures
import io
import threading
from typing import Optional

from unpythonic import timer
from unpythonic.env import env

from ..client import ollamaclient
from ..common import bgtask
from ..errors import AbortError, ModelNotFoundError, TransportError

from . import config as chat_config
from .commands import CommandInterpreter
from .loadingtimer import LoadingTimer
from .registry import ModelRegistry
from .transcript import ChatView, Transcript

class SessionState:
    def __init__(self):
        self.current_model = None  # name of the model chat messages go to, or `None`
        self.is_loading = False
        self.is_generating = False

    def __repr__(self):
        return f"<SessionState current_model={self.current_model!r}, is_loading={self.is_loading}, is_generating={self.is_generating}>"

class ChatSessionController:
    def __init__(self,
                 view: ChatView,
                 backend_url: str,
                 registry: Optional[ModelRegistry] = None,
                 transcript: Optional[Transcript] = None,
                 loading_timer: Optional[LoadingTimer] = None,
                 executor: Optional[concurrent.futures.Executor] = None,
                 input_executor: Optional[concurrent.futures.Executor] = None):
        """Orchestrate one chat session against the Ollama server at `backend_url`.

        `view`: where to render the chat. Called from background threads.
        `registry`, `transcript`, `loading_timer`: created automatically if not given.
        `executor`: thread pool for the background tasks; created automatically if not given.
        `input_executor`: runs the inputs queued by `submit_input`, one at a time, in order.
                          Default is a single-worker thread pool.
        """
        if executor is None:
            executor = concurrent.futures.ThreadPoolExecutor()
        if input_executor is None:
            input_executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        self.view = view
        self.backend_url = backend_url
        self.registry = registry if registry is not None else ModelRegistry(backend_url, executor=executor)
        self.transcript = transcript if transcript is not None else Transcript()
        self.loading_timer = loading_timer if loading_timer is not None else LoadingTimer(on_tick=self.view.update_loading_overlay,
                                                                                          executor=executor)
        self.commands = CommandInterpreter(self)

        self.state = SessionState()
        self.cancel_token = None  # the active generation's `env(cancelled=...)`, while generating
        self.lock = threading.RLock()  # guards `state` and `cancel_token`

        self.task_manager = bgtask.TaskManager(name="chat_session",  # startup, model loading
                                               mode="concurrent",
                                               executor=executor)
        self.generate_task_manager = bgtask.TaskManager(name="chat_session_generate",
                                                        mode="concurrent",
                                                        executor=executor)  # same thread pool
        self.input_task_manager = bgtask.TaskManager(name="chat_session_input",
                                                     mode="concurrent",  # one worker, so FIFO
                                                     executor=input_executor)

    # --------------------------------------------------------------------------------
    # Lifecycle

    def startup(self) -> None:
        """Show the welcome message, fetch the model lists, and start refreshing them periodically."""
        self.notice(chat_config.welcome_message)
        try:
            self.registry.refresh_catalog()
            self.registry.refresh_loaded()
        except TransportError:
            self.notice(f"Cannot connect to Ollama at {self.backend_url}. Is the Ollama server running?")
        self.registry.start_auto_refresh()
        self.view.update_status(self.state)

    def shutdown(self) -> None:
        """Prepare for app shutdown. Stop generating, and signal the background tasks to exit."""
        logger.info("ChatSessionController.shutdown: entered")
        self.stop_generation()
        self.input_task_manager.clear(wait=True)
        self.registry.stop_auto_refresh(wait=True)
        self.loading_timer.stop()
        self.generate_task_manager.clear(wait=True)
        self.task_manager.clear(wait=True)
        logger.info("ChatSessionController.shutdown: done")

    # --------------------------------------------------------------------------------
    # Input

    def notice(self, text: str) -> None:
        """Show a system notice in the view. Notices never enter the history."""
        self.view.append_entry("system", text)

    def handle_input(self, text: str) -> None:
        """Entry point for text typed by the user. Commands are run, anything else is sent to the model.

        Runs in the calling thread, so inputs take effect in the order they are given.
        Commands that talk to the server block until the server answers; a GUI should
        use `submit_input` instead.
        """
        text = text.strip()
        if not text:
            return
        if self.commands.is_command(text):
            self.view.append_entry("user", text)
            self.commands.execute(text)
        else:
            self.send_message(text)

    def submit_input(self, text: str) -> None:
        """Queue `text` for `handle_input` in the background. Queued inputs are processed one at a time, in order."""
        def input_task(task_env: env) -> None:
            if task_env.cancelled:
                return
            self.handle_input(text)
        self.input_task_manager.submit(input_task, env())

    # --------------------------------------------------------------------------------
    # Model loading

    def load_model(self, identifier: str) -> None:
        """Resolve `identifier` (catalog number or model name), and load that model in the background.

        Refused while another load or a generation is in progress.
        """
        refusal = None
        with self.lock:
            if self.state.is_loading:
                refusal = "A model is already loading. Please wait."
            elif self.state.is_generating:
                refusal = "A response is being generated. Please wait, or stop it first."
            else:
                try:
                    model_name = self.registry.resolve(identifier)
                except ModelNotFoundError as exc:
                    refusal = str(exc)
                else:
                    self.state.is_loading = True
        if refusal is not None:
            self.notice(refusal)
            return
        self.view.update_status(self.state)

        def load_task(task_env: env) -> None:
            try:
                self.notice(f"Loading model '{model_name}'...")
                self.view.show_loading_overlay(model_name)
                self.loading_timer.start()
                with timer() as tim:
                    ollamaclient.warm_load(self.backend_url, model_name)
            except TransportError as exc:
                self.notice(f"Failed to load model '{model_name}': {exc}")
            else:
                with self.lock:
                    self.state.current_model = model_name
                self.notice(f"Model '{model_name}' loaded in {tim.dt:0.1f}s. You can start chatting.")
                try:
                    self.registry.refresh_loaded()
                except TransportError:
                    pass  # already logged; the next auto-refresh will try again
            finally:
                self.loading_timer.stop()
                self.view.hide_loading_overlay()
                with self.lock:
                    self.state.is_loading = False
                self.view.update_status(self.state)
        self.task_manager.submit(load_task, env())

    # --------------------------------------------------------------------------------
    # Generation

    def send_message(self, text: str) -> None:
        """Add the user's message to the chat, and stream the model's reply in the background."""
        refusal = None
        with self.lock:
            if self.state.is_loading or self.state.is_generating:
                reason = "a model is loading" if self.state.is_loading else "a response is being generated"
                refusal = f"Please wait, {reason}. Your message was not sent."
            else:
                self.transcript.append("user", text)
                model_name = self.state.current_model
                if model_name is None:
                    refusal = "No model loaded. Use /models to list the available models, and /load <number|name> to load one."
                else:
                    messages = self.transcript.messages()
                    cancel_token = env(cancelled=False)
                    self.cancel_token = cancel_token
                    self.state.is_generating = True
        self.view.append_entry("user", text)
        if refusal is not None:
            self.notice(refusal)
            return
        self.view.update_status(self.state)

        def generate_task(task_env: env) -> None:
            try:
                entry_id = self.view.append_entry("assistant", "")  # the one in-progress slot for this reply
                self.view.show_generating_indicator()
                text = io.StringIO()
                try:
                    for chunk in ollamaclient.stream_generate(self.backend_url, model_name, messages, cancel_token):
                        if text.tell() == 0:  # first chunk: the model has started writing
                            self.view.hide_generating_indicator()
                        text.write(chunk)
                        self.view.update_in_progress(entry_id, text.getvalue())
                    if cancel_token.cancelled:  # stopped after the last chunk arrived
                        raise AbortError("Generation stopped by user")
                except AbortError:
                    reply = f"{text.getvalue()}\n\n{chat_config.stopped_marker}"
                    self.view.update_in_progress(entry_id, reply)
                    self.transcript.append("assistant", reply)
                except TransportError as exc:
                    self.view.update_in_progress(entry_id, f"Error: {exc}")  # not committed to history
                else:
                    self.transcript.append("assistant", text.getvalue())
                self.view.finalize(entry_id)
            finally:
                self.view.hide_generating_indicator()
                with self.lock:
                    self.state.is_generating = False
                    self.cancel_token = None
                self.view.update_status(self.state)
        self.generate_task_manager.submit(generate_task, env())

    def stop_generation(self) -> None:
        """Stop the ongoing generation, keeping the text received so far. No-op if not generating."""
        with self.lock:
            if self.cancel_token is None:
                logger.info("ChatSessionController.stop_generation: nothing to stop.")
                return
            logger.info("ChatSessionController.stop_generation: stopping.")
            self.cancel_token.cancelled = True
