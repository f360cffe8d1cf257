"""Chat history store, and the view interface that the session controller renders into.

The history (`Transcript`) is what gets sent to the model as context on each turn.
It only ever contains plain user messages and assistant replies. Notices and command
output go to the view only (see `ChatView`), so the model never sees them.
"""

__all__ = ["Transcript",
           "ChatView"]

import copy
import threading
from typing import Dict, List

from . import chatutil
from . import config as chat_config

class Transcript:
    def __init__(self):
        """Append-only, ordered chat history, in OpenAI chat-message format.

        Thread-safe, since background tasks append to it.
        """
        self.lock = threading.RLock()
        self._messages = []

    def append(self, role: str, content: str) -> None:
        """Append a message. `role` must be "user" or "assistant"."""
        message = chatutil.create_chat_message(role, content)
        with self.lock:
            self._messages.append(message)

    def messages(self) -> List[Dict]:
        """Return a copy of the history, suitable for sending to the model."""
        with self.lock:
            return copy.deepcopy(self._messages)

    def clear(self) -> None:
        with self.lock:
            self._messages.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._messages)

    def preview(self, max_chars: int = chat_config.history_preview_chars) -> List[str]:
        """One line per stored message, e.g. 'user: What is the airspeed velocity of...'."""
        with self.lock:
            return [f"{message['role']}: {chatutil.format_preview(message['content'], max_chars)}"
                    for message in self._messages]

class ChatView:
    """What the session controller needs from a front-end.

    The GUI app (`tokyochat.app`) and the terminal client (`tokyochat.minichat`) both implement this.
    The controller calls these from background threads, so implementations must be thread-safe
    w.r.t. their own toolkit.

    Roles on the view are "user", "assistant", and "system"; the last one is for notices.
    """

    def append_entry(self, role: str, text: str):
        """Add a new message to the rendered transcript. Return an opaque entry ID."""
        raise NotImplementedError

    def update_in_progress(self, entry_id, text: str) -> None:
        """Replace the whole text of a message that is still being streamed."""
        raise NotImplementedError

    def finalize(self, entry_id) -> None:
        """Mark a streamed message as complete. Its text will not change any more."""
        raise NotImplementedError

    def clear(self) -> None:
        """Remove all rendered messages. Does not touch the history."""
        raise NotImplementedError

    def show_loading_overlay(self, model_name: str) -> None:
        raise NotImplementedError

    def update_loading_overlay(self, elapsed_text: str) -> None:
        raise NotImplementedError

    def hide_loading_overlay(self) -> None:
        raise NotImplementedError

    def show_generating_indicator(self) -> None:
        raise NotImplementedError

    def hide_generating_indicator(self) -> None:
        raise NotImplementedError

    def update_status(self, state) -> None:
        """Redraw status information. `state` is the controller's `SessionState`."""
        raise NotImplementedError
