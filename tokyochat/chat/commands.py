"""Slash commands typed into the chat input, e.g. `/load 2`.

Command output goes to the view as system notices. Neither the command nor its output
ever enters the chat history, so the model never sees them.
"""

__all__ = ["CommandInterpreter",
           "unknown_command_notice",
           "help_text"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from ..errors import TransportError

from . import chatutil
from . import config as chat_config

unknown_command_notice = "Unknown command. Type /help for a list of commands."

help_text = """Available commands:
/models              - List the models installed on the Ollama server
/loaded              - List the models currently loaded in memory
/load <number|name>  - Load a model, by its number in /models or by name
/clear               - Clear the chat display (the conversation history is kept)
/reset               - Clear the chat display and the conversation history
/history             - Show the conversation history sent to the model
/help                - Show this message"""

class CommandInterpreter:
    def __init__(self, controller):
        """Run slash commands against `controller`, a `tokyochat.chat.session.ChatSessionController`."""
        self.controller = controller
        self.commands = {"/models": self.list_models,
                         "/loaded": self.list_loaded,
                         "/load": self.load,
                         "/clear": self.clear,
                         "/reset": self.reset,
                         "/history": self.history,
                         "/help": self.help}

    @staticmethod
    def is_command(text: str) -> bool:
        return text.strip().startswith("/")

    def execute(self, text: str) -> None:
        """Run the command in `text`. The first word is the command name (case-insensitive), the rest is its argument."""
        parts = text.strip().split(maxsplit=1)
        name = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""
        handler = self.commands.get(name, None)
        if handler is None:
            logger.info(f"CommandInterpreter.execute: unknown command '{name}'")
            self.controller.notice(unknown_command_notice)
            return
        handler(arg)

    def list_models(self, arg: str) -> None:
        try:
            models = self.controller.registry.refresh_catalog()
        except TransportError as exc:
            self.controller.notice(f"Cannot fetch the model list from Ollama: {exc}")
            return
        if not models:
            self.controller.notice("No models installed. Use `ollama pull <model>` to install one.")
            return
        current_model = self.controller.state.current_model
        lines = ["Available models:"]
        for k, model in enumerate(models, start=1):
            marker = " [current]" if model.name == current_model else ""
            lines.append(f"{k}. {model.name} ({chatutil.format_size(model.size_bytes)}){marker}")
        lines.append("Use /load <number|name> to load a model.")
        self.controller.notice("\n".join(lines))

    def list_loaded(self, arg: str) -> None:
        try:
            models = self.controller.registry.refresh_loaded()
        except TransportError as exc:
            self.controller.notice(f"Cannot fetch the list of loaded models from Ollama: {exc}")
            return
        if not models:
            self.controller.notice("No models currently loaded.")
            return
        lines = ["Loaded models:"]
        lines.extend(f"- {model.name}" for model in models)
        self.controller.notice("\n".join(lines))

    def load(self, arg: str) -> None:
        if not arg:
            self.controller.notice("Usage: /load <number|name>")
            return
        self.controller.load_model(arg)

    def clear(self, arg: str) -> None:
        self.controller.view.clear()

    def reset(self, arg: str) -> None:
        if self.controller.state.is_generating:
            self.controller.notice("Cannot reset while a response is being generated. Stop it first.")
            return
        self.controller.view.clear()
        self.controller.transcript.clear()

    def history(self, arg: str) -> None:
        lines = self.controller.transcript.preview(chat_config.history_preview_chars)
        if not lines:
            self.controller.notice("History is empty.")
            return
        self.controller.notice("Conversation history:\n" + "\n".join(f"{k}. {line}" for k, line in enumerate(lines, start=1)))

    def help(self, arg: str) -> None:
        self.controller.notice(help_text)
