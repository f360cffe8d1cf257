"""Unit tests for tokyochat.chat.commands."""

import pytest

from tokyochat.chat.commands import CommandInterpreter, help_text, unknown_command_notice
from tokyochat.errors import TransportError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def commands(controller):
    return controller.commands


@pytest.fixture
def chatted(controller):
    """A controller with a model loaded and one completed exchange in the history."""
    controller.load_model("1")
    controller.send_message("hi")
    assert len(controller.transcript) == 2
    return controller


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestIsCommand:
    def test_slash_prefix(self):
        assert CommandInterpreter.is_command("/models")
        assert CommandInterpreter.is_command("  /help")

    def test_plain_text(self):
        assert not CommandInterpreter.is_command("hello")
        assert not CommandInterpreter.is_command("hello /models")


class TestDispatch:
    def test_unknown_command(self, commands, view):
        commands.execute("/frobnicate")
        assert view.notices() == [unknown_command_notice]

    def test_case_insensitive(self, commands, view):
        commands.execute("/HELP")
        assert view.notices() == [help_text]

    def test_help_lists_all_commands(self, commands, view):
        commands.execute("/help")
        for name in ("/models", "/loaded", "/load", "/clear", "/reset", "/history", "/help"):
            assert name in view.notices()[0]


# ---------------------------------------------------------------------------
# Model commands
# ---------------------------------------------------------------------------

class TestModels:
    def test_numbered_with_sizes(self, commands, view, fake_ollama):
        fake_ollama.catalog[0].size_bytes = 1536
        commands.execute("/models")
        text = view.notices()[0]
        assert "1. llama3:8b (1.50 KB)" in text
        assert "2. mistral:7b" in text
        assert "3. phi3:mini" in text

    def test_marks_current_model(self, controller, commands, view):
        controller.load_model("2")
        commands.execute("/models")
        assert "2. mistral:7b (3.83 GB) [current]" in view.notices()[-1]

    def test_refreshes_catalog(self, commands, fake_ollama):
        before = fake_ollama.list_models_calls
        commands.execute("/models")
        assert fake_ollama.list_models_calls == before + 1

    def test_empty_catalog(self, commands, view, fake_ollama):
        fake_ollama.catalog = []
        commands.execute("/models")
        assert "No models installed" in view.notices()[0]

    def test_server_down(self, commands, view, fake_ollama):
        fake_ollama.list_models_error = TransportError("connection refused")
        commands.execute("/models")
        assert "connection refused" in view.notices()[0]


class TestLoaded:
    def test_nothing_loaded(self, commands, view):
        commands.execute("/loaded")
        assert view.notices() == ["No models currently loaded."]

    def test_lists_loaded(self, controller, commands, view):
        controller.load_model("3")
        commands.execute("/loaded")
        assert "- phi3:mini" in view.notices()[-1]


class TestLoad:
    def test_missing_argument(self, commands, view, fake_ollama):
        commands.execute("/load")
        assert view.notices() == ["Usage: /load <number|name>"]
        assert fake_ollama.warm_load_calls == []

    def test_by_number(self, controller, commands, fake_ollama):
        commands.execute("/load 3")
        assert fake_ollama.warm_load_calls == ["phi3:mini"]
        assert controller.state.current_model == "phi3:mini"

    def test_by_name(self, controller, commands):
        commands.execute("/LOAD mistral:7b")
        assert controller.state.current_model == "mistral:7b"


# ---------------------------------------------------------------------------
# Transcript commands
# ---------------------------------------------------------------------------

class TestClearAndReset:
    def test_clear_keeps_history(self, chatted, view):
        chatted.commands.execute("/clear")
        assert view.entries == []
        assert len(chatted.transcript) == 2

    def test_reset_empties_both(self, chatted, view):
        chatted.commands.execute("/reset")
        assert view.entries == []
        assert len(chatted.transcript) == 0

    def test_reset_refused_while_generating(self, chatted, view):
        view.on_update = lambda entry_id, text: (chatted.commands.execute("/reset") if text == "Hel" else None)
        chatted.send_message("again")
        assert len(chatted.transcript) == 4
        assert any("Cannot reset" in text for text in view.notices())


class TestHistory:
    def test_empty(self, commands, view):
        commands.execute("/history")
        assert view.notices() == ["History is empty."]

    def test_previews_truncated(self, controller, commands, view):
        long_message = "x" * 80
        controller.send_message(long_message)  # no model loaded; the message is still stored
        commands.execute("/history")
        text = view.notices()[-1]
        assert f"1. user: {'x' * 50}..." in text
        assert "x" * 51 not in text

    def test_commands_not_in_history(self, chatted, view):
        chatted.handle_input("/models")
        chatted.commands.execute("/history")
        text = view.notices()[-1]
        assert "/models" not in text
        assert "1. user: hi" in text
        assert "2. assistant: Hello" in text
