"""Terminal chat client for Tokyo Chat.

Useful for checking that Tokyo Chat can talk to your Ollama server, without starting the GUI.
Has GNU readline input history, and tab completion for the slash commands.
Press Ctrl+C while the model is writing to stop it; press Ctrl+D to exit.
"""

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import __version__

logger.info(f"Tokyo Chat minichat version {__version__} starting.")

logger.info("Loading libraries...")
from unpythonic import timer
with timer() as tim:
    import argparse
    import atexit
    import concurrent.futures
    import itertools
    import platform
    import shutil
    import sys
    import threading
    import time
    from typing import List, Optional

    from colorama import init as colorama_init

    from mcpyrate import colorizer

    from unpythonic.env import env

    from .chat import chatutil
    from .chat import config as chat_config
    from .chat.session import ChatSessionController
    from .chat.transcript import ChatView
    from .client import config as client_config
    from .client import ollamaclient
logger.info(f"Libraries loaded in {tim.dt:0.6g}s.")
print()

class TerminalChatView(ChatView):
    """Render the chat into the terminal. Streaming replies are printed incrementally.

    Markdown emphasis is applied one line at a time: each line is first printed as it streams in,
    and when it is complete, it is overwritten with its styled version (if it fits on one terminal row).
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.entry_ids = itertools.count()
        self.entries = {}  # entry ID -> env(text: printed so far, line: raw text of the current line, col: its start column)

    def append_entry(self, role: str, text: str):
        with self.lock:
            entry_id = next(self.entry_ids)
            if role == "user":  # the user's input is already on screen, thanks to `input`
                return entry_id
            heading = chatutil.format_message_heading(role, markup="ansi")
            if role == "system":
                print(f"{heading}{chatutil.format_markdown(text, markup='ansi')}")
                print()
                return entry_id
            print(heading, end="")
            self.entries[entry_id] = env(text="", line="", col=len(chatutil.format_message_heading(role, markup=None)))
            self._write(self.entries[entry_id], text)
            sys.stdout.flush()
            return entry_id

    def _restyle_line(self, entry: env) -> None:
        """Overwrite the current line of `entry` with its Markdown-styled version."""
        styled = chatutil.format_markdown(entry.line, markup="ansi")
        if styled == entry.line:
            return
        if entry.col + len(entry.line) >= shutil.get_terminal_size().columns:  # wrapped; the cursor can't get back to its start
            return
        print(f"\033[{entry.col + 1}G\033[K{styled}", end="")  # ANSI: cursor to column, erase to end of line

    def _write(self, entry: env, new_text: str) -> None:
        for k, piece in enumerate(new_text.split("\n")):
            if k > 0:  # a line was completed
                self._restyle_line(entry)
                print()
                entry.line = ""
                entry.col = 0
            print(piece, end="")
            entry.line += piece
        entry.text += new_text

    def update_in_progress(self, entry_id, text: str) -> None:
        with self.lock:
            entry = self.entries.get(entry_id, None)
            if entry is None:
                return
            if text.startswith(entry.text):  # streaming: print just the new part
                self._write(entry, text[len(entry.text):])
            else:  # replaced (e.g. by an error message)
                print()
                print(colorizer.colorize(text, colorizer.Style.BRIGHT, colorizer.Fore.RED), end="")
                entry.text = text
                entry.line = ""  # nothing to restyle
            sys.stdout.flush()

    def finalize(self, entry_id) -> None:
        with self.lock:
            entry = self.entries.pop(entry_id, None)
            if entry is not None:
                self._restyle_line(entry)
            print()
            print()
            sys.stdout.flush()

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()
            print("\033[2J\033[H", end="")  # ANSI: clear screen, cursor home
            sys.stdout.flush()

    def show_loading_overlay(self, model_name: str) -> None:
        with self.lock:
            print(colorizer.colorize(f"Loading '{model_name}'...", colorizer.Style.BRIGHT), end="")
            sys.stdout.flush()

    def update_loading_overlay(self, elapsed_text: str) -> None:
        with self.lock:
            print(f" {elapsed_text}", end="")
            sys.stdout.flush()

    def hide_loading_overlay(self) -> None:
        with self.lock:
            print()
            print()

    # The reply heading is already on screen while we wait for the first chunk, which is indicator enough.
    def show_generating_indicator(self) -> None:
        pass

    def hide_generating_indicator(self) -> None:
        pass

    def update_status(self, state) -> None:
        pass

def minimal_chat_client(backend_url: str) -> None:
    """Terminal chat client main loop."""

    history_file = chat_config.minichat_history_file  # user input history (readline)

    if ollamaclient.server_available(backend_url):
        print(colorizer.colorize(f"Connected to Ollama at {backend_url}", colorizer.Style.BRIGHT, colorizer.Fore.GREEN))
    else:
        print(colorizer.colorize(f"WARNING: Cannot connect to Ollama at {backend_url}.", colorizer.Style.BRIGHT, colorizer.Fore.YELLOW) + " Is the Ollama server running?")
    print()

    import readline  # noqa: F401, side effect: enable GNU readline in builtin input()
    print(colorizer.colorize(f"GNU readline available. Saving user inputs to '{str(history_file)}'.", colorizer.Style.BRIGHT))
    print(colorizer.colorize("Use up/down arrows to browse previous inputs. Enter to send. Ctrl+C to stop the AI. Ctrl+D to exit.", colorizer.Style.BRIGHT))
    print()
    try:
        readline.read_history_file(history_file)
    except FileNotFoundError:
        pass

    def persist() -> None:
        history_file.parent.mkdir(parents=True, exist_ok=True)
        readline.set_history_length(1000)
        readline.write_history_file(history_file)
    atexit.register(persist)

    commands = sorted(["/clear", "/help", "/history", "/load ", "/loaded", "/models", "/reset"])
    def get_completions(candidates: List[str], text: str) -> Optional[List[str]]:
        """Return the candidates that start with `text`, or `None` if there are none."""
        completions = [candidate for candidate in candidates if candidate.startswith(text)]
        return completions or None
    def completer(text: str, state: int) -> Optional[str]:  # completer for slash commands
        buffer_content = readline.get_line_buffer()
        if buffer_content.startswith("/load "):  # expecting a model name
            candidates = [model.name for model in controller.registry.catalog]
        elif buffer_content.startswith("/") and text.startswith("/"):
            candidates = commands
        else:
            return None
        completions = get_completions(candidates, text)
        if completions is None or state >= len(completions):
            return None
        return completions[state]
    readline.set_completer(completer)
    readline.set_completer_delims(" ")
    if platform.system() == "Darwin":  # MacOSX
        readline.parse_and_bind("bind ^I rl_complete")
    else:  # "Linux", "Windows"
        readline.parse_and_bind("tab: complete")

    view = TerminalChatView()
    controller = ChatSessionController(view=view,
                                       backend_url=backend_url,
                                       executor=concurrent.futures.ThreadPoolExecutor())

    def busy() -> bool:
        return (controller.state.is_generating or controller.state.is_loading or
                controller.task_manager.has_tasks() or controller.generate_task_manager.has_tasks())

    def wait_until_idle() -> None:
        while True:
            try:
                while busy():
                    time.sleep(0.05)
                return
            except KeyboardInterrupt:  # Ctrl+C: stop the AI, keep what it wrote so far
                if controller.state.is_loading:
                    print()
                    print(colorizer.colorize("A model load cannot be interrupted; please wait.", colorizer.Style.BRIGHT, colorizer.Fore.YELLOW))
                controller.stop_generation()

    try:
        controller.startup()
        while True:
            model = controller.state.current_model or "no model"
            input_prompt = f"{colorizer.colorize(f'({model})', colorizer.Style.DIM)} {chatutil.format_message_heading('user', markup='ansi')}"
            user_message_text = input(input_prompt)
            controller.handle_input(user_message_text)
            wait_until_idle()
    except (EOFError, KeyboardInterrupt):
        print()
        print(colorizer.colorize("Exiting chat.", colorizer.Style.BRIGHT))
        print()
    finally:
        controller.shutdown()

def main() -> None:
    parser = argparse.ArgumentParser(description="""Terminal chat client for Tokyo Chat. You can use this for testing that Tokyo Chat can connect to your Ollama server.""",
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('-v', '--version', action='version', version=('%(prog)s ' + __version__))
    parser.add_argument(dest="backend_url", nargs="?", default=client_config.ollama_api_url, type=str, metavar="url", help=f"where to access the Ollama API (default, currently '{client_config.ollama_api_url}', is set in `tokyochat/client/config.py`)")
    opts = parser.parse_args()

    colorama_init()
    minimal_chat_client(opts.backend_url)

if __name__ == "__main__":
    main()
