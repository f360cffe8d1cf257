#!/usr/bin/env python
"""Tokyo Chat GUI: a small always-on-top chat window for a local Ollama server."""

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import __version__

logger.info(f"Tokyo Chat version {__version__} starting.")

logger.info("Loading libraries...")
from unpythonic import timer
with timer() as tim:
    import argparse
    import concurrent.futures
    import os
    import threading
    from typing import Union
    import uuid

    import dearpygui.dearpygui as dpg

    import DearPyGui_Markdown as dpg_markdown  # https://github.com/IvanNazaruk/DearPyGui-Markdown

    from mcpyrate import colorizer

    from unpythonic.env import env

    from .chat import chatutil
    from .chat import config as chat_config
    from .chat.session import ChatSessionController
    from .chat.transcript import ChatView
    from .client import config as client_config
    from .client import ollamaclient

    gui_config = chat_config.gui_config  # shorthand, this is used a lot
logger.info(f"Libraries loaded in {tim.dt:0.6g}s.")

# --------------------------------------------------------------------------------
# Chat view

class DPGChatView(ChatView):
    def __init__(self, gui_parent: Union[str, int], markdown: bool = True):
        """Render the chat into a DPG child window `gui_parent`.

        Each message is a group: a heading line ('[12:34:56] USER>') and a body group holding the text.

        `markdown`: If `True`, render message text as Markdown, using `DearPyGui_Markdown`.
                    This needs the Markdown fonts to be set up; see `setup_markdown_fonts`.
                    If `False`, show the text as-is.
        """
        self.gui_parent = gui_parent
        self.markdown = markdown
        self.lock = threading.RLock()
        self.entries = {}  # entry ID -> env(body: DPG group of the message body, color: text color)
        self.gui_updates_safe = True  # At app shutdown, they aren't.

    def scroll_to_end(self, max_wait_frames: int = 5) -> None:
        """Scroll the chat panel to the end. Must not be called from the main thread (it waits for frames)."""
        max_y_scroll = dpg.get_y_scroll_max(self.gui_parent)
        for _ in range(max_wait_frames):
            dpg.split_frame()
            new_max_y_scroll = dpg.get_y_scroll_max(self.gui_parent)
            if new_max_y_scroll == max_y_scroll:  # layout settled
                break
            max_y_scroll = new_max_y_scroll
        dpg.set_y_scroll(self.gui_parent, max_y_scroll)

    def _render_body(self, entry: env, text: str) -> None:
        """Draw `text` into the body group of `entry`, replacing what was there."""
        dpg.delete_item(entry.body, children_only=True)
        text = text.strip()
        if not text:  # don't bother if text is blank
            return
        if self.markdown:
            dpg_markdown.add_text(f'<font color="{entry.color}">{text}</font>',
                                  wrap=gui_config.chat_text_wrap,
                                  parent=entry.body)
        else:
            dpg.add_text(text, wrap=gui_config.chat_text_wrap, color=entry.color, parent=entry.body)

    def append_entry(self, role: str, text: str):
        entry_id = str(uuid.uuid4())
        if not self.gui_updates_safe:
            return entry_id
        label_color = gui_config.chat_color_user if role == "user" else gui_config.chat_color_system
        text_color = gui_config.chat_color_notice if role == "system" else gui_config.chat_color_text
        with self.lock:
            with dpg.group(parent=self.gui_parent, tag=f"chat_entry_{entry_id}"):
                with dpg.group(horizontal=True):
                    dpg.add_text(chatutil.format_timestamp(), color=gui_config.chat_color_timestamp)
                    dpg.add_text(chatutil.format_sender(role, markup=None), color=label_color)
                body = dpg.add_group()
                dpg.add_spacer(height=4)
            entry = env(body=body, color=text_color)
            self.entries[entry_id] = entry
            self._render_body(entry, text)
        self.scroll_to_end()
        return entry_id

    def update_in_progress(self, entry_id, text: str) -> None:
        if not self.gui_updates_safe:
            return
        with self.lock:
            entry = self.entries.get(entry_id, None)
            if entry is None:  # cleared by `/clear` while streaming
                return
            self._render_body(entry, text)
        self.scroll_to_end(max_wait_frames=1)

    def finalize(self, entry_id) -> None:
        with self.lock:
            self.entries.pop(entry_id, None)

    def clear(self) -> None:
        if not self.gui_updates_safe:
            return
        with self.lock:
            self.entries.clear()
            dpg.delete_item(self.gui_parent, children_only=True)

    def show_loading_overlay(self, model_name: str) -> None:
        if not self.gui_updates_safe:
            return
        dpg.set_value("loading_overlay_model_text", f"Loading model '{model_name}'...")  # tag
        dpg.set_value("loading_overlay_elapsed_text", "Elapsed: 0:00")  # tag
        w, h = dpg.get_viewport_client_width(), dpg.get_viewport_client_height()
        dpg.set_item_pos("loading_overlay_window", [max(0, (w - gui_config.loading_overlay_w) // 2),  # tag
                                                    max(0, (h - gui_config.loading_overlay_h) // 2)])
        dpg.configure_item("loading_overlay_window", show=True)  # tag

    def update_loading_overlay(self, elapsed_text: str) -> None:
        if self.gui_updates_safe:
            dpg.set_value("loading_overlay_elapsed_text", f"Elapsed: {elapsed_text}")  # tag

    def hide_loading_overlay(self) -> None:
        if self.gui_updates_safe:
            dpg.configure_item("loading_overlay_window", show=False)  # tag

    def show_generating_indicator(self) -> None:
        if self.gui_updates_safe:
            dpg.show_item("generating_indicator_text")  # tag

    def hide_generating_indicator(self) -> None:
        if self.gui_updates_safe:
            dpg.hide_item("generating_indicator_text")  # tag

    def update_status(self, state) -> None:
        if not self.gui_updates_safe:
            return
        model = state.current_model if state.current_model is not None else "none"
        dpg.set_value("status_text", f"Model: {model}")  # tag
        if state.is_generating:
            dpg.enable_item("stop_generation_button")  # tag
        else:
            dpg.disable_item("stop_generation_button")  # tag
        if state.is_loading or state.is_generating:
            dpg.disable_item("send_button")  # tag
        else:
            dpg.enable_item("send_button")  # tag

# --------------------------------------------------------------------------------
# Fonts

def markdown_add_font_callback(file, size: int | float, parent=0, **kwargs) -> int:  # IMPORTANT: parameter names as in `dpg_markdown`, arguments are sent in by name.
    """dpg_markdown callback to load a font. Called whenever a new font size or family is needed."""
    if not isinstance(size, (int, float)):
        raise ValueError(f"markdown_add_font_callback: `size`: expected `int` or `float`, got `{type(size)}` with value `{size}`")
    with dpg.font(file, size, parent=parent, **kwargs) as font:
        dpg.add_font_range_hint(dpg.mvFontRangeHint_Default)
    return font

def setup_markdown_fonts() -> bool:
    """Set up the fonts for the Markdown renderer. Must be called after `dpg.create_context`.

    Returns whether the fonts were found. If not, the chat should be rendered as plain text.
    """
    font_files = [gui_config.font_regular, gui_config.font_bold, gui_config.font_italic, gui_config.font_italic_bold]
    missing = [path for path in font_files if not os.path.isfile(path)]
    if missing:
        logger.warning(f"setup_markdown_fonts: font files not found: {missing}. Markdown rendering disabled; showing chat text as plain text.")
        return False

    with dpg.font_registry() as the_font_registry:
        with dpg.font(gui_config.font_regular, gui_config.font_size) as default_font:
            dpg.add_font_range_hint(dpg.mvFontRangeHint_Default)
        dpg.bind_font(default_font)

    dpg_markdown.set_font_registry(the_font_registry)
    dpg_markdown.set_add_font_function(markdown_add_font_callback)
    dpg_markdown.set_font(font_size=gui_config.font_size,
                          default=gui_config.font_regular,
                          bold=gui_config.font_bold,
                          italic=gui_config.font_italic,
                          italic_bold=gui_config.font_italic_bold)
    return True

# --------------------------------------------------------------------------------
# App

def run(backend_url: str) -> None:
    """Set up the GUI, run the render loop until the window is closed, and shut down."""
    bg = concurrent.futures.ThreadPoolExecutor()

    if ollamaclient.server_available(backend_url):
        print(colorizer.colorize(f"Connected to Ollama at {backend_url}", colorizer.Style.BRIGHT, colorizer.Fore.GREEN))
    else:
        print(colorizer.colorize(f"WARNING: Cannot connect to Ollama at {backend_url}.", colorizer.Style.BRIGHT, colorizer.Fore.YELLOW) + " Is the Ollama server running?")
        logger.warning(f"run: Cannot connect to Ollama at '{backend_url}'. Starting anyway; commands will report the failure.")
    print()

    logger.info("DPG bootup...")
    with timer() as tim:
        dpg.create_context()
        markdown = setup_markdown_fonts()
        dpg.create_viewport(title=f"Tokyo Chat {__version__}",
                            width=gui_config.main_window_w,
                            height=gui_config.main_window_h,
                            always_on_top=gui_config.always_on_top)  # OS window (DPG "viewport")
        dpg.setup_dearpygui()
    logger.info(f"    Done in {tim.dt:0.6g}s.")

    controller = None  # initialized below, after the GUI exists

    def send_message_callback() -> None:
        text = dpg.get_value("chat_field")  # tag
        dpg.set_value("chat_field", "")  # tag
        controller.submit_input(text)  # the view waits for frames when it scrolls, so not in the GUI callback thread
        dpg.focus_item("chat_field")  # tag

    def stop_generation_callback() -> None:
        dpg.disable_item("stop_generation_button")  # tag
        controller.stop_generation()

    logger.info("Initial GUI setup...")
    with timer() as tim:
        with dpg.window(tag="main_window", label="Tokyo Chat main window", no_scrollbar=True) as main_window:
            chat_panel_h = gui_config.main_window_h - gui_config.chat_controls_h - gui_config.status_h - 64
            chat_panel_widget = dpg.add_child_window(tag="chat_panel",
                                                     width=-1,
                                                     height=chat_panel_h)
            with dpg.group(horizontal=True):
                dpg.add_text("Model: none", tag="status_text")
                dpg.add_text("Thinking...", tag="generating_indicator_text", show=False, color=gui_config.chat_color_timestamp)
            with dpg.group(horizontal=True):
                # Enter sends; Ctrl+Enter inserts a newline.
                dpg.add_input_text(tag="chat_field",
                                   default_value="",
                                   hint="Type your message or /help",
                                   multiline=True,
                                   ctrl_enter_for_new_line=True,
                                   on_enter=True,
                                   callback=send_message_callback,
                                   width=-(gui_config.send_button_w + gui_config.stop_button_w + 16),
                                   height=gui_config.chat_controls_h)
                dpg.add_button(label="Send", tag="send_button", callback=send_message_callback,
                               width=gui_config.send_button_w, height=gui_config.chat_controls_h)
                dpg.add_button(label="Stop", tag="stop_generation_button", callback=stop_generation_callback,
                               width=gui_config.stop_button_w, height=gui_config.chat_controls_h, enabled=False)

        with dpg.window(tag="loading_overlay_window", label="Loading model",
                        modal=True, show=False, no_close=True, no_collapse=True,
                        width=gui_config.loading_overlay_w, height=gui_config.loading_overlay_h):
            dpg.add_text("", tag="loading_overlay_model_text")
            dpg.add_text("Elapsed: 0:00", tag="loading_overlay_elapsed_text")
    logger.info(f"    Done in {tim.dt:0.6g}s.")

    view = DPGChatView(gui_parent=chat_panel_widget, markdown=markdown)
    controller = ChatSessionController(view=view,
                                       backend_url=backend_url,
                                       executor=bg)

    def gui_shutdown() -> None:
        """App exit: gracefully shut down parts that access DPG."""
        logger.info("gui_shutdown: entered")
        view.gui_updates_safe = False
        controller.shutdown()
        logger.info("gui_shutdown: done")
    dpg.set_exit_callback(gui_shutdown)

    dpg.set_primary_window(main_window, True)  # Make this DPG "window" occupy the whole OS window (DPG "viewport").
    dpg.show_viewport()

    # The startup fetches the model lists, so do it in the background once the GUI is up.
    def _startup(sender, app_data) -> None:
        controller.task_manager.submit(lambda task_env: controller.startup(), env())
        dpg.focus_item("chat_field")  # tag
    dpg.set_frame_callback(2, _startup)

    logger.info("App render loop starting.")
    try:
        while dpg.is_dearpygui_running():
            dpg.render_dearpygui_frame()
    except KeyboardInterrupt:
        pass  # cleanup will be handled by our DPG exit handler
    logger.info("App render loop exited.")

    dpg.destroy_context()

def main() -> None:
    parser = argparse.ArgumentParser(description="""Tokyo Chat: chat with the models of a local Ollama server.""",
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('-v', '--version', action='version', version=('%(prog)s ' + __version__))
    parser.add_argument(dest="backend_url", nargs="?", default=client_config.ollama_api_url, type=str, metavar="url", help=f"where to access the Ollama API (default, currently '{client_config.ollama_api_url}', is set in `tokyochat/client/config.py`)")
    opts = parser.parse_args()

    run(opts.backend_url)

if __name__ == "__main__":
    main()
