"""Configuration for the Tokyo Chat session layer and its two front-ends (GUI app, terminal minichat)."""

from unpythonic.env import env

from .. import config as global_config

chat_userdata_dir = global_config.userdata_dir / "chat"

# --------------------------------------------------------------------------------
# Session behavior

# How often to re-fetch the model catalog and the list of loaded models in the background, in seconds.
registry_refresh_interval = 10.0

# How often the loading overlay's elapsed-time display updates while a model loads, in seconds.
loading_timer_interval = 1.0

# `/history`: how many characters of each stored message to show.
history_preview_chars = 50

# Appended to a partial reply when the user stops the generation.
stopped_marker = "[Generation stopped by user]"

welcome_message = """Welcome to Tokyo Chat!

- Type your message and press Enter or the Send button to send
- Markdown formatting is supported
- Try using **bold**, *italic*, or `code`
- Type /help for a list of commands"""

# --------------------------------------------------------------------------------
# Terminal client (minichat)

minichat_history_file = chat_userdata_dir / "history"  # user input history (readline)

# --------------------------------------------------------------------------------
# GUI app

gui_config = env(  # ----------------------------------------
                 # GUI element sizes, in pixels.
                 main_window_w=700, main_window_h=600,
                 chat_controls_h=42,
                 status_h=24,
                 send_button_w=60,
                 stop_button_w=60,
                 chat_text_wrap=620,
                 always_on_top=True,
                 # ----------------------------------------
                 # Fonts for the Markdown renderer (TTF). If any of these is missing, chat text is shown as plain text.
                 # The defaults are the DejaVu fonts that come with most Linux distributions.
                 font_size=18,
                 font_regular="/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
                 font_bold="/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
                 font_italic="/usr/share/fonts/truetype/dejavu/DejaVuSans-Oblique.ttf",
                 font_italic_bold="/usr/share/fonts/truetype/dejavu/DejaVuSans-BoldOblique.ttf",
                 # ----------------------------------------
                 # Chat
                 chat_color_user=(0, 170, 255),       # "USER>" label
                 chat_color_system=(255, 85, 85),     # "SYSTEM>" label (AI and notices)
                 chat_color_timestamp=(128, 128, 128),
                 chat_color_text=(220, 220, 220),
                 chat_color_notice=(198, 198, 198),
                 loading_overlay_w=320, loading_overlay_h=110,
                 )
