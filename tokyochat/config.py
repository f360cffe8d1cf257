"""Global configuration for Tokyo Chat.

Some components also have their own configurations, which see:

  - client.config
  - chat.config
"""

import pathlib

# Used for various things. E.g. the terminal client's input history goes here.
userdata_dir = "~/.config/tokyochat/"

# Convert to an absolute path, just once here.
userdata_dir = pathlib.Path(userdata_dir).expanduser().resolve()
