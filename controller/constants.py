from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("controller.relay")
APP_VERSION = "0.1.0"

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

DEFAULT_RELAY_URL = "http://localhost:3000"
DEFAULT_LISTENER_PORT = 54321
DEFAULT_LISTENER_URL = f"http://localhost:{DEFAULT_LISTENER_PORT}"
DEFAULT_HTTP_TIMEOUT = 5.0
DEFAULT_TOKEN_STORE_PATH = Path.home() / ".spotify-controller" / "tokens.json"
