"""
Shared constants used across the platform.
"""

# Data paths
DEFAULT_DATA_DIR = "~/.local/share/melodystream"
DATABASE_FILENAME = "melodystream.db"
DEFAULT_DATABASE_PATH = DEFAULT_DATA_DIR + "/" + DATABASE_FILENAME

# Server settings
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5005
DEFAULT_API_URL = "http://localhost:5005"
DEFAULT_SECRET_KEY = "change-me"

# Network Settings
DEFAULT_NETWORK_TIMEOUT = 30  # seconds

# Player defaults
DEFAULT_VOLUME = 70
MIN_VOLUME = 0
MAX_VOLUME = 100
VOLUME_STEP = 5

# Socket.IO events emitted after mutations
EVENT_SONGS_UPDATED = "songs_updated"
EVENT_PLAYLISTS_UPDATED = "playlists_updated"
EVENT_LIKED_SONGS_UPDATED = "liked_songs_updated"

# UI Constants
DEFAULT_PROGRESS_BAR_WIDTH = 50  # characters
