from pathlib import Path

# Session storage
DEFAULT_SESSIONS_ROOT = Path(".council/sessions")
SESSION_FILENAME = "session.json"
SESSION_TEMP_SUFFIX = ".json.tmp"

# Config
CONFIG_DIRNAME = ".council"
CONFIG_FILENAME = "config.yml"

# Workflow
MIN_WITNESSES = 2
MIN_SYNTHESIS_SOURCES = 2
DEFAULT_THREAD_ID = "default-thread"
DEFAULT_SINGLE_CALL_TIMEOUT = 90.0  # seconds

# Rate limits
DEFAULT_RETRY_AFTER_MS = 60_000
