"""
This module contains the default configuration settings for forkpool.
It defines supervisor timings, state storage locations and logging options.
Every value can be overridden from the environment (or a .env file) and,
for the names listed in MODIFIABLE_SETTINGS, from the overrides JSON file.
"""

import os
import pathlib
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


def _default_state_dir() -> pathlib.Path:
    """Prefers tmpfs for the fast state backend when it is writable."""
    shm = pathlib.Path("/dev/shm")
    if shm.is_dir() and os.access(shm, os.W_OK):
        return shm
    return pathlib.Path(tempfile.gettempdir())


#* --- Core Paths ---
TEMP_DIR = pathlib.Path(tempfile.gettempdir())
STATE_DIR = pathlib.Path(os.getenv("FORKPOOL_STATE_DIR", "") or _default_state_dir())
STATE_FILE_DIR = pathlib.Path(os.getenv("FORKPOOL_STATE_FILE_DIR", "") or TEMP_DIR)
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("FORKPOOL_OVERRIDES_PATH", "forkpool.overrides.json"))

#* --- State Storage ---
STATE_DB_PATH = STATE_DIR / "forkpool-state.db"
STATE_DB_TIMEOUT = 10  # seconds to wait on a locked database
STATE_KEY_PREFIX = "worker"

#* --- Supervisor Settings ---
POOL_SIZE = int(os.getenv("FORKPOOL_POOL_SIZE", "1"))
POLL_INTERVAL_MS = int(os.getenv("FORKPOOL_POLL_INTERVAL_MS", "200"))
GRACEFUL_SHUTDOWN_TIMEOUT = int(os.getenv("FORKPOOL_GRACEFUL_SHUTDOWN_TIMEOUT", "5"))  # seconds before SIGKILL
WORKER_TIME_LIMIT = int(os.getenv("FORKPOOL_WORKER_TIME_LIMIT", "0")) or None  # seconds, None is unlimited
KILL_REAP_TIMEOUT = 5  # seconds to wait for a SIGKILLed worker to be reaped

#* --- Logging ---
LOG_DB_ENABLED = _env_flag("FORKPOOL_LOG_DB_ENABLED")
LOG_DB_PATH = pathlib.Path(os.getenv("FORKPOOL_LOG_DB_PATH", "") or TEMP_DIR / "forkpool-logs.db")
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10

#* --- MODIFIABLE SETTINGS (Changeable via the overrides JSON file) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "POOL_SIZE", "POLL_INTERVAL_MS", "GRACEFUL_SHUTDOWN_TIMEOUT", "WORKER_TIME_LIMIT",
    # Logging
    "LOG_DB_ENABLED", "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
}
