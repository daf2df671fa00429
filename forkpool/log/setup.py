import logging
import sys
from pathlib import Path

from forkpool.config import effective_settings as config
from forkpool.log.handler import SQLiteHandler

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] [pid %(process)d] - %(message)s'


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Configures the root logger for the supervisor and its workers.
    This sets up handlers for console and, when enabled, SQLite,
    clearing any previously configured handlers to prevent duplication.

    Workers inherit the configuration through fork(), so calling this once
    in the supervisor process before `Supervisor.run()` is enough.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)

    # --- SQLite Handler (conditional) ---
    if config.LOG_DB_ENABLED:
        try:
            db_path = Path(config.LOG_DB_PATH)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            sqlite_handler = SQLiteHandler(
                db_path=db_path,
                buffer_size=config.LOG_BUFFER_SIZE,
                flush_interval=config.LOG_BUFFER_FLUSH_INTERVAL,
            )
            sqlite_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(sqlite_handler)
        except Exception as e:
            root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")
