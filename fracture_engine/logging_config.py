# logging_config.py

import logging
import os

DEFAULT_LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
DEFAULT_LOG_FILE = os.environ.get("FRACTURE_LOG_FILE")
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-tick chatter; raised above the root level unless asked for
NOISY_LOGGERS = (
    "fracture_engine.scoring.composite",
    "fracture_engine.core.event_bus",
)


def setup_logging(log_level=DEFAULT_LOG_LEVEL, log_file=DEFAULT_LOG_FILE, tick_detail=False):
    """
    Configure root logging for an engine process

    Args:
        log_level: Root level name or number (LOG_LEVEL env default)
        log_file: Optional file that receives the same records (FRACTURE_LOG_FILE env default)
        tick_detail: Keep per-tick scoring and event logs at the root level
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers
    )

    if not tick_detail:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(logging.INFO, logging.getLogger().level))
    logging.getLogger("concurrent.futures").setLevel(logging.WARNING)

    logging.getLogger("fracture_engine").info(
        f"Logging initialized at level {log_level}"
        + (f", also writing to {log_file}" if log_file else "")
    )
