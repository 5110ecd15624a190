import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from datetime import datetime
from typing import Optional

from snapcam.core.config import Settings, settings, ensure_directories

LOG_FILE_NAME = "snapcam.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

class JSONFormatter(logging.Formatter):
    """One JSON object per record; `extra_data` keys are merged in."""
    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        extra = getattr(record, "extra_data", None)
        if extra:
            entry.update(extra)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)

def _attach(logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter, level):
    handler.setFormatter(formatter)
    handler.setLevel(level)
    logger.addHandler(handler)

def setup_logging(cfg: Optional[Settings] = None):
    """JSON lines to LOG_DIR/snapcam.log (rotated), plain text to stdout."""
    cfg = cfg or settings
    ensure_directories(cfg)
    level = logging.getLevelName(cfg.LOG_LEVEL.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    file_handler = RotatingFileHandler(cfg.LOG_DIR / LOG_FILE_NAME, maxBytes=LOG_MAX_BYTES,
                                       backupCount=LOG_BACKUP_COUNT)
    _attach(root_logger, file_handler, JSONFormatter(), level)
    _attach(root_logger, logging.StreamHandler(sys.stdout), logging.Formatter(CONSOLE_FORMAT), level)

    root_logger.info(f"Logging initialized at {cfg.LOG_LEVEL.upper()} ({cfg.LOG_DIR / LOG_FILE_NAME})")

def get_logger(name: str):
    return logging.getLogger(name)
