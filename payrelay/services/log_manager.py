"""Access log with size-based rotation.

One line per webhook outcome:

    [2024-01-01 12:00:00] INFO Payment 8MC585209K746392H processed successfully

Before each write the handler checks the file size. Once it exceeds
max_bytes the file is renamed to ``<name>.<YYYY-MM-DD-HH-MM-SS>.bak`` and the
entry goes into a fresh file. Check, rename and write all happen under the
handler lock, so concurrent requests can't rotate twice or write into the
file that is being moved aside.
"""

import logging
import os
from datetime import datetime
from logging.handlers import BaseRotatingHandler

logger = logging.getLogger(__name__)

ENTRY_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_SUFFIX_FORMAT = "%Y-%m-%d-%H-%M-%S"


class TimestampedRotatingFileHandler(BaseRotatingHandler):
    """Rotate to a timestamped .bak file when the log grows past max_bytes."""

    def __init__(self, filename, max_bytes, encoding="utf-8", clock=datetime.now):
        super().__init__(filename, mode="a", encoding=encoding, delay=True)
        self.max_bytes = max_bytes
        self.clock = clock

    def shouldRollover(self, record):
        if self.max_bytes <= 0 or not os.path.exists(self.baseFilename):
            return False
        return os.path.getsize(self.baseFilename) > self.max_bytes

    def backup_name(self):
        base = f"{self.baseFilename}.{self.clock().strftime(BACKUP_SUFFIX_FORMAT)}"
        name = f"{base}.bak"
        n = 1
        while os.path.exists(name):
            name = f"{base}.{n}.bak"
            n += 1
        return name

    def doRollover(self):
        if self.stream:
            self.stream.close()
            self.stream = None
        backup = self.backup_name()
        os.replace(self.baseFilename, backup)
        logger.info(f"Rotated access log to {backup}")
        # Stream is reopened lazily by FileHandler.emit


class LogManager:
    """Owns the access log file. append() is safe to call from any thread."""

    def __init__(self, path, max_bytes=5 * 1024 * 1024, clock=datetime.now):
        self.path = path
        self.handler = TimestampedRotatingFileHandler(path, max_bytes, clock=clock)
        self.handler.setFormatter(logging.Formatter(ENTRY_FORMAT, datefmt=DATE_FORMAT))

    @classmethod
    def from_config(cls, app_config, log_dir):
        path = os.path.join(log_dir, app_config.get("LOG_FILENAME", "cppp.log"))
        return cls(path, max_bytes=app_config.get("LOG_MAX_BYTES", 5 * 1024 * 1024))

    def append(self, message, level=logging.INFO):
        """Write one entry, rotating first if the file is over the limit."""
        record = logging.LogRecord(
            name="payrelay.access",
            level=level,
            pathname=__file__,
            lineno=0,
            msg=message,
            args=None,
            exc_info=None,
        )
        self.handler.handle(record)

    def close(self):
        self.handler.close()


def resolve_log_dir(app):
    """Return a writable log directory, creating it if needed.

    Falls back to the instance folder when LOG_DIR can't be created.
    """
    log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        logger.warning(f"Cannot create log directory {log_dir}: {e}")
        log_dir = app.instance_path
        os.makedirs(log_dir, exist_ok=True)
    return log_dir
