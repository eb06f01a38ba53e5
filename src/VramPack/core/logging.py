"""Console and file logging for the ``vram_pack`` logger hierarchy."""

import logging
import logging.handlers
import os
import threading

PACKAGE_LOGGER = "vram_pack"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Pack logs are mostly one line per artifact; a few MB covers many builds.
FILE_MAX_BYTES = 5 * 1024 * 1024
FILE_BACKUPS = 2

_lock = threading.Lock()


def _level_of(level) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def _file_handler(path: str) -> logging.Handler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=FILE_MAX_BYTES, backupCount=FILE_BACKUPS, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(level="INFO", log_file: str = None, force: bool = False):
    """Send pipeline logs to the console and, optionally, a rotating file.

    The CLI owns its process and passes ``force`` to replace the root
    handlers. A host application that already configured logging keeps its
    handlers: only the ``vram_pack`` logger level is set, and the log file
    is attached to that logger once per path.
    """
    numeric = _level_of(level)
    with _lock:
        root = logging.getLogger()
        if force or not root.handlers:
            handlers = [logging.StreamHandler()]
            if log_file:
                handlers.append(_file_handler(log_file))
            logging.basicConfig(level=numeric, format=LOG_FORMAT,
                                handlers=handlers, force=True)
            return

        package = logging.getLogger(PACKAGE_LOGGER)
        package.setLevel(numeric)
        if not log_file:
            return
        target = os.path.abspath(log_file)
        if any(getattr(h, "baseFilename", None) == target for h in package.handlers):
            return
        package.addHandler(_file_handler(target))
        package.info("Logging to %s", target)
