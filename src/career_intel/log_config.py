"""Root logger setup for CLI processes."""

from __future__ import annotations

import logging
import logging.handlers

from career_intel.config import LoggingSettings

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5

_HANDLER_MARKER = "_career_intel_handler"


def configure_logging(settings: LoggingSettings) -> None:
    """Attach a stderr handler (and a rotating file handler if configured) to the root logger.

    Repeated calls replace the handlers installed by earlier calls.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                settings.file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUP_COUNT,
                encoding="utf-8",
            ),
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    root.setLevel(settings.level)
    # httpx logs every request line at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
