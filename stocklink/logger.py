import logging
import sys
from logging.handlers import RotatingFileHandler
from . import settings

# Third-party loggers that flood DEBUG output with per-request lines.
NOISY_LOGGERS = ("urllib3", "requests")


def setup_logger(name: str = "stocklink", log_level: int | str = None) -> logging.Logger:
    """
    Configures the stocklink logger tree once per process.

    The console shows `log_level` (LOG_LEVEL from settings by default) without
    decoration; the rotating file under LOG_DIR always records DEBUG, so every
    attribute write and export poll is on disk even when the console is quiet.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    console_level = log_level or settings.LOG_LEVEL
    logger.setLevel(logging.DEBUG)
    # Callers may also configure the root logger; don't print twice.
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        settings.LOG_DIR / "stocklink.log",
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.debug(f"Logging to {settings.LOG_DIR / 'stocklink.log'} (console level {console_level}).")
    return logger
