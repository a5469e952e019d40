import sys
import logging
from pathlib import Path
from typing import Dict, Optional

from easytask import settings
from easytask.log.handler import LokiHandler

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] [%(process)d] - %(message)s'


class MainFormatter(logging.Formatter):
    """Formats records with the process id so interleaved worker output stays readable."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)


def setup_logging(console_level: int = logging.INFO, log_file: Optional[Path] = None,
                  labels: Optional[Dict[str, str]] = None) -> None:
    """
    Configures the root logger for the current process.
    This sets up handlers for the console, an optional log file and optionally Loki,
    clearing any previously configured handlers to prevent duplication.
    Worker processes call this again after fork so they own their handlers.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_file: File shared by the master and its workers; needed once stdio is closed.
    :param labels: Extra Loki stream labels, such as the task alias.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            if isinstance(handler, (logging.FileHandler, LokiHandler)):
                handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- File Handler ---
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG if settings.VERBOSE_LOGGING else logging.INFO)
            file_handler.setFormatter(MainFormatter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.error(f"Failed to open log file '{log_file}': {e}. Logging to file is disabled.")

    # --- Loki Handler (conditional) ---
    if settings.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=settings.LOKI_URL, org_id=settings.LOKI_ORG_ID, labels=labels)
            loki_handler.setLevel(logging.INFO)  # Avoid spamming Loki with DEBUG logs
            loki_handler.setFormatter(MainFormatter())
            root_logger.addHandler(loki_handler)
            root_logger.debug(f"Grafana Loki logging handler initialized for {settings.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
