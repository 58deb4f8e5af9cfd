"""Shared logging configuration for the respect monitor.

Call ``configure_logging()`` once at any CLI entry point (refresh CLI, import
scripts, API server) to ensure pipeline logs are emitted.
The function is idempotent: if the root logger already has handlers, it does nothing.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO, log_dir: str = "logs") -> None:
    """Configure root logger with console + optional file handler.

    Only configures if the root logger has no handlers (idempotent).
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    # File handler only if the log directory exists or can be created
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(os.path.join(log_dir, "pipeline.log"), mode="a")
        fh.setFormatter(formatter)
        root.addHandler(fh)
    except OSError:
        pass

    root.setLevel(level)
