"""File logging for the agent, tools and vault packages."""

import logging
import os

LOGGER_NAMES = ("agent", "tools", "vaults", "cli")


def configure_logging(log_dir: str, level: str = "INFO") -> str:
    """Attach one shared file handler to the package loggers. Returns the log path."""
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.abspath(os.path.join(log_dir, "vault_agents.log"))

    handler: logging.Handler | None = None
    for name in LOGGER_NAMES:
        for existing in logging.getLogger(name).handlers:
            if isinstance(existing, logging.FileHandler) and existing.baseFilename == log_path:
                handler = existing
                break

    if handler is None:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if handler not in logger.handlers:
            logger.addHandler(handler)
        logger.propagate = False

    return log_path
