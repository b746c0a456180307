from __future__ import annotations

import logging
import sys

SECURITY_LOGGER_NAME = "lawfirm_authz.security"


def setup_logging(level: str | None = None) -> None:
    """
    Structured-enough logging for ops users.

    In production you would route this to files and/or a log aggregator.
    """
    if level is None:
        from lawfirm_authz.configs.settings import get_settings

        level = get_settings().LOG_LEVEL

    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    handler.setFormatter(formatter)

    # Replace existing handlers to avoid duplicates under reload.
    root.handlers = [handler]

    # Security events stay at INFO even when the root level is raised.
    logging.getLogger(SECURITY_LOGGER_NAME).setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_security_logger() -> logging.Logger:
    return logging.getLogger(SECURITY_LOGGER_NAME)
