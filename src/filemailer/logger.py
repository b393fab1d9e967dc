# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for filemailer.

Handlers and formatting are configured once by the entry point through
:func:`configure_logging`; library modules only ask for named loggers.

Example:
    Typical usage in a module::

        from filemailer.logger import get_logger

        logger = get_logger("Pipeline")
        logger.info("Delivery finished")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "filemailer") -> logging.Logger:
    """Retrieve a logger instance.

    No handlers are attached here; that responsibility lies with the
    application entry point.

    Args:
        name: The logger name. Defaults to "filemailer".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for console output.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"INFO"``. Unknown names
            fall back to ``INFO``.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,  # Replace handlers installed by earlier imports
    )
