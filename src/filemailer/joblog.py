# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Append-only job log of delivery stage transitions.

Each call to :meth:`JobLog.record` writes exactly one line::

    2025/01/31 10:00:00 user_id=3 username=alice url=https://h/r.pdf status=downloaded size=1048576 path=/tmp/...

The log exists for post-hoc diagnosis only; nothing in the service reads it
back. It uses its own logger, detached from the logging hierarchy, so job
lines never mix with console output.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

JOB_LOG_FORMAT = "%(asctime)s %(message)s"
JOB_LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

# Always rendered quoted, like free-form error text
QUOTED_FIELDS = {"error"}


def format_value(key: str, value: Any) -> str:
    """Render a field value, quoting it when needed."""
    if value is None:
        return "-"
    text = str(value)
    if key in QUOTED_FIELDS or not text or any(ch.isspace() or ch == '"' for ch in text):
        return json.dumps(text, ensure_ascii=False)
    return text


def format_entry(status: str, *, url: str, user_id: int | None, username: str | None, **fields: Any) -> str:
    """Build the text of one job log line (without timestamp)."""
    parts = [
        f"user_id={format_value('user_id', user_id)}",
        f"username={format_value('username', username)}",
    ]
    if "email" in fields:
        parts.append(f"email={format_value('email', fields.pop('email'))}")
    parts.append(f"url={format_value('url', url)}")
    parts.append(f"status={status}")
    parts.extend(f"{key}={format_value(key, value)}" for key, value in fields.items())
    return " ".join(parts)


class JobLog:
    """Write-once sink for pipeline stage transitions.

    Attributes:
        path: File receiving the entries, ``None`` when writing to a
            caller-supplied handler only.
    """

    def __init__(self, path: str | os.PathLike | None = None, *, handler: logging.Handler | None = None):
        """Open the job log.

        Args:
            path: Append-mode file; parent directories are created.
            handler: Extra handler, mostly for tests.
        """
        self.path = Path(path) if path is not None else None
        self._logger = logging.Logger("filemailer.jobs", logging.INFO)
        self._logger.propagate = False
        formatter = logging.Formatter(JOB_LOG_FORMAT, datefmt=JOB_LOG_DATE_FORMAT)
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)
        if handler is not None:
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    def record(
        self,
        status: str,
        *,
        url: str,
        user_id: int | None = None,
        username: str | None = None,
        **fields: Any,
    ) -> None:
        """Append one entry for a stage transition."""
        self._logger.info(format_entry(status, url=url, user_id=user_id, username=username, **fields))

    def close(self) -> None:
        """Flush and close every handler."""
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
