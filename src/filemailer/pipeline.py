# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery pipeline: from a submitted URL to a mailed attachment.

One call to :meth:`DeliveryPipeline.deliver` runs these stages in order,
stopping at the first failure:

1. Authenticate the access token.
2. Fetch the URL into a per-delivery scratch directory.
3. Resolve the recipient's current e-mail address.
4. Compose the message and hand it to the mailer.
5. Remove the scratch directory (always, on every exit path).

Every stage transition appends exactly one job log line; the last line's
``status`` tells success (``sent``) apart from the failing stage. Nothing is
retried and repeated submissions are independent deliveries.

Example:
    Wiring the pipeline::

        pipeline = DeliveryPipeline(
            CredentialResolver(persistence),
            URLFetcher(max_size=settings.max_file_size),
            Mailer.from_settings(settings),
            JobLog(settings.job_log_path),
        )
        outcome = await pipeline.deliver(api_key, "https://host/report.pdf")
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .credentials import CredentialResolver
from .errors import (
    AuthorizationError,
    FilemailerError,
    InternalInconsistencyError,
    StagingError,
)
from .fetcher import URLFetcher
from .joblog import JobLog
from .logger import get_logger
from .mailer import Mailer
from .models import Outcome, UserIdentity
from .prometheus import DeliveryMetrics

SCRATCH_PREFIX = "download-"


class DeliveryPipeline:
    """Orchestrate one URL delivery per :meth:`deliver` call.

    The pipeline keeps no per-delivery state on the instance, so concurrent
    calls for different users need no coordination.
    """

    def __init__(
        self,
        credentials: CredentialResolver,
        fetcher: URLFetcher,
        mailer: Mailer,
        job_log: JobLog,
        *,
        scratch_dir: str | None = None,
        metrics: DeliveryMetrics | None = None,
        logger=None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.credentials = credentials
        self.fetcher = fetcher
        self.mailer = mailer
        self.job_log = job_log
        self.metrics = metrics or DeliveryMetrics()
        self.logger = logger or get_logger("Pipeline")
        self._scratch_dir = scratch_dir
        self._clock = clock

    @contextmanager
    def _scratch(self) -> Iterator[Path]:
        """Yield a fresh scratch directory, removed on exit."""
        try:
            workdir = tempfile.TemporaryDirectory(
                prefix=SCRATCH_PREFIX, dir=self._scratch_dir, ignore_cleanup_errors=True
            )
        except OSError as exc:
            raise StagingError("internal error", fields={"stage": "tempfile", "error": str(exc)}) from exc
        with workdir as path:
            yield Path(path)

    def compose(self, url: str, size: int) -> tuple[str, str]:
        """Return subject and body for a delivered file."""
        now = self._clock()
        subject = f"Downloaded file {now:%Y-%m-%d %H:%M:%S}"
        body = f"The file at {url} was downloaded successfully. Size: {size} bytes.\n"
        return subject, body

    async def deliver(self, token: str, url: str) -> Outcome:
        """Run every stage for one ``(token, url)`` pair.

        Returns:
            An :class:`Outcome` whose ``stage`` is ``sent`` on success or the
            job log tag of the failing stage. Never raises for core errors.
        """
        try:
            identity = await self.credentials.resolve(token)
        except Exception as exc:
            self.logger.exception("Credential lookup failed")
            self.job_log.record("auth_error", url=url, error=str(exc))
            return self._finish(Outcome.failure(InternalInconsistencyError("internal error", tag="auth_error")))
        if identity is None:
            self.job_log.record("unauthorized", url=url)
            return self._finish(Outcome.failure(AuthorizationError("invalid api_key")))

        context: dict[str, Any] = {"user_id": identity.id, "username": identity.username, "url": url}
        self.job_log.record("received", **context)
        try:
            with self._scratch() as workdir:
                size = await self._run(identity, url, workdir, context)
        except FilemailerError as exc:
            self.job_log.record(exc.tag, **context, **exc.fields)
            self.logger.warning("Delivery of %s for user %s failed at %s: %s", url, identity.id, exc.tag, exc)
            return self._finish(Outcome.failure(exc))

        return self._finish(Outcome(ok=True, stage="sent", message="file sent to your email", size=size))

    async def _run(self, identity: UserIdentity, url: str, workdir: Path, context: dict[str, Any]) -> int:
        self.job_log.record("downloading", **context)
        result = await self.fetcher.fetch(url, workdir)
        self.job_log.record("downloaded", **context, size=result.size, path=result.path)

        try:
            email = await self.credentials.get_email(identity.id)
        except Exception as exc:
            raise InternalInconsistencyError(
                "internal error",
                tag="send_error",
                fields={"stage": "get_email", "error": str(exc)},
            ) from exc

        subject, body = self.compose(url, result.size)
        try:
            await self.mailer.deliver(email, subject, body, result.path)
        except FilemailerError as exc:
            exc.fields = {"email": email, **exc.fields}
            raise
        self.job_log.record("sent", **context, email=email, size=result.size)
        return result.size

    def _finish(self, outcome: Outcome) -> Outcome:
        self.metrics.observe_delivery(outcome.stage, outcome.size)
        return outcome
