# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Download remote resources into scratch storage.

The fetcher issues a single unauthenticated GET, streams the body into a
file named after the URL's last path segment and reports failures through
the error taxonomy, each carrying the job log tag and fields that identify
the failing step:

- ``download_error stage=get``: transport failure before a response
- ``download_bad_status http_status=N``: non-2xx response
- ``download_too_large``: advertised or observed size over the ceiling
- ``download_error stage=tempfile``: scratch file could not be created
- ``download_error stage=copy written=N``: body transfer or disk write failed

No total timeout is applied; large files may take as long as they need.
Disk writes run in worker threads so the event loop keeps serving other
deliveries while a large body is staged.

Example:
    Fetching into a scratch directory::

        fetcher = URLFetcher(max_size=500 * 1024 * 1024)
        result = await fetcher.fetch("https://host/report.pdf", Path(workdir))
        # result.path == workdir / "report.pdf"
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlsplit

import aiohttp

from .errors import SizeLimitError, StagingError, TransientRemoteError

DEFAULT_FILENAME = "downloaded-file"
CHUNK_SIZE = 64 * 1024
# Common filesystem limit on a single path component, in bytes
MAX_FILENAME_BYTES = 255
MAX_SUFFIX_BYTES = 16


def _truncate(name: str) -> str:
    """Shorten ``name`` to :data:`MAX_FILENAME_BYTES`, keeping a short extension."""
    stem, suffix = posixpath.splitext(name)
    if len(suffix.encode("utf-8")) > MAX_SUFFIX_BYTES:
        stem, suffix = name, ""
    room = MAX_FILENAME_BYTES - len(suffix.encode("utf-8"))
    stem = stem.encode("utf-8")[:room].decode("utf-8", "ignore")
    return stem + suffix if stem else DEFAULT_FILENAME


def filename_from_url(url: str) -> str:
    """Derive an attachment name from the URL's final path segment.

    Query strings and fragments are ignored and percent-escapes decoded.
    Names longer than :data:`MAX_FILENAME_BYTES` are cut down, keeping the
    extension. Falls back to :data:`DEFAULT_FILENAME` when the path has no
    usable segment.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return DEFAULT_FILENAME
    name = posixpath.basename(unquote(path).rstrip("/")) if path.strip("/") else ""
    name = name.replace("\\", "_").replace("\x00", "")
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME
    if len(name.encode("utf-8")) > MAX_FILENAME_BYTES:
        return _truncate(name)
    return name


@dataclass(frozen=True)
class FetchResult:
    """Artifact staged by :meth:`URLFetcher.fetch`."""

    path: Path
    size: int

    @property
    def filename(self) -> str:
        return self.path.name


class URLFetcher:
    """Stream a URL into a local file with an optional size ceiling.

    Attributes:
        max_size: Ceiling in bytes; ``None`` or ``0`` disables the check.
        chunk_size: Read size used while streaming the body.
    """

    def __init__(self, max_size: int | None = None, chunk_size: int = CHUNK_SIZE):
        self.max_size = max_size or None
        self.chunk_size = chunk_size

    def _check_size(self, size: int | None) -> None:
        if self.max_size is None or size is None:
            return
        if size > self.max_size:
            raise SizeLimitError(
                "file too large",
                fields={"size": size, "limit": self.max_size},
            )

    async def fetch(self, url: str, dest_dir: Path) -> FetchResult:
        """Download ``url`` into ``dest_dir``.

        Args:
            url: Resource to download.
            dest_dir: Existing scratch directory owned by the caller.

        Returns:
            The staged file and the number of bytes written.

        Raises:
            TransientRemoteError: Transport failure or non-2xx status.
            SizeLimitError: Size ceiling exceeded.
            StagingError: Local file could not be created or written.
        """
        target = Path(dest_dir) / filename_from_url(url)
        timeout = aiohttp.ClientTimeout(total=None)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    if not 200 <= resp.status < 300:
                        raise TransientRemoteError(
                            f"download bad status {resp.status}",
                            tag="download_bad_status",
                            fields={"http_status": resp.status},
                        )
                    self._check_size(resp.content_length)
                    size = await self._stage(resp, target)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransientRemoteError(
                "download failed",
                fields={"stage": "get", "error": str(exc) or exc.__class__.__name__},
            ) from exc
        return FetchResult(path=target, size=size)

    async def _stage(self, resp: aiohttp.ClientResponse, target: Path) -> int:
        """Copy the response body into ``target`` and return the byte count."""
        try:
            handle = await asyncio.to_thread(open, target, "wb")
        except OSError as exc:
            raise StagingError(
                "internal error",
                fields={"stage": "tempfile", "error": str(exc)},
            ) from exc
        written = 0
        with handle:
            try:
                async for chunk in resp.content.iter_chunked(self.chunk_size):
                    self._check_size(written + len(chunk))
                    await asyncio.to_thread(handle.write, chunk)
                    written += len(chunk)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise TransientRemoteError(
                    "download failed",
                    fields={"stage": "copy", "written": written, "error": str(exc) or exc.__class__.__name__},
                ) from exc
            except OSError as exc:
                raise StagingError(
                    "internal error",
                    fields={"stage": "copy", "written": written, "error": str(exc)},
                ) from exc
        return written
