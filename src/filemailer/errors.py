# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy shared by the delivery pipeline and the approval workflow.

Every error carries a machine readable ``code``, a caller-facing message
(the exception text) and, for pipeline failures, the job log ``tag`` and
extra ``fields`` describing where the failure happened. Messages never
contain access tokens or SMTP credentials; raw error text only travels in
``fields`` and ends up in the job log.
"""

from __future__ import annotations

from typing import Any


class FilemailerError(RuntimeError):
    """Base class for every error reported through an ``Outcome``."""

    code = "internal_error"
    default_tag = "error"

    def __init__(self, message: str, *, tag: str | None = None, fields: dict[str, Any] | None = None):
        super().__init__(message)
        self.tag = tag or self.default_tag
        self.fields = dict(fields or {})


class AuthorizationError(FilemailerError):
    """Unknown access token."""

    code = "unauthorized"
    default_tag = "unauthorized"


class NotFoundError(FilemailerError):
    """Unknown change-request id or unknown user."""

    code = "not_found"
    default_tag = "not_found"


class AlreadyProcessedError(FilemailerError):
    """Change request is no longer pending."""

    code = "already_processed"
    default_tag = "already_processed"


class TransientRemoteError(FilemailerError):
    """Transport failure or non-2xx status while fetching the remote resource."""

    code = "remote_error"
    default_tag = "download_error"


class SizeLimitError(FilemailerError):
    """Advertised or observed size exceeds the configured ceiling."""

    code = "size_limit"
    default_tag = "download_too_large"


class StagingError(FilemailerError):
    """The fetched bytes could not be written to scratch storage."""

    code = "staging_error"
    default_tag = "download_error"


class DeliveryError(FilemailerError):
    """The mail delivery capability failed."""

    code = "delivery_error"
    default_tag = "send_error"


class InternalInconsistencyError(FilemailerError):
    """A dependent write or lookup failed after a previous step succeeded."""

    code = "internal_inconsistency"
    default_tag = "internal_error"


class ConfigurationError(RuntimeError):
    """Raised at startup when a required setting is missing."""

    def __init__(self, message: str = "Missing required configuration"):
        super().__init__(message)
        self.code = "configuration_error"
