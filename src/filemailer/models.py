# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for users, change requests and operation outcomes.

Models:
    - ChangeStatus: Lifecycle states of an e-mail change request
    - UserIdentity: Authenticated user as seen by the delivery pipeline
    - ChatUser: User resolved through a chat link
    - Registration: Result of a chat registration
    - ChangeRequest: Persisted e-mail change request
    - Outcome: Caller-facing result of a pipeline or approval operation
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from .errors import FilemailerError


class ChangeStatus(str, Enum):
    """States of an e-mail change request.

    Attributes:
        PENDING: Waiting for an administrator decision.
        APPROVED: Applied to the user record. Terminal.
        REJECTED: Discarded without touching the user record. Terminal.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserIdentity(BaseModel):
    """User resolved from an access token."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str | None = None


class ChatUser(BaseModel):
    """User resolved from a chat identity."""

    model_config = ConfigDict(frozen=True)

    telegram_id: int
    username: str | None = None
    user_id: int
    email: str


class Registration(BaseModel):
    """Result of :meth:`CredentialResolver.register`."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    created: bool


class ChangeRequest(BaseModel):
    """E-mail change request as stored in ``change_requests``."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: int
    user_id: int
    requester_chat_id: int
    old_email: Annotated[str, Field(description="User e-mail when the request was created")]
    new_email: Annotated[str, Field(description="Proposed e-mail, never syntax-validated")]
    status: ChangeStatus
    created_at: str
    processed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not ChangeStatus.PENDING


class Outcome(BaseModel):
    """Terminal result handed back to the caller.

    Attributes:
        ok: True when the operation reached its success state.
        stage: Stage tag of the final step (``sent``, ``download_bad_status``,
            ``approved``...).
        message: Human readable text safe to show to the caller.
        error: Error code from :mod:`filemailer.errors` when ``ok`` is False.
        request_id: Change-request id, when the operation concerns one.
        size: Delivered byte count for successful deliveries.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    stage: str
    message: str
    error: str | None = None
    request_id: int | None = None
    size: int | None = None

    @classmethod
    def failure(cls, exc: FilemailerError, **extra) -> "Outcome":
        """Build a failed outcome from a core error."""
        return cls(ok=False, stage=exc.tag, message=str(exc), error=exc.code, **extra)
