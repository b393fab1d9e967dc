# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Approval workflow for e-mail address changes.

A change request is created ``pending`` and moves exactly once to either
``approved`` or ``rejected``; both are terminal. Only the configured admin
chat may decide or list requests. Calls from any other chat return ``None``
and leave no trace, so non-admin users never learn these commands exist.

Transitions are compare-and-swap updates in the store: when two decisions
race on the same id, the first to see ``pending`` wins and the other one
reports "already processed".
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from .credentials import CredentialResolver
from .errors import AlreadyProcessedError, FilemailerError, NotFoundError
from .logger import get_logger
from .models import ChangeRequest, ChangeStatus, Outcome
from .persistence import Persistence, utc_now_iso
from .prometheus import DeliveryMetrics

Notifier = Callable[[int, str], Awaitable[None]]


class ApprovalStateMachine:
    """Create, decide and list e-mail change requests.

    Attributes:
        persistence: Store holding change requests and users.
        credentials: Resolver used to find the requester's account.
        admin_chat_id: The only chat allowed to decide requests; ``None``
            disables every admin operation.
    """

    def __init__(
        self,
        persistence: Persistence,
        credentials: CredentialResolver,
        *,
        admin_chat_id: int | None,
        notify: Notifier | None = None,
        metrics: DeliveryMetrics | None = None,
        logger=None,
    ):
        self.persistence = persistence
        self.credentials = credentials
        self.admin_chat_id = admin_chat_id
        self.metrics = metrics or DeliveryMetrics()
        self.logger = logger or get_logger("Approvals")
        self._notify = notify

    def is_admin(self, chat_id: int | None) -> bool:
        return self.admin_chat_id is not None and chat_id == self.admin_chat_id

    async def _send(self, chat_id: int | None, text: str) -> None:
        """Deliver a notification; failures are logged and swallowed."""
        if self._notify is None or chat_id is None:
            return
        try:
            await self._notify(chat_id, text)
        except Exception as exc:
            self.logger.warning("Notification to chat %s failed: %s", chat_id, exc)

    # ------------------------------------------------------------------ requests
    async def create_request(self, requester_id: int, requesting_chat_id: int, new_email: str) -> Outcome:
        """Record a pending change for the user linked to ``requester_id``.

        ``old_email`` is a snapshot of the address at this moment. The admin
        chat receives a summary with the exact follow-up commands.
        """
        chat_user = await self.credentials.lookup_chat(requester_id)
        if chat_user is None:
            return Outcome.failure(NotFoundError("you are not registered yet, use /register email@example.com first"))

        row = await self.persistence.insert_change_request(
            user_id=chat_user.user_id,
            requester_chat_id=requesting_chat_id,
            old_email=chat_user.email,
            new_email=new_email,
        )
        request = ChangeRequest(**row)
        self.metrics.observe_change(ChangeStatus.PENDING.value)
        self.logger.info("Change request %s created for user %s", request.id, request.user_id)

        who = f"@{chat_user.username}" if chat_user.username else f"id {requester_id}"
        await self._send(
            self.admin_chat_id,
            (
                f"E-mail change request #{request.id}\n"
                f"User: {who} (user {request.user_id})\n"
                f"Old: {request.old_email}\n"
                f"New: {request.new_email}\n\n"
                f"/approve {request.id}\n"
                f"/reject {request.id}"
            ),
        )
        return Outcome(
            ok=True,
            stage=ChangeStatus.PENDING.value,
            message=f"Request #{request.id} sent to the administrator.",
            request_id=request.id,
        )

    async def _load_pending(self, request_id: int) -> ChangeRequest:
        row = await self.persistence.get_change_request(request_id)
        if row is None:
            raise NotFoundError(f"request #{request_id} not found")
        request = ChangeRequest(**row)
        if request.is_terminal:
            raise AlreadyProcessedError(f"request #{request_id} already processed ({request.status.value})")
        return request

    async def approve(self, request_id: int, actor_chat_id: int) -> Outcome | None:
        """Apply a pending request to the user record.

        Returns:
            ``None`` for non-admin callers, otherwise the decision outcome.
        """
        if not self.is_admin(actor_chat_id):
            return None
        try:
            request = await self._load_pending(request_id)
            if not await self.persistence.approve_change_request(request_id, utc_now_iso()):
                raise AlreadyProcessedError(f"request #{request_id} already processed")
        except FilemailerError as exc:
            if exc.fields:
                self.logger.error("Approval of request %s failed: %s %s", request_id, exc, exc.fields)
            return Outcome.failure(exc, request_id=request_id)

        self.metrics.observe_change(ChangeStatus.APPROVED.value)
        self.logger.info("Change request %s approved", request_id)
        await self._send(request.requester_chat_id, f"Your e-mail has been changed to {request.new_email}.")
        return Outcome(
            ok=True,
            stage=ChangeStatus.APPROVED.value,
            message=f"Request #{request_id} approved.",
            request_id=request_id,
        )

    async def reject(self, request_id: int, actor_chat_id: int) -> Outcome | None:
        """Close a pending request without touching the user record.

        Returns:
            ``None`` for non-admin callers, otherwise the decision outcome.
        """
        if not self.is_admin(actor_chat_id):
            return None
        try:
            request = await self._load_pending(request_id)
            if not await self.persistence.reject_change_request(request_id, utc_now_iso()):
                raise AlreadyProcessedError(f"request #{request_id} already processed")
        except FilemailerError as exc:
            return Outcome.failure(exc, request_id=request_id)

        self.metrics.observe_change(ChangeStatus.REJECTED.value)
        self.logger.info("Change request %s rejected", request_id)
        await self._send(
            request.requester_chat_id,
            f"Your request to change e-mail to {request.new_email} was rejected.",
        )
        return Outcome(
            ok=True,
            stage=ChangeStatus.REJECTED.value,
            message=f"Request #{request_id} rejected.",
            request_id=request_id,
        )

    async def list_pending(self, actor_chat_id: int) -> list[ChangeRequest] | None:
        """Snapshot of pending requests, newest first.

        Returns:
            ``None`` for non-admin callers, otherwise a (possibly empty) list.
        """
        if not self.is_admin(actor_chat_id):
            return None
        rows = await self.persistence.list_change_requests(ChangeStatus.PENDING.value)
        return [ChangeRequest(**row) for row in rows]
