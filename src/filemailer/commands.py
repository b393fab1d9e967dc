# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Chat command surface.

Turns one inbound chat message into zero or more replies. The router does
not know about Telegram; :mod:`filemailer.bot` feeds it text and sends back
whatever it returns.

Supported input:

=========================  ==================================================
``/start``                 greeting, personalised when already registered
``/register <email>``      create the user and its access token
``/change_email <email>``  open an e-mail change request for the admin
``/approve <id>``          admin only, silent for everyone else
``/reject <id>``           admin only, silent for everyone else
``/changes``               admin only, list pending requests
text with a link           submit the first ``http(s)`` URL for delivery
=========================  ==================================================
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .approvals import ApprovalStateMachine
from .client import FilemailerClient, ServiceError
from .credentials import CredentialResolver
from .logger import get_logger
from .models import ChangeRequest, Outcome

URL_RE = re.compile(r"https?://\S+")

MSG_INTERNAL = "Internal error, please try again later."
MSG_NOT_REGISTERED = "You are not registered yet. Send /register email@example.com first."

logger = get_logger("Commands")


@dataclass(frozen=True)
class Reply:
    """Text to send to a chat."""

    chat_id: int
    text: str


def split_command(text: str) -> tuple[str, list[str]]:
    """Split ``/cmd@botname arg ...`` into ``("/cmd", ["arg", ...])``."""
    parts = text.split()
    if not parts:
        return "", []
    command = parts[0].split("@", 1)[0].lower()
    return command, parts[1:]


def format_change(request: ChangeRequest) -> str:
    return f"#{request.id} user {request.user_id}: {request.old_email} -> {request.new_email} ({request.created_at})"


class CommandRouter:
    """Dispatch chat messages to the credential, approval and delivery layers.

    Attributes:
        credentials: Resolver for registration and token lookups.
        approvals: E-mail change workflow.
        client: HTTP client used to submit URLs.
    """

    def __init__(self, credentials: CredentialResolver, approvals: ApprovalStateMachine, client: FilemailerClient):
        self.credentials = credentials
        self.approvals = approvals
        self.client = client

    async def handle(self, *, chat_id: int, user_id: int, username: str | None, text: str | None) -> list[Reply]:
        """Process one message and return the replies to send."""
        text = (text or "").strip()
        command, args = split_command(text)
        handlers = {
            "/start": self._start,
            "/register": self._register,
            "/change_email": self._change_email,
            "/approve": self._approve,
            "/reject": self._reject,
            "/changes": self._changes,
        }
        handler = handlers.get(command)
        try:
            if handler is not None:
                replies = await handler(chat_id, user_id, username, args)
            else:
                replies = await self._submit(chat_id, user_id, text)
        except Exception:
            logger.exception("Command %r from chat %s failed", command or "text", chat_id)
            replies = [MSG_INTERNAL]
        return [Reply(chat_id, reply) for reply in replies]

    async def _start(self, chat_id, user_id, username, args) -> list[str]:
        chat_user = await self.credentials.lookup_chat(user_id)
        if chat_user is None:
            return ["Hi! Send /register email@example.com to sign up, then just send me links to files."]
        name = f" @{chat_user.username}" if chat_user.username else ""
        return [f"Hi{name}! Just send me links to files."]

    async def _register(self, chat_id, user_id, username, args) -> list[str]:
        if len(args) != 1:
            return ["Usage: /register email@example.com"]
        registration = await self.credentials.register(user_id, username, args[0])
        if not registration.created:
            return ["You are already registered. Just send me a link to a file."]
        return ["Done! Now just send me a link to a file."]

    async def _change_email(self, chat_id, user_id, username, args) -> list[str]:
        if len(args) != 1:
            return ["Usage: /change_email new@example.com"]
        outcome = await self.approvals.create_request(user_id, chat_id, args[0])
        if not outcome.ok:
            return [MSG_NOT_REGISTERED if outcome.error == "not_found" else MSG_INTERNAL]
        return [outcome.message]

    async def _decide(self, decide, chat_id, args) -> list[str]:
        if not self.approvals.is_admin(chat_id):
            return []
        if len(args) != 1 or not args[0].isdecimal():
            return ["Usage: /approve <id> or /reject <id>"]
        outcome: Outcome | None = await decide(int(args[0]), chat_id)
        if outcome is None:
            return []
        return [outcome.message]

    async def _approve(self, chat_id, user_id, username, args) -> list[str]:
        return await self._decide(self.approvals.approve, chat_id, args)

    async def _reject(self, chat_id, user_id, username, args) -> list[str]:
        return await self._decide(self.approvals.reject, chat_id, args)

    async def _changes(self, chat_id, user_id, username, args) -> list[str]:
        pending = await self.approvals.list_pending(chat_id)
        if pending is None:
            return []
        if not pending:
            return ["No pending requests."]
        return ["Pending requests:\n" + "\n".join(format_change(request) for request in pending)]

    async def _submit(self, chat_id: int, user_id: int, text: str) -> list[str]:
        match = URL_RE.search(text)
        if match is None:
            return ["No link found in the message."]
        token = await self.credentials.token_for_chat(user_id)
        if token is None:
            return [MSG_NOT_REGISTERED]
        try:
            await self.client.send(token, match.group(0))
        except ServiceError as exc:
            logger.warning("Submission from chat %s failed: %s", chat_id, exc)
            return [f"Could not process the link: {exc.message}"]
        return ["Done! The file has been sent to your e-mail."]
