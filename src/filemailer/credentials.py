# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Access tokens and user lookups.

Access tokens are 32 random bytes from the operating system CSPRNG rendered
as 64 lowercase hexadecimal characters. They stand in for a password on
every delivery request and are never rotated.
"""

from __future__ import annotations

import re
import secrets

from .errors import NotFoundError
from .logger import get_logger
from .models import ChatUser, Registration, UserIdentity
from .persistence import Persistence

TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"[0-9a-f]{64}")

logger = get_logger("Credentials")


def generate_token() -> str:
    """Return a fresh 64-character hexadecimal access token."""
    return secrets.token_bytes(TOKEN_BYTES).hex()


def is_well_formed_token(token: str | None) -> bool:
    """Check the token shape without touching the store."""
    return bool(token) and TOKEN_PATTERN.fullmatch(token) is not None


class CredentialResolver:
    """Map access tokens and chat identities to users.

    Attributes:
        persistence: Store holding users and chat links.
    """

    def __init__(self, persistence: Persistence):
        self.persistence = persistence

    async def resolve(self, token: str) -> UserIdentity | None:
        """Return the user owning ``token`` or ``None`` when unknown."""
        if not is_well_formed_token(token):
            return None
        row = await self.persistence.get_user_by_api_key(token)
        if row is None:
            return None
        return UserIdentity(id=row["id"], username=row.get("username"))

    async def get_email(self, user_id: int) -> str:
        """Return the current e-mail of a user.

        Raises:
            NotFoundError: If the user does not exist.
        """
        row = await self.persistence.get_user(user_id)
        if row is None:
            raise NotFoundError(f"user {user_id} not found")
        return row["email"]

    async def get_token(self, user_id: int) -> str:
        """Return the access token of a user.

        Raises:
            NotFoundError: If the user does not exist.
        """
        row = await self.persistence.get_user(user_id)
        if row is None:
            raise NotFoundError(f"user {user_id} not found")
        return row["api_key"]

    async def lookup_chat(self, telegram_id: int) -> ChatUser | None:
        """Return the user linked to a chat identity, or ``None``."""
        row = await self.persistence.get_chat_user(telegram_id)
        if row is None:
            return None
        return ChatUser(
            telegram_id=row["telegram_id"],
            username=row.get("username"),
            user_id=row["user_id"],
            email=row["email"],
        )

    async def token_for_chat(self, telegram_id: int) -> str | None:
        """Return the access token of the user linked to a chat identity."""
        chat_user = await self.lookup_chat(telegram_id)
        if chat_user is None:
            return None
        return await self.get_token(chat_user.user_id)

    async def register(self, telegram_id: int, username: str | None, email: str) -> Registration:
        """Create a user for a chat identity, keeping existing links as-is."""
        user_id, created = await self.persistence.register_chat_user(
            telegram_id, username, email, generate_token()
        )
        if created:
            logger.info("Registered user %s for chat identity %s", user_id, telegram_id)
        else:
            logger.debug("Chat identity %s already registered as user %s", telegram_id, user_id)
        return Registration(user_id=user_id, created=created)
