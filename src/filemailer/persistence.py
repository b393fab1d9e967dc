"""SQLite-backed persistence layer for users, chat links and change requests.

This module provides the Persistence class that handles all database
operations for filemailer, including:

- User records (e-mail address and access token)
- Links between chat identities and users
- E-mail change requests with compare-and-swap status transitions

The persistence layer uses aiosqlite for async SQLite operations,
supporting both file-based databases and in-memory databases for testing.
Each operation opens and closes its own connection.

Example:
    Basic usage of the persistence layer::

        persistence = Persistence("/data/filemailer.db")
        await persistence.init_db()

        user_id, created = await persistence.register_chat_user(
            telegram_id=1001, username="alice", email="a@x.com", api_key=token
        )
        request = await persistence.insert_change_request(
            user_id=user_id, requester_chat_id=1001,
            old_email="a@x.com", new_email="b@x.com",
        )
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import aiosqlite

from .errors import InternalInconsistencyError

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"


def utc_now_iso() -> str:
    """Return the current UTC timestamp as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class Persistence:
    """Async SQLite persistence layer for filemailer state.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:" for
            an in-memory database.
    """

    def __init__(self, db_path: str = "/data/filemailer.db"):
        """Initialize the persistence layer with a database path.

        Args:
            db_path: Path to the SQLite database file. Use ":memory:" for
                an in-memory database suitable for testing.
        """
        self.db_path = db_path or ":memory:"

    async def init_db(self) -> None:
        """Create the database schema. Idempotent."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    api_key TEXT NOT NULL UNIQUE,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS telegram_users (
                    telegram_id INTEGER PRIMARY KEY,
                    username TEXT,
                    user_id INTEGER NOT NULL REFERENCES users(id)
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS change_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    requester_chat_id INTEGER NOT NULL,
                    old_email TEXT NOT NULL,
                    new_email TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    processed_at TEXT
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_change_requests_status ON change_requests(status)"
            )
            await db.commit()

    # Users --------------------------------------------------------------------
    async def register_chat_user(
        self, telegram_id: int, username: str | None, email: str, api_key: str
    ) -> tuple[int, bool]:
        """Create a user and link it to a chat identity.

        An already linked chat identity is left untouched.

        Returns:
            ``(user_id, created)`` where ``created`` is False when the chat
            identity was already registered.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                async with db.execute(
                    "SELECT user_id FROM telegram_users WHERE telegram_id=?", (telegram_id,)
                ) as cur:
                    row = await cur.fetchone()
                if row:
                    await db.rollback()
                    return int(row[0]), False
                cursor = await db.execute(
                    "INSERT INTO users (email, api_key) VALUES (?, ?)", (email, api_key)
                )
                user_id = int(cursor.lastrowid)
                await db.execute(
                    "INSERT INTO telegram_users (telegram_id, username, user_id) VALUES (?, ?, ?)",
                    (telegram_id, username, user_id),
                )
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return user_id, True

    async def get_user(self, user_id: int) -> dict[str, Any] | None:
        """Return a user row with its chat username, or ``None``."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT users.id, users.email, users.api_key, users.created_at,
                       telegram_users.username
                FROM users
                LEFT JOIN telegram_users ON telegram_users.user_id = users.id
                WHERE users.id = ?
                """,
                (user_id,),
            ) as cur:
                row = await cur.fetchone()
        return dict(row) if row else None

    async def get_user_by_api_key(self, api_key: str) -> dict[str, Any] | None:
        """Resolve an access token to a user row, or ``None``."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT users.id, users.email, telegram_users.username
                FROM users
                LEFT JOIN telegram_users ON telegram_users.user_id = users.id
                WHERE users.api_key = ?
                """,
                (api_key,),
            ) as cur:
                row = await cur.fetchone()
        return dict(row) if row else None

    async def get_chat_user(self, telegram_id: int) -> dict[str, Any] | None:
        """Resolve a chat identity to its linked user, or ``None``."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT telegram_users.telegram_id, telegram_users.username,
                       users.id AS user_id, users.email, users.api_key
                FROM telegram_users
                JOIN users ON users.id = telegram_users.user_id
                WHERE telegram_users.telegram_id = ?
                """,
                (telegram_id,),
            ) as cur:
                row = await cur.fetchone()
        return dict(row) if row else None

    async def list_users(self) -> list[dict[str, Any]]:
        """Return every user with its chat link, without access tokens."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT users.id, users.email, users.created_at,
                       telegram_users.telegram_id, telegram_users.username
                FROM users
                LEFT JOIN telegram_users ON telegram_users.user_id = users.id
                ORDER BY users.id
                """
            ) as cur:
                rows = await cur.fetchall()
        return [dict(row) for row in rows]

    # Change requests ------------------------------------------------------------
    async def insert_change_request(
        self, *, user_id: int, requester_chat_id: int, old_email: str, new_email: str
    ) -> dict[str, Any]:
        """Persist a new pending change request and return the stored row."""
        created_at = utc_now_iso()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO change_requests
                (user_id, requester_chat_id, old_email, new_email, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, requester_chat_id, old_email, new_email, STATUS_PENDING, created_at),
            )
            request_id = int(cursor.lastrowid)
            await db.commit()
        return {
            "id": request_id,
            "user_id": user_id,
            "requester_chat_id": requester_chat_id,
            "old_email": old_email,
            "new_email": new_email,
            "status": STATUS_PENDING,
            "created_at": created_at,
            "processed_at": None,
        }

    async def get_change_request(self, request_id: int) -> dict[str, Any] | None:
        """Fetch a single change request, or ``None``."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM change_requests WHERE id=?", (request_id,)) as cur:
                row = await cur.fetchone()
        return dict(row) if row else None

    async def list_change_requests(self, status: str | None = STATUS_PENDING) -> list[dict[str, Any]]:
        """Return change requests, newest first (ties broken by id).

        Args:
            status: Only rows with this status; ``None`` returns every row.
        """
        query = "SELECT * FROM change_requests"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status=?"
            params = (status,)
        query += " ORDER BY created_at DESC, id DESC"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cur:
                rows = await cur.fetchall()
        return [dict(row) for row in rows]

    async def reject_change_request(self, request_id: int, processed_at: str) -> bool:
        """Move a pending request to ``rejected``.

        Returns:
            True if this call performed the transition, False when the
            request was not pending anymore (or does not exist).
        """
        async with aiosqlite.connect(self.db_path) as db:
            # Take the write lock up front so racing decisions queue on it
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    """
                    UPDATE change_requests SET status=?, processed_at=?
                    WHERE id=? AND status=?
                    """,
                    (STATUS_REJECTED, processed_at, request_id, STATUS_PENDING),
                )
                if cursor.rowcount != 1:
                    await db.rollback()
                    return False
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return True

    async def approve_change_request(self, request_id: int, processed_at: str) -> bool:
        """Move a pending request to ``approved`` and apply its new e-mail.

        Both writes happen in one transaction: the status update is
        conditional on the row still being pending, then the user's e-mail
        is replaced with ``new_email``.

        Returns:
            True if this call performed the transition, False when the
            request was not pending anymore (or does not exist).

        Raises:
            InternalInconsistencyError: If the user update fails after the
                status transition; the transaction is rolled back.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    """
                    UPDATE change_requests SET status=?, processed_at=?
                    WHERE id=? AND status=?
                    """,
                    (STATUS_APPROVED, processed_at, request_id, STATUS_PENDING),
                )
                if cursor.rowcount != 1:
                    await db.rollback()
                    return False
                try:
                    cursor = await db.execute(
                        """
                        UPDATE users
                        SET email=(SELECT new_email FROM change_requests WHERE id=?)
                        WHERE id=(SELECT user_id FROM change_requests WHERE id=?)
                        """,
                        (request_id, request_id),
                    )
                except aiosqlite.Error as exc:
                    raise InternalInconsistencyError(
                        "internal error",
                        fields={"stage": "update_user", "error": str(exc)},
                    ) from exc
                if cursor.rowcount != 1:
                    raise InternalInconsistencyError(
                        "internal error",
                        fields={"stage": "update_user", "error": "user row missing"},
                    )
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return True
