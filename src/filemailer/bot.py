# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Telegram transport for the chat command surface.

Long-polls the Bot API ``getUpdates`` method with aiohttp and hands every
text message to a :class:`~filemailer.commands.CommandRouter` in its own
task, so a slow delivery never blocks other chats. Replies go out through
``sendMessage``; send failures are logged and never raised.

Example:
    Running the bot from settings::

        settings = load_settings()
        asyncio.run(run_bot(settings))
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from .approvals import ApprovalStateMachine
from .client import FilemailerClient
from .commands import CommandRouter
from .config import Settings
from .credentials import CredentialResolver
from .logger import get_logger
from .persistence import Persistence
from .prometheus import DeliveryMetrics

TELEGRAM_API = "https://api.telegram.org"
RETRY_DELAY = 3.0

logger = get_logger("Bot")


class TelegramBot:
    """Minimal Bot API client running the polling loop.

    Attributes:
        router: Command router receiving every text message.
        poll_timeout: Long-poll timeout passed to ``getUpdates``.
    """

    def __init__(
        self,
        token: str,
        router: CommandRouter | None = None,
        *,
        poll_timeout: int = 60,
        api_base: str = TELEGRAM_API,
    ):
        self.router = router
        self.poll_timeout = poll_timeout
        self._token = token
        self._base = f"{api_base.rstrip('/')}/bot{token}"
        self._session: aiohttp.ClientSession | None = None
        self._offset = 0
        self._tasks: set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    def _redact(self, exc: BaseException) -> str:
        # aiohttp errors may echo the request URL, which embeds the token
        return (str(exc) or exc.__class__.__name__).replace(self._token, "<token>")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.poll_timeout + 10)
            )
        return self._session

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        session = await self._get_session()
        async with session.post(f"{self._base}/{method}", json=payload) as resp:
            data = await resp.json(content_type=None)
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise RuntimeError(f"{method} failed: {description or resp.status}")
        return data.get("result")

    async def send(self, chat_id: int, text: str) -> None:
        """Send a text message; errors are logged."""
        try:
            await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as exc:
            logger.warning("sendMessage to chat %s failed: %s", chat_id, self._redact(exc))

    async def get_updates(self) -> list[dict[str, Any]]:
        """Fetch the next batch of updates and advance the offset."""
        updates = await self._call(
            "getUpdates",
            {"offset": self._offset, "timeout": self.poll_timeout, "allowed_updates": ["message"]},
        )
        updates = updates or []
        for update in updates:
            self._offset = max(self._offset, int(update["update_id"]) + 1)
        return updates

    async def handle_update(self, update: dict[str, Any]) -> None:
        """Route one update and send its replies."""
        message = update.get("message")
        if not message or self.router is None:
            return
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if "id" not in chat or "id" not in sender:
            return
        replies = await self.router.handle(
            chat_id=chat["id"],
            user_id=sender["id"],
            username=sender.get("username"),
            text=message.get("text"),
        )
        for reply in replies:
            await self.send(reply.chat_id, reply.text)

    def _spawn(self, update: dict[str, Any]) -> None:
        task = asyncio.create_task(self.handle_update(update))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Update handler failed: %s", task.exception())

    async def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        logger.info("bot started")
        try:
            while not self._stopping.is_set():
                try:
                    updates = await self.get_updates()
                except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as exc:
                    logger.warning("getUpdates failed: %s", self._redact(exc))
                    await asyncio.sleep(RETRY_DELAY)
                    continue
                for update in updates:
                    self._spawn(update)
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.close()

    def stop(self) -> None:
        self._stopping.set()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


async def run_bot(settings: Settings) -> None:
    """Wire the bot from settings and poll forever.

    Raises:
        ConfigurationError: If the Telegram token is missing.
    """
    settings.require_bot()
    persistence = Persistence(settings.db_path)
    await persistence.init_db()
    if settings.admin_chat_id is None:
        logger.warning("ADMIN_CHAT_ID is not set, e-mail change requests cannot be decided")

    metrics = DeliveryMetrics()
    if settings.metrics_port:
        metrics.serve(settings.metrics_port)
        logger.info("metrics served on port %s", settings.metrics_port)

    credentials = CredentialResolver(persistence)
    bot = TelegramBot(settings.telegram_token)
    approvals = ApprovalStateMachine(
        persistence,
        credentials,
        admin_chat_id=settings.admin_chat_id,
        notify=bot.send,
        metrics=metrics,
    )
    bot.router = CommandRouter(credentials, approvals, FilemailerClient(settings.api_base))
    await bot.run()
