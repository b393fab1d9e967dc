# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Settings loader for the HTTP service and the chat bot.

Configuration comes from an INI file with environment variables as
fallbacks. The result is an immutable :class:`Settings` value that entry
points pass explicitly into the pipeline, the approval workflow and the
bot; core modules never read the environment themselves.

Example:
    Configuration file format (config.ini)::

        [storage]
        db_path = /data/filemailer.db
        job_log_path = /logs/send.log

        [server]
        host = 0.0.0.0
        port = 8080

        [delivery]
        max_file_size = 524288000

        [smtp]
        host = smtp.example.com
        port = 587
        user = mailer@example.com
        password = secret
        from = mailer@example.com

        [bot]
        telegram_token = 123456:ABC
        api_base = http://http-service:8080
        admin_chat_id = 42
        metrics_port = 9109

Environment variables:
    FM_CONFIG - Path to config.ini file (default: config.ini)
    FM_LOG_LEVEL - Logging level (default: INFO)
    DB_PATH, JOB_LOG_PATH, SCRATCH_DIR - Storage locations
    FM_HOST, FM_PORT, FM_API_TOKEN - HTTP server binding and metrics token
    MAX_FILE_SIZE - Download ceiling in bytes, 0 disables it
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM, SMTP_USE_TLS
    TELEGRAM_TOKEN, API_BASE, ADMIN_CHAT_ID - Bot settings
    BOT_METRICS_PORT - Port for the bot's Prometheus endpoint, unset disables it
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError
from .logger import get_logger

DEFAULT_MAX_FILE_SIZE = 500 * 1024 * 1024
DEFAULT_API_BASE = "http://http-service:8080"

logger = get_logger("Config")


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Attributes:
        db_path: SQLite database path.
        job_log_path: Append-only job log file.
        scratch_dir: Parent directory for per-delivery scratch folders,
            ``None`` for the system temporary directory.
        http_host: Bind address of the HTTP service.
        http_port: Bind port of the HTTP service.
        api_token: Optional token protecting ``/metrics``.
        max_file_size: Download ceiling in bytes, ``0`` disables it.
        smtp_host: SMTP server host.
        smtp_port: SMTP server port.
        smtp_user: SMTP login, optional.
        smtp_password: SMTP password, optional.
        smtp_from: Envelope and header sender.
        smtp_use_tls: Use implicit TLS instead of opportunistic STARTTLS.
        telegram_token: Bot API token.
        api_base: Base URL of the HTTP service as seen from the bot.
        admin_chat_id: Chat allowed to decide e-mail change requests.
        metrics_port: Port on which the bot serves its metrics, ``None``
            to keep them unexposed.
        log_level: Console logging level.
    """

    db_path: str = "/data/filemailer.db"
    job_log_path: str = "/logs/send.log"
    scratch_dir: str | None = None
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    api_token: str | None = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_use_tls: bool = False
    telegram_token: str | None = None
    api_base: str = DEFAULT_API_BASE
    admin_chat_id: int | None = None
    metrics_port: int | None = None
    log_level: str = "INFO"

    @property
    def smtp_complete(self) -> bool:
        """True when host, port and sender are all configured."""
        return bool(self.smtp_host and self.smtp_port and self.smtp_from)

    def require_bot(self) -> None:
        """Fail fast when the bot cannot run.

        Raises:
            ConfigurationError: If the Telegram token is missing.
        """
        if not self.telegram_token:
            raise ConfigurationError("TELEGRAM_TOKEN is empty")

    def warn_incomplete_smtp(self) -> None:
        """Log a warning when deliveries are bound to fail."""
        if not self.smtp_complete:
            logger.warning("SMTP settings are incomplete, email sending will likely fail")


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(name: str, value: str | None, default: int | None) -> int | None:
    if value is None or not str(value).strip():
        return default
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(config_path: str | os.PathLike | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Load configuration from an INI file with environment fallbacks.

    Values found in the file win over environment variables; missing keys
    fall back to the environment and then to the :class:`Settings` defaults.
    A missing file is not an error.

    Args:
        config_path: INI file path. Defaults to ``$FM_CONFIG`` or ``config.ini``.
        environ: Mapping used instead of ``os.environ`` (handy in tests).

    Returns:
        A frozen :class:`Settings` instance.

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("FM_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(path)

    def get(section: str, option: str, env_name: str) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return env.get(env_name)

    defaults = Settings()
    db_path = _clean(get("storage", "db_path", "DB_PATH")) or defaults.db_path
    admin_chat = _parse_int("ADMIN_CHAT_ID", get("bot", "admin_chat_id", "ADMIN_CHAT_ID"), None)
    max_size = _parse_int("MAX_FILE_SIZE", get("delivery", "max_file_size", "MAX_FILE_SIZE"), defaults.max_file_size)

    settings = Settings(
        db_path=os.path.expanduser(db_path),
        job_log_path=_clean(get("storage", "job_log_path", "JOB_LOG_PATH")) or defaults.job_log_path,
        scratch_dir=_clean(get("storage", "scratch_dir", "SCRATCH_DIR")),
        http_host=_clean(get("server", "host", "FM_HOST")) or defaults.http_host,
        http_port=_parse_int("FM_PORT", get("server", "port", "FM_PORT"), defaults.http_port),
        api_token=_clean(get("server", "api_token", "FM_API_TOKEN")),
        max_file_size=max(0, max_size),
        smtp_host=_clean(get("smtp", "host", "SMTP_HOST")),
        smtp_port=_parse_int("SMTP_PORT", get("smtp", "port", "SMTP_PORT"), None),
        smtp_user=_clean(get("smtp", "user", "SMTP_USER")),
        smtp_password=_clean(get("smtp", "password", "SMTP_PASS")),
        smtp_from=_clean(get("smtp", "from", "SMTP_FROM")),
        smtp_use_tls=_parse_bool(get("smtp", "use_tls", "SMTP_USE_TLS"), False),
        telegram_token=_clean(get("bot", "telegram_token", "TELEGRAM_TOKEN")),
        api_base=(_clean(get("bot", "api_base", "API_BASE")) or defaults.api_base).rstrip("/"),
        admin_chat_id=admin_chat,
        metrics_port=_parse_int("BOT_METRICS_PORT", get("bot", "metrics_port", "BOT_METRICS_PORT"), None) or None,
        log_level=_clean(env.get("FM_LOG_LEVEL")) or defaults.log_level,
    )
    return settings
