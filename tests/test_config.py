import pytest

from filemailer.config import DEFAULT_API_BASE, DEFAULT_MAX_FILE_SIZE, Settings, load_settings
from filemailer.errors import ConfigurationError


def test_defaults_without_file_or_env(tmp_path):
    settings = load_settings(tmp_path / "missing.ini", environ={})
    assert settings == Settings()
    assert settings.max_file_size == DEFAULT_MAX_FILE_SIZE == 500 * 1024 * 1024
    assert settings.api_base == DEFAULT_API_BASE
    assert settings.job_log_path == "/logs/send.log"
    assert settings.smtp_complete is False


def test_environment_fallbacks(tmp_path):
    env = {
        "DB_PATH": str(tmp_path / "fm.db"),
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": "587",
        "SMTP_USER": "bot",
        "SMTP_PASS": "secret",
        "SMTP_FROM": "bot@example.com",
        "SMTP_USE_TLS": "yes",
        "TELEGRAM_TOKEN": "123:ABC",
        "API_BASE": "http://svc:8080/",
        "ADMIN_CHAT_ID": "42",
        "MAX_FILE_SIZE": "1024",
        "FM_LOG_LEVEL": "DEBUG",
        "BOT_METRICS_PORT": "9109",
    }
    settings = load_settings(tmp_path / "missing.ini", environ=env)

    assert settings.db_path == str(tmp_path / "fm.db")
    assert settings.smtp_port == 587
    assert settings.smtp_password == "secret"
    assert settings.smtp_use_tls is True
    assert settings.smtp_complete is True
    assert settings.api_base == "http://svc:8080"
    assert settings.admin_chat_id == 42
    assert settings.max_file_size == 1024
    assert settings.log_level == "DEBUG"
    assert settings.metrics_port == 9109


def test_ini_values_win_over_environment(tmp_path):
    ini = tmp_path / "config.ini"
    ini.write_text(
        "[storage]\njob_log_path = /var/log/fm.log\n"
        "[server]\nport = 9000\napi_token = tok\n"
        "[delivery]\nmax_file_size = -5\n"
        "[bot]\nadmin_chat_id = 7\n",
        encoding="utf-8",
    )
    settings = load_settings(ini, environ={"FM_PORT": "1234", "ADMIN_CHAT_ID": "99"})

    assert settings.job_log_path == "/var/log/fm.log"
    assert settings.http_port == 9000
    assert settings.api_token == "tok"
    assert settings.max_file_size == 0
    assert settings.admin_chat_id == 7


def test_fm_config_env_selects_file(tmp_path):
    ini = tmp_path / "other.ini"
    ini.write_text("[smtp]\nhost = mail.local\n", encoding="utf-8")
    settings = load_settings(environ={"FM_CONFIG": str(ini)})
    assert settings.smtp_host == "mail.local"


def test_bad_integer_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path / "missing.ini", environ={"SMTP_PORT": "abc"})


def test_require_bot():
    with pytest.raises(ConfigurationError) as excinfo:
        Settings().require_bot()
    assert excinfo.value.code == "configuration_error"
    Settings(telegram_token="123:ABC").require_bot()


def test_warn_incomplete_smtp(caplog):
    with caplog.at_level("WARNING"):
        Settings().warn_incomplete_smtp()
    assert "SMTP settings are incomplete" in caplog.text
