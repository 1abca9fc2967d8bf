import pytest

from config import DEFAULT_DATABASE, DEFAULT_MODEL, ConfigError, load_settings


def test_missing_api_key_refuses_to_load():
    with pytest.raises(ConfigError, match="Missing Gemini API key"):
        load_settings({})


def test_blank_api_key_refuses_to_load():
    with pytest.raises(ConfigError):
        load_settings({"GEMINI_API_KEY": "   "})


def test_defaults():
    settings = load_settings({"GEMINI_API_KEY": "abc"})

    assert settings.gemini_api_key == "abc"
    assert settings.gemini_model == DEFAULT_MODEL
    assert settings.database_path == DEFAULT_DATABASE
    assert settings.log_level == "INFO"
    assert settings.debug is False
    assert len(settings.secret_key) == 64


def test_overrides():
    settings = load_settings({
        "GEMINI_API_KEY": "abc",
        "GEMINI_MODEL": "gemini-2.5-pro",
        "DATABASE_PATH": "/tmp/journal.db",
        "SECRET_KEY": "fixed",
        "LOG_LEVEL": "debug",
        "FLASK_DEBUG": "true",
    })

    assert settings.gemini_model == "gemini-2.5-pro"
    assert settings.database_path == "/tmp/journal.db"
    assert settings.secret_key == "fixed"
    assert settings.log_level == "DEBUG"
    assert settings.debug is True
