import logging
import os
import secrets
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_DATABASE = "affirmations.db"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str
    gemini_model: str = DEFAULT_MODEL
    database_path: str = DEFAULT_DATABASE
    secret_key: str = ""
    log_level: str = "INFO"
    debug: bool = False


def _flag(value):
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(environ=None):
    """
    Read settings from the environment (and a .env file, if present).

    Raises ConfigError when GEMINI_API_KEY is missing, so the server never
    starts without a usable model client.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    api_key = (environ.get("GEMINI_API_KEY") or "").strip()
    if not api_key:
        raise ConfigError("Missing Gemini API key")

    return Settings(
        gemini_api_key=api_key,
        gemini_model=environ.get("GEMINI_MODEL") or DEFAULT_MODEL,
        database_path=environ.get("DATABASE_PATH") or DEFAULT_DATABASE,
        secret_key=environ.get("SECRET_KEY") or secrets.token_hex(32),
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        debug=_flag(environ.get("FLASK_DEBUG")),
    )


def configure_logging(level="INFO"):
    logging.basicConfig(level=level, format=LOG_FORMAT)
