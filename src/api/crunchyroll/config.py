"""
Crunchyroll client configuration, read from environment variables (and a .env
file when present).
"""

import os

from dotenv import find_dotenv, load_dotenv
from pydantic import Field

from api.crunchyroll.models import DEFAULT_LOCALE
from utils.pydantic_tools import BaseModelWithMethods

API_BASE = "https://www.crunchyroll.com"
PLAY_API_BASE = "https://cr-play-service.prd.crunchyrollsvc.com"


class CrunchyrollSettings(BaseModelWithMethods):
    api_base: str = API_BASE
    play_api_base: str = PLAY_API_BASE
    default_cache_ttl: float = 5 * 60
    request_timeout: int = 30
    max_retries: int = 3
    rate_limit_max: int = 10
    rate_limit_period: float = 1.0
    credentials_timeout: float = 5.0
    credentials_retries: int = Field(default=2, ge=0)
    storage_path: str = "~/.crunchyroll/credentials.json"
    default_locale: str = DEFAULT_LOCALE

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "CrunchyrollSettings":
        """Build settings from CRUNCHYROLL_* environment variables."""
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))

        env_fields = {
            "api_base": "CRUNCHYROLL_API_BASE",
            "play_api_base": "CRUNCHYROLL_PLAY_API_BASE",
            "default_cache_ttl": "CRUNCHYROLL_DEFAULT_CACHE_TTL",
            "request_timeout": "CRUNCHYROLL_REQUEST_TIMEOUT",
            "max_retries": "CRUNCHYROLL_MAX_RETRIES",
            "rate_limit_max": "CRUNCHYROLL_RATE_LIMIT_MAX",
            "rate_limit_period": "CRUNCHYROLL_RATE_LIMIT_PERIOD",
            "credentials_timeout": "CRUNCHYROLL_CREDENTIALS_TIMEOUT",
            "credentials_retries": "CRUNCHYROLL_CREDENTIALS_RETRIES",
            "storage_path": "CRUNCHYROLL_STORAGE_PATH",
            "default_locale": "CRUNCHYROLL_LOCALE",
        }
        values = {
            field: os.environ[env_var] for field, env_var in env_fields.items() if os.getenv(env_var)
        }
        # pydantic coerces the numeric strings
        return cls.model_validate(values)
