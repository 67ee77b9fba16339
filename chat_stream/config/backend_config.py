from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


LOCAL_HOSTS = {"127.0.0.1", "localhost"}


class BackendConfig(BaseSettings):
    """Settings describing the chat-completion backend and its endpoints."""

    base_url: str = Field("http://127.0.0.1:50505", alias="BACKEND_BASE_URL")
    timeout: float = Field(60.0, alias="BACKEND_TIMEOUT")
    history_enabled: bool = Field(False, alias="HISTORY_ENABLED")
    auth_enabled: bool = Field(False, alias="AUTH_ENABLED")

    conversation_path: str = Field("/conversation", alias="BACKEND_CONVERSATION_PATH")
    history_generate_path: str = Field("/history/generate", alias="BACKEND_HISTORY_GENERATE_PATH")
    history_update_path: str = Field("/history/update", alias="BACKEND_HISTORY_UPDATE_PATH")
    history_clear_path: str = Field("/history/clear", alias="BACKEND_HISTORY_CLEAR_PATH")
    history_ensure_path: str = Field("/history/ensure", alias="BACKEND_HISTORY_ENSURE_PATH")
    user_info_path: str = Field("/.auth/me", alias="BACKEND_USER_INFO_PATH")

    @field_validator("base_url")
    def validate_base_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("BACKEND_BASE_URL must be an absolute http(s) URL")
        return value.rstrip("/")

    @field_validator("timeout")
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("BACKEND_TIMEOUT must be positive")
        return value

    @field_validator(
        "conversation_path",
        "history_generate_path",
        "history_update_path",
        "history_clear_path",
        "history_ensure_path",
        "user_info_path",
    )
    def validate_path(cls, value: str) -> str:
        value = value.strip()
        return value if value.startswith("/") else f"/{value}"

    @property
    def is_local(self) -> bool:
        """Return True when the backend is served from the local machine."""
        return urlparse(self.base_url).hostname in LOCAL_HOSTS

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache()
def get_backend_config() -> BackendConfig:
    """Return a cached backend configuration."""

    return BackendConfig()
