from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_REQUEST_MODES = ("messages", "prompt")


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_", case_sensitive=False)

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 10000

    # Upstream provider
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"
    upstream_timeout_s: float = 60.0
    default_model: str = "gpt-5-mini"
    default_temperature: float | None = Field(default=None, ge=0, le=2)
    default_max_tokens: int | None = Field(default=None, ge=1)
    fixed_temperature_model_prefixes: str = Field(
        default="gpt-5,o1,o3,o4",
        description="Comma separated model prefixes that reject an explicit temperature",
    )

    # Request shape
    request_mode: str = "prompt"
    system_prompt: str = "You are a helpful support assistant for the agent viewing this ticket."
    max_body_bytes: int = 1_048_576

    # Origin gating
    allowed_origins: str = Field(default="", description="Comma separated exact origins")
    allowed_origin: str = ""
    dev_origins: str = "http://localhost:3000"
    allowed_origin_suffixes: str = ".apps.zdusercontent.com"
    origin_strict: bool = False

    # Streaming
    heartbeat_interval_s: float = Field(default=15.0, gt=0)

    @property
    def request_mode_normalized(self) -> str:
        return self.request_mode.strip().lower()

    @property
    def exact_origin_list(self) -> list[str]:
        return [
            *_split_csv(self.allowed_origins),
            *_split_csv(self.allowed_origin),
            *_split_csv(self.dev_origins),
        ]

    @property
    def origin_suffix_list(self) -> list[str]:
        return _split_csv(self.allowed_origin_suffixes)

    @property
    def fixed_temperature_prefix_tuple(self) -> tuple[str, ...]:
        return tuple(_split_csv(self.fixed_temperature_model_prefixes))


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
