"""
Environment-backed settings for the cache client.

Loading lives outside the client itself: services call
``load_client_config()`` once at startup and hand the resulting
``ClientConfig`` to ``CacheClient``.
"""
from typing import Optional

from pydantic import AliasChoices, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.exceptions import ConfigurationError
from ..features.cache.entities.config import ClientConfig

URL_ENV_VARS = ("NEO_KV_URL", "UPSTASH_REDIS_URL")
TOKEN_ENV_VARS = ("NEO_KV_TOKEN", "UPSTASH_REDIS_TOKEN")


class CacheClientSettings(BaseSettings):
    """Cache client settings read from the environment or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="NEO_KV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Endpoint
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices(*URL_ENV_VARS))
    token: Optional[SecretStr] = Field(default=None, validation_alias=AliasChoices(*TOKEN_ENV_VARS))
    username: Optional[str] = Field(default=None)

    # Pool Configuration
    pool_min_size: int = Field(default=0)
    pool_max_size: int = Field(default=10)
    acquire_timeout: float = Field(default=5.0)
    connect_timeout: float = Field(default=5.0)
    idle_timeout: float = Field(default=300.0)

    # Request Configuration
    command_timeout: float = Field(default=3.0)
    max_retries: int = Field(default=2)
    retry_backoff: float = Field(default=0.05)

    # Behavior
    key_prefix: str = Field(default="")
    decode_responses: bool = Field(default=True)

    def to_client_config(self) -> ClientConfig:
        """Validate into a ``ClientConfig``, failing fast on missing fields."""
        if not self.url:
            raise ConfigurationError(
                f"Cache endpoint URL is not configured. Set one of: {', '.join(URL_ENV_VARS)}",
                details={"missing": ["url"]},
            )
        try:
            return ClientConfig(**self.model_dump(exclude_none=True))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid cache client configuration: {e}",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e


def load_client_config(**overrides) -> ClientConfig:
    """Load client configuration from the environment.

    Keyword overrides take precedence over environment values.
    """
    return CacheClientSettings(**overrides).to_client_config()
