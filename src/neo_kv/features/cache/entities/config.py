"""Cache client configuration for neo-kv."""

import codecs
from typing import Optional
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

DEFAULT_PORT = 6379

# scheme -> use TLS
_SCHEMES = {
    "redis": False,
    "rediss": True,
    "https": True,
}


class ClientConfig(BaseModel):
    """Explicit, validated configuration for one cache client.

    ``https://`` endpoints (as handed out for REST access) are reached over
    TLS on the default port, matching how hosted Redis-compatible services
    expose the same database over both protocols.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Endpoint
    url: str = Field(description="Endpoint URL: redis://, rediss:// or https://")
    token: Optional[SecretStr] = Field(default=None, description="Access token sent with AUTH")
    username: Optional[str] = Field(default=None, description="ACL user for AUTH")

    # Pool settings
    pool_min_size: int = Field(default=0, ge=0, description="Idle connections kept when pruning")
    pool_max_size: int = Field(default=10, ge=1, description="Max open connections")
    acquire_timeout: float = Field(default=5.0, gt=0, description="Max wait for a free connection")
    connect_timeout: float = Field(default=5.0, gt=0, description="Max time to open a transport")
    idle_timeout: float = Field(default=300.0, gt=0, description="Idle time after which a connection is stale")

    # Request settings
    command_timeout: float = Field(default=3.0, gt=0, description="Default per-call deadline")
    max_retries: int = Field(default=2, ge=0, le=10, description="Retries for idempotent operations")
    retry_backoff: float = Field(default=0.05, ge=0, description="Linear backoff step between retries")

    # Behavior settings
    key_prefix: str = Field(default="", description="Prefix prepended to every key")
    decode_responses: bool = Field(default=True, description="Return str instead of bytes")
    encoding: str = Field(default="utf-8", description="Text encoding for keys and values")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parts = urlsplit(v.strip())
        if parts.scheme not in _SCHEMES:
            raise ValueError(
                f"Unsupported endpoint scheme {parts.scheme!r}. "
                f"Expected one of: {', '.join(sorted(_SCHEMES))}"
            )
        if not parts.hostname:
            raise ValueError(f"Endpoint URL has no host: {v!r}")
        try:
            parts.port
        except ValueError as e:
            raise ValueError(f"Invalid endpoint port in {v!r}: {e}")
        return v.strip()

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f"Unknown text encoding: {v}")
        return v

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "ClientConfig":
        if self.pool_min_size > self.pool_max_size:
            raise ValueError(
                f"pool_min_size ({self.pool_min_size}) cannot exceed "
                f"pool_max_size ({self.pool_max_size})"
            )
        return self

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname

    @property
    def port(self) -> int:
        parts = urlsplit(self.url)
        if parts.scheme == "https" and parts.port in (None, 443):
            return DEFAULT_PORT
        return parts.port or DEFAULT_PORT

    @property
    def use_tls(self) -> bool:
        return _SCHEMES[urlsplit(self.url).scheme]

    @property
    def auth_token(self) -> Optional[str]:
        """Token from the explicit field, else the password embedded in the URL."""
        if self.token is not None:
            return self.token.get_secret_value()
        password = urlsplit(self.url).password
        return unquote(password) if password else None

    @property
    def auth_username(self) -> Optional[str]:
        if self.username:
            return self.username
        user = urlsplit(self.url).username
        return unquote(user) if user else None

    @property
    def safe_url(self) -> str:
        """Endpoint without credentials for logging."""
        scheme = urlsplit(self.url).scheme
        return f"{scheme}://{self.host}:{self.port}"
