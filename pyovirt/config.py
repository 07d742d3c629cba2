"""Client configuration."""

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_TRUE_VALUES = {"1", "true", "yes"}


class ClientConfig(BaseModel):
    """Connection settings and default retry budgets for a PyOvirt client."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Engine API base URL, e.g. https://engine/ovirt-engine/api")
    username: str = Field(default="admin@internal")
    password: Optional[str] = Field(default=None, repr=False)
    insecure: bool = Field(default=False, description="Skip TLS certificate verification")
    ca_file: Optional[str] = Field(default=None, description="CA bundle used to verify the engine")
    debug: bool = False

    request_timeout: float = Field(default=300.0, gt=0, description="Total timeout of a single request")
    connect_timeout: float = Field(default=30.0, gt=0)

    # Budget for ordinary calls when no retry strategies are passed
    default_max_tries: int = Field(default=10, ge=1)
    default_initial_delay: float = Field(default=1.0, ge=0)
    default_backoff_factor: float = Field(default=2.0, ge=1)
    default_max_delay: float = Field(default=30.0, ge=0)

    # Budget for wait_for_* status polling when no retry strategies are passed
    poll_max_tries: int = Field(default=60, ge=1)
    poll_delay: float = Field(default=5.0, ge=0)

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError(f"url must start with http:// or https://, got: {value!r}")
        return cleaned

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Load configuration from ``OVIRT_*`` environment variables.

        Keyword arguments take precedence over the environment.
        """
        values = {
            "url": os.getenv("OVIRT_URL"),
            "username": os.getenv("OVIRT_USERNAME"),
            "password": os.getenv("OVIRT_PASSWORD"),
            "insecure": _read_bool("OVIRT_INSECURE"),
            "ca_file": os.getenv("OVIRT_CAFILE"),
            "debug": _read_bool("OVIRT_DEBUG"),
            "request_timeout": os.getenv("OVIRT_REQUEST_TIMEOUT"),
            "default_max_tries": os.getenv("OVIRT_MAX_TRIES"),
            "poll_max_tries": os.getenv("OVIRT_POLL_MAX_TRIES"),
            "poll_delay": os.getenv("OVIRT_POLL_DELAY"),
        }
        values = {key: value for key, value in values.items() if value is not None}
        values.update(overrides)
        return cls(**values)


def _read_bool(key: str) -> Optional[bool]:
    value = os.getenv(key)
    if value is None:
        return None
    return value.strip().lower() in _TRUE_VALUES
