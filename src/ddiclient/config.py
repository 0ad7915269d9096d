"""Client configuration model."""

import json
import os
from pathlib import Path
from typing import Literal, Mapping, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ddiclient.errors import ConfigurationError
from ddiclient.utils.backoff import BackoffPolicy
from ddiclient.utils.verification import SUPPORTED_ALGORITHMS, validate_algorithms

ENV_PREFIX = "DDI_"


class ClientConfig(BaseModel):
    """Settings recognized by the DDI client.

    Exactly one of ``target_token`` / ``gateway_token`` must be set.
    """

    server_url: str = Field(..., description="hawkBit server URL, e.g. https://hawkbit.example.com")
    tenant: str = Field(default="DEFAULT", min_length=1)
    controller_id: str = Field(..., min_length=1, description="Device (controller) identifier")
    target_token: Optional[str] = Field(None, description="Per-device security token")
    gateway_token: Optional[str] = Field(None, description="Tenant-wide gateway token")

    hash_algorithms: tuple[str, ...] = Field(default=SUPPORTED_ALGORITHMS)

    http_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout (seconds)")
    download_max_attempts: int = Field(default=3, ge=1)
    download_retry_base_delay: float = Field(default=2.0, ge=0)
    feedback_max_attempts: int = Field(default=3, ge=1)
    feedback_retry_base_delay: float = Field(default=1.0, ge=0)
    poll_retry_base_delay: float = Field(default=5.0, ge=0)
    poll_retry_max_delay: float = Field(default=300.0, ge=0)
    active_poll_interval: float = Field(
        default=10.0, gt=0, description="Poll interval cap while an action is active"
    )

    preferred_scheme: Literal["https", "http"] = "https"
    allow_location_fallback: bool = True

    download_dir: Path = Path("./tmp/downloads")
    install_dir: Path = Path("./install")
    backup_dir: Path = Path("./backups")
    restart_service: Optional[str] = None

    attributes: dict[str, str] = Field(default_factory=dict)

    log_file: Optional[str] = "./logs/ddiclient.log"
    log_level: str = "INFO"

    @field_validator("server_url")
    @classmethod
    def valid_server_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        try:
            url = httpx.URL(v)
        except (httpx.InvalidURL, TypeError) as e:
            raise ValueError(f"Malformed server URL: {v}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Server URL must be an absolute http(s) URL: {v}")
        return v.rstrip("/")

    @field_validator("hash_algorithms", mode="before")
    @classmethod
    def valid_algorithms(cls, v):
        """Accept a comma separated string or a sequence of names."""
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        try:
            return validate_algorithms(v)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e

    @field_validator("log_level")
    @classmethod
    def valid_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @model_validator(mode="after")
    def exactly_one_token(self) -> "ClientConfig":
        """Ensure a single credential is configured."""
        if bool(self.target_token) == bool(self.gateway_token):
            raise ValueError("Exactly one of target_token or gateway_token is required")
        return self

    @property
    def controller_url(self) -> str:
        """Base resource of this device: <server>/<tenant>/controller/v1/<id>."""
        return f"{self.server_url}/{self.tenant}/controller/v1/{self.controller_id}"

    @property
    def authorization_header(self) -> str:
        if self.target_token:
            return f"TargetToken {self.target_token}"
        return f"GatewayToken {self.gateway_token}"

    def download_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.download_max_attempts,
            base_delay=self.download_retry_base_delay,
        )

    def feedback_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.feedback_max_attempts,
            base_delay=self.feedback_retry_base_delay,
        )

    def poll_policy(self) -> BackoffPolicy:
        # Only the delay curve is used; the poll loop never gives up.
        return BackoffPolicy(
            max_attempts=1,
            base_delay=self.poll_retry_base_delay,
            max_delay=self.poll_retry_max_delay,
        )

    @classmethod
    def load(cls, **values) -> "ClientConfig":
        """Build a config, turning validation failures into ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """Read ``DDI_<FIELD>`` environment variables.

        ``DDI_ATTRIBUTES`` is a JSON object, ``DDI_HASH_ALGORITHMS`` a comma
        separated list.

        Raises:
            ConfigurationError: If required values are missing or invalid
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            if name == "attributes":
                try:
                    values[name] = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"{ENV_PREFIX}ATTRIBUTES is not valid JSON: {e}") from e
            else:
                values[name] = raw
        return cls.load(**values)
