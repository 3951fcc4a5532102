from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from leasekeeper.errors import ConfigError

# renew_deadline must leave room for more than one retry attempt
RETRY_MARGIN = 1.2

BACKENDS = ("kubernetes", "redis", "memory")
LOG_FORMATS = ("json", "console")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_PART_RE = re.compile(_DURATION_PART)


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings such as
    ``"500ms"``, ``"10s"`` or ``"1m30s"``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            if not _DURATION_RE.fullmatch(text):
                raise ValueError(f"invalid duration: {value!r}") from None
            seconds = sum(
                float(amount) * _DURATION_UNITS[unit]
                for amount, unit in _DURATION_PART_RE.findall(text)
            )

    # float() also accepts "nan" and "inf"
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration: {value!r}")
    return seconds


@dataclass(frozen=True)
class ElectionConfig:
    """Timing and release policy for the election coordinator.

    Args:
        lease_duration: How long a written lease stays valid (seconds)
        renew_deadline: How long the leader keeps retrying a renewal before
            stepping down; must be shorter than lease_duration
        retry_period: Cadence of acquire/observe/renew attempts
        release_on_cancel: Clear the lease on shutdown while leading
    """

    lease_duration: float = 10.0
    renew_deadline: float = 5.0
    retry_period: float = 3.0
    release_on_cancel: bool = True

    def __post_init__(self) -> None:
        for label, value in (
            ("lease duration", self.lease_duration),
            ("renew deadline", self.renew_deadline),
            ("retry period", self.retry_period),
        ):
            if not math.isfinite(value):
                raise ConfigError(f"{label} must be a finite number of seconds")
        if self.lease_duration <= 0:
            raise ConfigError("lease duration must be greater than zero")
        if self.renew_deadline <= 0:
            raise ConfigError("renew deadline must be greater than zero")
        if self.retry_period <= 0:
            raise ConfigError("retry period must be greater than zero")
        if self.lease_duration <= self.renew_deadline:
            raise ConfigError("lease duration must be greater than the renew deadline")
        if self.renew_deadline <= RETRY_MARGIN * self.retry_period:
            raise ConfigError(
                f"renew deadline must be greater than retry period * {RETRY_MARGIN}"
            )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LEASEKEEPER_", env_file=".env", extra="ignore", frozen=True
    )

    # Holder identity, generated once per process
    identity: str = Field(default_factory=lambda: str(uuid4()))

    # Lease
    lease_name: str = ""
    namespace: str = "default"
    lease_duration: float = 10.0
    lease_renew_duration: float = 5.0
    retry_period: float = 3.0
    release_on_cancel: bool = True

    # Lock store
    backend: str = "kubernetes"
    kubeconfig: str = ""
    redis_url: str = "redis://localhost:6379/0"

    # HTTP
    addr: str = ":4040"
    grace_period: float = 5.0

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator(
        "lease_duration", "lease_renew_duration", "retry_period", "grace_period", mode="before"
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("grace_period")
    @classmethod
    def _non_negative_grace(cls, value: float) -> float:
        if value < 0:
            raise ValueError("grace period must not be negative")
        return value

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in BACKENDS:
            raise ValueError(f"unsupported backend {value!r}, expected one of {BACKENDS}")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"unsupported log level {value!r}, expected one of {LOG_LEVELS}")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"unsupported log format {value!r}, expected one of {LOG_FORMATS}")
        return value

    def check_required(self) -> None:
        """Raise ConfigError if a required option is missing."""
        if not self.lease_name:
            raise ConfigError("missing flag --lease-name")
        if not self.identity:
            raise ConfigError("holder identity must not be empty")

    def election_config(self) -> ElectionConfig:
        """Build the coordinator's timing configuration."""
        return ElectionConfig(
            lease_duration=self.lease_duration,
            renew_deadline=self.lease_renew_duration,
            retry_period=self.retry_period,
            release_on_cancel=self.release_on_cancel,
        )

    def bind_address(self) -> tuple[str, int]:
        """Split ``addr`` into host and port.

        An empty host (``":4040"``) binds all interfaces.
        """
        host, sep, port = self.addr.rpartition(":")
        if not sep:
            raise ConfigError(f"invalid address {self.addr!r}, expected host:port")
        try:
            port_number = int(port)
        except ValueError as e:
            raise ConfigError(f"invalid port in address {self.addr!r}") from e
        if not 0 <= port_number <= 65535:
            raise ConfigError(f"port out of range in address {self.addr!r}")

        host = host.strip("[]") or "0.0.0.0"  # nosec B104 - matches ":port" semantics
        return host, port_number
