"""
Runtime configuration

One settings object read from the environment (``LIFELINES_*``) or a local
``.env`` file. The server facade, the sync engine and the CLI all take their
defaults from here; tests construct ``LifelinesSettings(...)`` directly.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LifelinesSettings(BaseSettings):
    """Configuration for server, client and CLI"""

    model_config = SettingsConfigDict(
        env_prefix="LIFELINES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_path: Path | None = Field(
        default=None, description="SQLite file for snapshots and audit (None = memory only)"
    )
    seed_demo_data: bool = Field(
        default=True, description="Load demo identities and projects into an empty store"
    )

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=4000, ge=1, le=65535)

    # Client / sync
    api_base_url: str = Field(default="http://127.0.0.1:4000/api")
    remote_timeout_seconds: float = Field(
        default=5.0, description="Upper bound on any single remote call"
    )
    drain_interval_seconds: float = Field(
        default=8.0, description="Background outbox drain interval"
    )
    client_state_path: Path | None = Field(
        default=None, description="SQLite file where the client persists its offline pack"
    )

    # Audit
    snapshot_audit_limit: int = Field(
        default=400, ge=0, description="Audit records shipped with each snapshot"
    )
    audit_memory_limit: int = Field(
        default=5000, ge=1, description="In-memory audit records kept when a durable sink exists"
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("remote_timeout_seconds", "drain_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> LifelinesSettings:
    """Process-wide settings loaded once from the environment"""
    return LifelinesSettings()
