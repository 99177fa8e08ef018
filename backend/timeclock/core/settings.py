from __future__ import annotations

import json
from functools import lru_cache
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


CAPTURE_GATES = {"null", "handshake", "http"}


class _FallbackEnvSettingsSource(EnvSettingsSource):
    """Allow ALLOW_ORIGINS to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name == "allow_origins":
                return value
            raise


class _FallbackDotEnvSettingsSource(DotEnvSettingsSource):
    """Allow ALLOW_ORIGINS to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name == "allow_origins":
                return value
            raise


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    project_name: str = "Agency Time Clock API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="sqlite:///./timeclock.db",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # CORS
    allow_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    # Capture (monitoring) handshake gating clock-in
    capture_required: bool = Field(
        default=True,
        description="Require a successful screen-capture handshake before clock-in commits",
        validation_alias=AliasChoices("CAPTURE_REQUIRED"),
    )
    capture_gate: str = Field(
        default="handshake",
        description="Capture gate implementation: null, handshake, http",
        validation_alias=AliasChoices("CAPTURE_GATE"),
    )
    capture_timeout_seconds: float = Field(
        default=60.0,
        description="Max seconds a clock-in waits on the capture handshake",
        validation_alias=AliasChoices("CAPTURE_TIMEOUT_SECONDS"),
    )
    capture_service_url: str | None = Field(
        default=None,
        description="Base URL of the external monitoring service (http gate)",
        validation_alias=AliasChoices("CAPTURE_SERVICE_URL"),
    )
    capture_service_token: str | None = Field(
        default=None,
        description="Service token sent to the external monitoring service",
        validation_alias=AliasChoices("CAPTURE_SERVICE_TOKEN"),
    )
    capture_http_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for requests to the external monitoring service",
        validation_alias=AliasChoices("CAPTURE_HTTP_TIMEOUT_SECONDS"),
    )

    # Reporting
    report_timezone: str = Field(
        default="UTC",
        description="IANA timezone used for day/week/month report boundaries",
        validation_alias=AliasChoices("REPORT_TIMEZONE", "TZ_REPORTS"),
    )

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value.strip():
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return [
            "http://localhost",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]

    @field_validator("capture_gate")
    @classmethod
    def normalize_capture_gate(cls, value: str) -> str:
        gate = (value or "").strip().lower()
        if gate not in CAPTURE_GATES:
            return "handshake"
        return gate

    @field_validator("report_timezone")
    @classmethod
    def validate_report_timezone(cls, value: str) -> str:
        name = (value or "").strip() or "UTC"
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {name}") from exc
        return name

    @property
    def report_tz(self) -> ZoneInfo:
        return ZoneInfo(self.report_timezone)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _FallbackEnvSettingsSource(settings_cls),
            _FallbackDotEnvSettingsSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
