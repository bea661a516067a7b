from __future__ import annotations

from typing import ClassVar, Literal, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from log_decoder.reporter import DIAGNOSTIC_ENVIRONMENT_TAGS, DiagnosticPolicy


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Log Decoder"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    # Comma-separated deployment tags; "dev" or "local" turn on response diagnostics.
    # Primary env: ACTIVE_PROFILES; also accept APP_PROFILES as alias.
    active_profiles: str = Field(
        default="",
        validation_alias=AliasChoices("ACTIVE_PROFILES", "APP_PROFILES"),
    )

    # Response diagnostics (trace/stackTrace/rootCause). Logs always carry full detail.
    errors_include_stacktrace: bool = False
    # Limit frames so responses don't explode.
    errors_stacktrace_max_frames: int = Field(default=50, ge=0)

    # Invalid UTF-8 handling: strict -> 500 DecodeFailure, replace -> U+FFFD.
    decode_errors: Literal["strict", "replace"] = "strict"

    log_level: str = "INFO"

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        leaking = sorted(self.active_profiles_set() & DIAGNOSTIC_ENVIRONMENT_TAGS)
        if leaking:
            raise ValueError(
                "Invalid production settings: ACTIVE_PROFILES must not contain "
                + ",".join(leaking)
            )
        return self

    def active_profiles_set(self) -> frozenset[str]:
        return frozenset(x.lower() for x in _split_csv(self.active_profiles))

    def diagnostic_policy(self) -> DiagnosticPolicy:
        """Snapshot the error-diagnostics knobs into an immutable policy value."""

        return DiagnosticPolicy(
            include_diagnostics_default=self.errors_include_stacktrace,
            active_environment_tags=self.active_profiles_set(),
            max_frames=self.errors_stacktrace_max_frames,
        )

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.environment.strip().lower() == "production" and self.errors_include_stacktrace:
            warnings.append(
                "ERRORS_INCLUDE_STACKTRACE=true exposes stack traces to clients in production"
            )
        return warnings


settings = Settings()
