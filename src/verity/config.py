"""Configuration for suite runs and for the engine itself."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from verity.enums import ExecutionMode, TestCategory, VerificationLevel


class SuiteConfig(BaseModel):
    """Scheduling policy for one suite execution.

    Empty ``categories`` or ``verification_levels`` select everything.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ExecutionMode = Field(default=ExecutionMode.FULL, description="Preset scope of the run")
    categories: tuple[TestCategory, ...] = Field(default=(), description="Categories to run")
    verification_levels: tuple[VerificationLevel, ...] = Field(default=(), description="Levels to run")
    parallel_execution: bool = Field(default=True, description="Use the bounded worker pool")
    max_concurrency: int = Field(default=4, ge=1, description="Maximum tests in flight")
    stop_on_first_failure: bool = Field(default=False, description="Stop scheduling after a failure")
    retry_failed_tests: bool = Field(default=False, description="Retry failed retryable tests in place")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")

    @classmethod
    def for_mode(cls, mode: ExecutionMode, **overrides: Any) -> SuiteConfig:
        """Preset configuration for an execution mode."""
        presets: dict[ExecutionMode, dict[str, Any]] = {
            ExecutionMode.QUICK: {
                "categories": (TestCategory.API_ENDPOINTS, TestCategory.AUTHENTICATION),
                "verification_levels": (VerificationLevel.CRITICAL, VerificationLevel.HIGH),
            },
            ExecutionMode.TARGETED: {
                "verification_levels": (
                    VerificationLevel.CRITICAL,
                    VerificationLevel.HIGH,
                    VerificationLevel.MEDIUM,
                ),
            },
        }
        return cls(mode=mode, **{**presets.get(mode, {}), **overrides})

    def merged(self, overrides: SuiteConfig | Mapping[str, Any] | None) -> SuiteConfig:
        """Return a copy with ``overrides`` applied on top.

        A full ``SuiteConfig`` only overrides the fields that were explicitly set on it.
        """
        if overrides is None:
            return self
        if isinstance(overrides, SuiteConfig):
            updates = {name: getattr(overrides, name) for name in overrides.model_fields_set}
        else:
            updates = dict(overrides)
        return SuiteConfig.model_validate({**self.model_dump(), **updates})

    def includes(self, category: TestCategory, level: VerificationLevel) -> bool:
        """Check whether a test with this category and level is selected."""
        if self.categories and category not in self.categories:
            return False
        if self.verification_levels and level not in self.verification_levels:
            return False
        return True

    @classmethod
    def from_file(cls, config_path: str | Path) -> SuiteConfig:
        """Load configuration from a YAML or JSON file."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.model_validate(data)

    def save(self, config_path: str | Path) -> None:
        """Save configuration to a YAML or JSON file."""
        path = Path(config_path)
        data = self.model_dump(mode="json")

        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in [".yaml", ".yml"]:
                yaml.safe_dump(data, f, default_flow_style=False, indent=2)
            else:
                json.dump(data, f, indent=2)


class EngineSettings(BaseSettings):
    """Engine-wide settings, constructed once and passed to the engine.

    Loads from environment variables automatically:
        VERITY_DEFAULT_TIMEOUT, VERITY_RETRY_DELAY, VERITY_CANCEL_GRACE_PERIOD,
        VERITY_ENABLE_TRACING, VERITY_TRACE_OUTPUT
    """

    default_timeout: float = Field(default=30.0, gt=0, description="Per-test timeout in seconds")
    retry_delay: float = Field(default=1.0, ge=0, description="Base delay between retries in seconds")
    cancel_grace_period: float = Field(
        default=1.0, ge=0, description="Seconds to wait for an abandoned test body to unwind"
    )
    enable_tracing: bool = Field(default=False, description="Emit OpenTelemetry spans per test")
    trace_output: Path = Field(default=Path("traces.jsonl"), description="JSONL file for spans")

    model_config = SettingsConfigDict(
        env_prefix="VERITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
