"""Pydantic v2 models for cloudward.yaml engine settings.

Every section is optional; an empty mapping yields a working local setup
(in-memory registry, Bedrock inference in the default region).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InferenceProvider(str, Enum):
    """Transport used for AI_INFERENCE rules."""

    BEDROCK = "bedrock"
    ANTHROPIC = "anthropic"


class RegistryBackend(str, Enum):
    """Where framework, rule, and tenant records live."""

    MEMORY = "memory"
    DYNAMODB = "dynamodb"


class InferenceSettings(BaseModel):
    """Model access for AI-evaluated rules.

    ``api_key_env`` names the environment variable holding the Anthropic API
    key; the key itself never appears in the settings file.
    """

    model_config = ConfigDict(extra="forbid")

    provider: InferenceProvider = InferenceProvider.BEDROCK
    model_id: str = "anthropic.claude-3-sonnet-20240229-v1:0"
    region: str | None = None
    max_tokens: int = Field(default=4000, gt=0)
    base_url: str = "https://api.anthropic.com"
    api_key_env: str = "ANTHROPIC_API_KEY"
    request_timeout: float = Field(default=120.0, gt=0)


class ExecutionSettings(BaseModel):
    """Concurrency and timeouts for the execution engine."""

    model_config = ConfigDict(extra="forbid")

    rule_batch_size: int = Field(default=5, gt=0)
    framework_batch_size: int = Field(default=3, gt=0)
    default_rule_timeout: float = Field(default=60.0, gt=0)
    framework_timeout: float | None = Field(default=None, gt=0)


class SandboxSettings(BaseModel):
    """Limits for sandboxed rule scripts."""

    model_config = ConfigDict(extra="forbid")

    timeout_seconds: float = Field(default=10.0, gt=0)
    cpu_seconds: int = Field(default=5, gt=0)
    memory_limit_mb: int = Field(default=256, gt=0)
    max_output_bytes: int = Field(default=1_048_576, gt=0)
    max_open_files: int = Field(default=16, gt=0)
    python_executable: str | None = None


class RegistrySettings(BaseModel):
    """Registry store selection."""

    model_config = ConfigDict(extra="forbid")

    backend: RegistryBackend = RegistryBackend.MEMORY
    table_name: str | None = None
    region: str | None = None

    @model_validator(mode="after")
    def _dynamodb_needs_table(self) -> RegistrySettings:
        if self.backend == RegistryBackend.DYNAMODB and not self.table_name:
            msg = "table_name is required when backend is 'dynamodb'"
            raise ValueError(msg)
        return self


class AuditSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_path: Path | None = None
    verbose: bool = False


class EngineSettings(BaseModel):
    """Top-level cloudward.yaml model."""

    model_config = ConfigDict(extra="forbid")

    version: str = "1.0"
    inference: InferenceSettings = Field(default_factory=InferenceSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
