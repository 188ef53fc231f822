"""Pydantic v2 models for framework, rule, and tenant configuration definitions.

These are the long-lived records owned by the registry. They are validated
every time they are read back from the store, so a malformed item surfaces
as a validation error at the registry boundary rather than deep inside a
rule backend.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FrameworkType(str, Enum):
    """Kind of standard a framework represents."""

    GENERIC_BEST_PRACTICE = "generic-best-practice"
    BEST_PRACTICE_LENS = "best-practice-lens"
    SERVICE_DELIVERY = "service-delivery"
    COMPETENCY = "competency"
    POSTURE_MANAGEMENT = "posture-management"
    CUSTOM = "custom"


class FrameworkStatus(str, Enum):
    """Publication status. Only status may change once a framework is published."""

    ACTIVE = "active"
    DRAFT = "draft"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class Severity(str, Enum):
    """Finding severity, most severe first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"


class Pillar(str, Enum):
    """High-level categorization axis, orthogonal to category and severity."""

    OPERATIONAL_EXCELLENCE = "operational-excellence"
    SECURITY = "security"
    RELIABILITY = "reliability"
    PERFORMANCE_EFFICIENCY = "performance-efficiency"
    COST_OPTIMIZATION = "cost-optimization"
    SUSTAINABILITY = "sustainability"


class RuleImplementationKind(str, Enum):
    """Which evaluation backend understands a rule's payload.

    DECLARATIVE_POLICY and EXTERNAL_PROCESS are valid kinds with no working
    backend yet; they evaluate to zero findings with a warning.
    """

    AI_INFERENCE = "ai-inference"
    SANDBOXED_SCRIPT = "sandboxed-script"
    DECLARATIVE_POLICY = "declarative-policy"
    EXTERNAL_PROCESS = "external-process"


class RuleImplementation(BaseModel):
    """How a rule is evaluated.

    Attributes:
        kind: Selects the backend.
        payload: Prompt template or script body, interpreted by the backend.
        language: Language hint for the payload (e.g. "python", "natural").
        runtime: Runtime hint for external evaluators.
        dependencies: Declared dependencies (informational).
        timeout: Per-rule timeout in seconds. None uses the engine default.
        memory_limit_mb: Memory cap for sandboxed execution.
    """

    model_config = ConfigDict(frozen=True)

    kind: RuleImplementationKind
    payload: str = ""
    language: str | None = None
    runtime: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    timeout: float | None = None
    memory_limit_mb: int | None = None

    @field_validator("timeout")
    @classmethod
    def _timeout_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            msg = f"timeout must be positive, got {value}"
            raise ValueError(msg)
        return value


class Framework(BaseModel):
    """A named, versioned collection of rules.

    Rules are stored and fetched separately so their lifecycle is independent
    of the framework record.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: FrameworkType
    name: str
    description: str = ""
    version: str
    status: FrameworkStatus = FrameworkStatus.ACTIVE
    categories: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None


class Rule(BaseModel):
    """A single checkable condition within one framework.

    ``rule_id`` is the human-facing code (e.g. "SEC.01") and is unique within
    its framework only.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    framework_id: str
    rule_id: str
    name: str
    description: str = ""
    severity: Severity
    pillar: Pillar | None = None
    category: str
    tags: list[str] = Field(default_factory=list)
    implementation: RuleImplementation
    conditions: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    remediation: str = ""


class CustomRule(BaseModel):
    """A tenant-authored rule attached to a framework configuration."""

    id: str
    name: str
    description: str = ""
    severity: Severity
    category: str
    pillar: Pillar | None = None
    implementation: RuleImplementation
    conditions: dict[str, Any] = Field(default_factory=dict)
    remediation: str = ""


class FrameworkSettings(BaseModel):
    """Per-tenant evaluation settings for a framework.

    strict_mode: Rules whose backend errored count as not passed when scoring.
    include_informational: Stored for consumers; the engine reports
        informational findings either way.
    """

    strict_mode: bool = False
    include_informational: bool = True
    custom_severity_levels: dict[str, Any] = Field(default_factory=dict)
    notification_settings: dict[str, Any] = Field(default_factory=dict)


class TenantFrameworkConfig(BaseModel):
    """Which rules of a framework run for a tenant, and with what parameters.

    A rule absent from ``enabled_rules`` is not executed and not scored.
    """

    tenant_id: str
    framework_id: str
    name: str = ""
    description: str | None = None
    is_default: bool = False
    enabled_rules: list[str] = Field(default_factory=list)
    custom_rules: list[CustomRule] = Field(default_factory=list)
    rule_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
    settings: FrameworkSettings = Field(default_factory=FrameworkSettings)
    created_at: str | None = None
    updated_at: str | None = None

    def parameters_for(self, rule: Rule) -> dict[str, Any]:
        """Return the rule's parameters overlaid with this tenant's overrides."""
        merged = dict(rule.parameters)
        merged.update(self.rule_overrides.get(rule.rule_id, {}))
        return merged
