"""Per-analysis result records.

Everything here is created fresh for one analysis invocation and never
updated afterwards. Result containers are the engine's only output and are
handed to persistence/reporting collaborators unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cloudward.frameworks.schema import FrameworkType, Pillar, Severity


class RuleStatus(str, Enum):
    """Outcome of one rule evaluation.

    FAIL: at least one finding. PASS: zero findings. ERROR: the backend
    itself could not complete.
    """

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"
    ERROR = "error"


class FrameworkRunStatus(str, Enum):
    """Outcome of one framework evaluation."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class AnalysisStatus(str, Enum):
    """Outcome of a multi-framework analysis."""

    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ResourceInfo:
    """The resource a finding is about.

    An opaque passthrough of the caller-supplied shape; nothing here is
    validated against a resource schema.
    """

    type: str
    name: str
    arn: str = ""
    region: str = "unknown"
    account_id: str = ""
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Finding:
    """One detected violation of a rule against a specific resource.

    Attributes:
        id: ``<analysis_id>-<rule_id>-<sequence>``.
        severity, category, pillar: Always copied from the rule.
    """

    id: str
    rule_id: str
    rule_name: str
    severity: Severity
    category: str
    pillar: Pillar | None
    title: str
    description: str
    resource: ResourceInfo
    remediation: str
    references: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleExecutionResult:
    """Result of evaluating one enabled rule."""

    rule_id: str
    status: RuleStatus
    findings: list[Finding]
    execution_time_ms: int
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FrameworkSummary:
    """Scored roll-up of one framework's rule results.

    Severity and pillar tallies always contain every enum member.
    """

    total_rules: int
    executed_rules: int
    skipped_rules: int
    total_findings: int
    findings_by_severity: dict[str, int]
    findings_by_category: dict[str, int]
    findings_by_pillar: dict[str, int]
    score: int
    max_score: int
    percentage: float


@dataclass(frozen=True)
class FrameworkAnalysisResult:
    """Everything one framework evaluation produced.

    ``framework_type`` is None when the framework could not be resolved.
    """

    framework_id: str
    framework_name: str
    framework_type: FrameworkType | None
    status: FrameworkRunStatus
    start_time: str
    end_time: str
    duration_ms: int
    findings: list[Finding]
    rule_results: list[RuleExecutionResult]
    summary: FrameworkSummary
    error: str | None = None


@dataclass(frozen=True)
class AggregatedSummary:
    """Cross-framework roll-up over completed frameworks only."""

    total_frameworks: int
    completed_frameworks: int
    failed_frameworks: int
    total_findings: int
    findings_by_severity: dict[str, int]
    findings_by_category: dict[str, int]
    findings_by_pillar: dict[str, int]
    overall_score: float
    framework_scores: dict[str, float]
    recommendations: list[str]


@dataclass(frozen=True)
class MultiFrameworkAnalysisResult:
    """Top-level output of an analysis. ``status`` is always set."""

    analysis_id: str
    tenant_id: str
    project_id: str
    status: AnalysisStatus
    start_time: str
    end_time: str
    duration_ms: int
    frameworks: list[FrameworkAnalysisResult]
    aggregated_summary: AggregatedSummary
    metadata: dict[str, Any] = field(default_factory=dict)
