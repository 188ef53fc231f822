"""Backend interface shared by every rule evaluation strategy.

A backend turns one rule plus the resource inventory into findings. It
never retries and never swallows its own failures: anything it cannot
complete is raised as a BackendError subclass for the engine to record.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.frameworks.findings import Finding, ResourceInfo
from cloudward.frameworks.schema import Rule, RuleImplementationKind


@dataclass(frozen=True)
class RuleContext:
    """Everything one rule evaluation may see.

    ``resources`` is the shared read-only inventory; backends must not
    mutate it.
    """

    tenant_id: str
    project_id: str
    analysis_id: str
    framework_id: str
    rule: Rule
    resources: Sequence[Any]
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleEvaluation:
    """What a backend produced: findings plus backend-specific metadata."""

    findings: list[Finding] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class RuleBackend(ABC):
    """A strategy for evaluating one implementation kind."""

    kind: RuleImplementationKind

    @abstractmethod
    async def evaluate(self, context: RuleContext) -> RuleEvaluation:
        """Evaluate ``context.rule`` against ``context.resources``.

        Raises:
            BackendError: If the backend cannot complete.
        """

    async def close(self) -> None:
        """Release resources held by the backend."""


class ExtensionPointBackend(RuleBackend):
    """Placeholder for a valid implementation kind with no evaluator yet.

    Evaluates to zero findings and logs a warning every time, so an
    unimplemented rule is visible rather than silently passing.
    """

    def __init__(
        self,
        kind: RuleImplementationKind,
        audit: AnalysisAuditLogger | None = None,
    ) -> None:
        self.kind = kind
        self._audit = audit

    async def evaluate(self, context: RuleContext) -> RuleEvaluation:
        if self._audit is not None:
            self._audit.log_backend_not_implemented(context.rule.rule_id, self.kind.value)
        return RuleEvaluation(
            findings=[],
            metadata={"implemented": False, "implementation_kind": self.kind.value},
        )


# -----------------------------------------------------------------------
# Finding construction helpers
# -----------------------------------------------------------------------


def finding_id(analysis_id: str, rule_id: str, sequence: int) -> str:
    """Deterministic finding id for the ``sequence``-th finding of a rule."""
    return f"{analysis_id}-{rule_id}-{sequence}"


def _first(resource: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = resource.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def resource_info_from(resource: Any, context: RuleContext) -> ResourceInfo:
    """Describe a caller-supplied resource without assuming its schema.

    Reads the usual identity fields (CloudFormation-style and flat) when
    present and passes everything else through as properties.
    """
    if not isinstance(resource, dict):
        resource = {}
    properties = resource.get("Properties")
    return ResourceInfo(
        type=_first(resource, "resourceType", "Type", "type") or "Unknown",
        name=_first(
            resource, "resourceName", "PhysicalResourceId", "LogicalResourceId", "name",
        ) or "Unknown",
        arn=_first(resource, "resourceArn", "Arn", "arn") or "",
        region=_first(resource, "region", "Region") or "unknown",
        account_id=_first(resource, "accountId", "AccountId", "account_id") or context.tenant_id,
        properties=dict(properties) if isinstance(properties, dict) else dict(resource),
    )


def build_finding(
    context: RuleContext,
    sequence: int,
    resource: ResourceInfo,
    title: str,
    description: str,
    *,
    remediation: str | None = None,
    detected_by: str,
    extra_metadata: dict[str, Any] | None = None,
) -> Finding:
    """Build a Finding whose severity, category and pillar come from the rule."""
    rule = context.rule
    metadata: dict[str, Any] = {"detected_by": detected_by}
    if extra_metadata:
        metadata.update(extra_metadata)
    return Finding(
        id=finding_id(context.analysis_id, rule.rule_id, sequence),
        rule_id=rule.rule_id,
        rule_name=rule.name,
        severity=rule.severity,
        category=rule.category,
        pillar=rule.pillar,
        title=title,
        description=description,
        resource=resource,
        remediation=remediation if remediation else rule.remediation,
        references=[],
        metadata=metadata,
    )
