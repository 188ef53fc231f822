"""Framework execution engine.

Turns "analyze tenant T, project P, frameworks [F1..Fn], resources R" into
a complete result set. Errors are contained at the smallest unit that can
hold them: a failing rule becomes an ``error`` rule result, a failing
framework becomes a ``failed`` framework result, and the analysis as a
whole always returns a status rather than raising.

The engine holds no state between invocations.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.dispatch.base import RuleContext
from cloudward.dispatch.dispatcher import RuleDispatcher
from cloudward.engine.batching import run_in_batches
from cloudward.engine.scoring import (
    aggregate,
    empty_aggregate,
    empty_framework_summary,
    overall_status,
    summarize_framework,
)
from cloudward.errors import (
    FrameworkNotFoundError,
    RegistryUnavailableError,
    TenantConfigNotFoundError,
)
from cloudward.frameworks.catalog import create_custom_rule
from cloudward.frameworks.findings import (
    AnalysisStatus,
    FrameworkAnalysisResult,
    FrameworkRunStatus,
    MultiFrameworkAnalysisResult,
    RuleExecutionResult,
    RuleStatus,
)
from cloudward.frameworks.registry import FrameworkRegistry
from cloudward.frameworks.schema import Framework, Rule, TenantFrameworkConfig

DEFAULT_RULE_BATCH_SIZE = 5
DEFAULT_FRAMEWORK_BATCH_SIZE = 3


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class FrameworkExecutionEngine:
    """Evaluates frameworks for a tenant with bounded concurrency."""

    def __init__(
        self,
        registry: FrameworkRegistry,
        dispatcher: RuleDispatcher,
        *,
        rule_batch_size: int = DEFAULT_RULE_BATCH_SIZE,
        framework_batch_size: int = DEFAULT_FRAMEWORK_BATCH_SIZE,
        framework_timeout: float | None = None,
        audit: AnalysisAuditLogger | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Resolves frameworks, rules, and tenant configuration.
            dispatcher: Evaluates one rule at a time.
            rule_batch_size: Rules evaluated concurrently within a framework.
            framework_batch_size: Frameworks evaluated concurrently.
            framework_timeout: Seconds allowed per framework; None means no limit.
            audit: Event logger. Defaults to stderr-only logging.
        """
        if rule_batch_size <= 0 or framework_batch_size <= 0:
            msg = "Batch sizes must be positive."
            raise ValueError(msg)
        self._registry = registry
        self._dispatcher = dispatcher
        self._rule_batch_size = rule_batch_size
        self._framework_batch_size = framework_batch_size
        self._framework_timeout = framework_timeout
        self._audit = audit if audit is not None else AnalysisAuditLogger()

    @property
    def registry(self) -> FrameworkRegistry:
        return self._registry

    async def close(self) -> None:
        await self._dispatcher.close()

    # -------------------------------------------------------------------
    # Multi-framework analysis
    # -------------------------------------------------------------------

    async def execute_multi_framework_analysis(
        self,
        tenant_id: str,
        project_id: str,
        analysis_id: str,
        framework_ids: Sequence[str],
        resources: Sequence[Any],
    ) -> MultiFrameworkAnalysisResult:
        """Evaluate several frameworks and aggregate their results.

        Never raises for framework-level failures: each requested framework
        yields exactly one result, and the overall status is COMPLETED,
        PARTIAL, or FAILED accordingly.
        """
        start_time = _now_iso()
        started = time.monotonic()
        framework_ids = list(framework_ids)
        self._audit.log_analysis_start(
            analysis_id, tenant_id, project_id, framework_ids, len(resources),
        )

        async def run(framework_id: str) -> FrameworkAnalysisResult:
            return await self._run_framework(
                tenant_id, project_id, analysis_id, framework_id, resources,
            )

        def failed(framework_id: str, error: Exception) -> FrameworkAnalysisResult:
            result = _unresolved_result(
                framework_id, FrameworkRunStatus.FAILED, _error_message(error),
                _now_iso(), time.monotonic(),
            )
            self._audit.log_framework_result(result)
            return result

        metadata: dict[str, Any] = {
            "total_frameworks": len(framework_ids),
            "resource_count": len(resources),
            "execution_mode": "batched",
            "framework_batch_size": self._framework_batch_size,
            "rule_batch_size": self._rule_batch_size,
        }
        frameworks = await run_in_batches(framework_ids, self._framework_batch_size, run, failed)

        try:
            summary = aggregate(frameworks)
            status = overall_status(frameworks)
        except Exception as e:  # noqa: BLE001 - the analysis must still return a status
            summary = empty_aggregate()
            status = AnalysisStatus.FAILED
            metadata["error"] = _error_message(e)

        result = MultiFrameworkAnalysisResult(
            analysis_id=analysis_id,
            tenant_id=tenant_id,
            project_id=project_id,
            status=status,
            start_time=start_time,
            end_time=_now_iso(),
            duration_ms=_elapsed_ms(started),
            frameworks=frameworks,
            aggregated_summary=summary,
            metadata=metadata,
        )
        self._audit.log_analysis_complete(result)
        return result

    async def _run_framework(
        self,
        tenant_id: str,
        project_id: str,
        analysis_id: str,
        framework_id: str,
        resources: Sequence[Any],
    ) -> FrameworkAnalysisResult:
        if self._framework_timeout is None:
            return await self.execute_single_framework(
                tenant_id, project_id, analysis_id, framework_id, resources,
            )

        start_time = _now_iso()
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                self.execute_single_framework(
                    tenant_id, project_id, analysis_id, framework_id, resources,
                ),
                timeout=self._framework_timeout,
            )
        except asyncio.TimeoutError:
            result = _unresolved_result(
                framework_id,
                FrameworkRunStatus.TIMEOUT,
                f"Framework exceeded its {self._framework_timeout:g}s timeout",
                start_time,
                started,
            )
            self._audit.log_framework_result(result)
            return result

    # -------------------------------------------------------------------
    # Single framework
    # -------------------------------------------------------------------

    async def execute_single_framework(
        self,
        tenant_id: str,
        project_id: str,
        analysis_id: str,
        framework_id: str,
        resources: Sequence[Any],
    ) -> FrameworkAnalysisResult:
        """Evaluate one framework's enabled rules for a tenant.

        A missing framework, a missing tenant configuration, or an
        unreachable registry yields a FAILED result; individual rule
        failures do not, since they are recorded as ``error`` rule results.
        """
        start_time = _now_iso()
        started = time.monotonic()
        self._audit.log_framework_start(framework_id, tenant_id)

        framework: Framework | None = None
        try:
            framework = await self._registry.get_framework(framework_id)
            if framework is None:
                raise FrameworkNotFoundError(framework_id)
            config = await self._registry.get_tenant_framework_config(tenant_id, framework_id)
            if config is None:
                raise TenantConfigNotFoundError(tenant_id, framework_id)
            rules = await self._enabled_rules(framework_id, config)
        except (FrameworkNotFoundError, TenantConfigNotFoundError, RegistryUnavailableError) as e:
            result = _unresolved_result(
                framework_id, FrameworkRunStatus.FAILED, str(e), start_time, started,
                framework=framework,
            )
            self._audit.log_framework_result(result)
            return result

        async def run(rule: Rule) -> RuleExecutionResult:
            return await self._execute_rule(
                RuleContext(
                    tenant_id=tenant_id,
                    project_id=project_id,
                    analysis_id=analysis_id,
                    framework_id=framework_id,
                    rule=rule,
                    resources=resources,
                    parameters=config.parameters_for(rule),
                )
            )

        def errored(rule: Rule, error: Exception) -> RuleExecutionResult:
            return _rule_error_result(rule, error, 0)

        rule_results = await run_in_batches(rules, self._rule_batch_size, run, errored)

        result = FrameworkAnalysisResult(
            framework_id=framework.id,
            framework_name=framework.name,
            framework_type=framework.type,
            status=FrameworkRunStatus.COMPLETED,
            start_time=start_time,
            end_time=_now_iso(),
            duration_ms=_elapsed_ms(started),
            findings=[f for r in rule_results for f in r.findings],
            rule_results=rule_results,
            summary=summarize_framework(
                rules, rule_results, strict_mode=config.settings.strict_mode,
            ),
        )
        self._audit.log_framework_result(result)
        return result

    async def _enabled_rules(
        self, framework_id: str, config: TenantFrameworkConfig
    ) -> list[Rule]:
        """Registry rules plus tenant custom rules, filtered to ``enabled_rules``.

        A custom rule whose code matches a registry rule replaces it.
        """
        candidates: dict[str, Rule] = {
            rule.rule_id: rule
            for rule in await self._registry.get_all_framework_rules(framework_id)
        }
        for custom in config.custom_rules:
            candidates[custom.id] = create_custom_rule(
                framework_id=framework_id,
                rule_id=custom.id,
                name=custom.name,
                description=custom.description,
                severity=custom.severity,
                category=custom.category,
                implementation=custom.implementation,
                conditions=custom.conditions,
                remediation=custom.remediation,
                pillar=custom.pillar,
            )

        enabled = set(config.enabled_rules)
        rules = [rule for rule_id, rule in candidates.items() if rule_id in enabled]
        self._audit.log_rules_loaded(framework_id, len(candidates), len(rules))
        return rules

    async def _execute_rule(self, context: RuleContext) -> RuleExecutionResult:
        started = time.monotonic()
        try:
            evaluation = await self._dispatcher.evaluate(context)
        except Exception as e:  # noqa: BLE001 - every rule must reach a terminal result
            result = _rule_error_result(context.rule, e, _elapsed_ms(started))
        else:
            result = RuleExecutionResult(
                rule_id=context.rule.rule_id,
                status=RuleStatus.FAIL if evaluation.findings else RuleStatus.PASS,
                findings=list(evaluation.findings),
                execution_time_ms=_elapsed_ms(started),
                metadata=dict(evaluation.metadata),
            )
        self._audit.log_rule_result(context.framework_id, result)
        return result


def _rule_error_result(rule: Rule, error: Exception, elapsed_ms: int) -> RuleExecutionResult:
    return RuleExecutionResult(
        rule_id=rule.rule_id,
        status=RuleStatus.ERROR,
        findings=[],
        execution_time_ms=elapsed_ms,
        error=_error_message(error),
        metadata={"error_type": type(error).__name__},
    )


def _unresolved_result(
    framework_id: str,
    status: FrameworkRunStatus,
    error: str,
    start_time: str,
    started: float,
    *,
    framework: Framework | None = None,
) -> FrameworkAnalysisResult:
    """Result for a framework whose pipeline did not run to completion."""
    return FrameworkAnalysisResult(
        framework_id=framework_id,
        framework_name=framework.name if framework is not None else framework_id,
        framework_type=framework.type if framework is not None else None,
        status=status,
        start_time=start_time,
        end_time=_now_iso(),
        duration_ms=_elapsed_ms(started),
        findings=[],
        rule_results=[],
        summary=empty_framework_summary(),
        error=error,
    )
