"""Structured audit logging for CloudWard analyses.

Logs every engine event as structured JSON. Writes to stderr (via rich)
for human-readable output, and optionally to a JSON Lines file for machine
consumption and SIEM ingestion.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from rich.console import Console

from cloudward.frameworks.findings import (
    AnalysisStatus,
    FrameworkAnalysisResult,
    FrameworkRunStatus,
    MultiFrameworkAnalysisResult,
    RuleExecutionResult,
    RuleStatus,
)

# stdout is reserved for report output (e.g. --json)
_console = Console(stderr=True)

_RULE_STATUS_STYLES = {
    RuleStatus.PASS: "#00ff88",
    RuleStatus.FAIL: "#ffcc00",
    RuleStatus.SKIP: "dim",
    RuleStatus.ERROR: "bold red",
}

_ANALYSIS_STATUS_STYLES = {
    AnalysisStatus.COMPLETED: "bold #00ff88",
    AnalysisStatus.PARTIAL: "bold #ffcc00",
    AnalysisStatus.FAILED: "bold red",
    AnalysisStatus.TIMEOUT: "bold red",
}


class AnalysisAuditLogger:
    """Logs analysis lifecycle events, rule outcomes, and data-quality signals.

    Attributes:
        log_file: Optional open file handle for JSON Lines output.
    """

    def __init__(
        self,
        log_path: Path | None = None,
        console: Console | None = None,
        verbose: bool = False,
    ) -> None:
        """Initialize the audit logger.

        Args:
            log_path: Optional path to write structured JSON Lines audit log.
                      If None, only logs to stderr via rich console.
            console: Console for human-readable output (defaults to stderr).
            verbose: Also print one line per rule result.
        """
        self._console = console if console is not None else _console
        self._verbose = verbose
        self._log_file: IO[str] | None = None
        self._log_path = log_path
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    def close(self) -> None:
        """Flush and close the log file if open."""
        if self._log_file is not None:
            self._log_file.flush()
            self._log_file.close()
            self._log_file = None

    # -------------------------------------------------------------------
    # Analysis lifecycle
    # -------------------------------------------------------------------

    def log_analysis_start(
        self,
        analysis_id: str,
        tenant_id: str,
        project_id: str,
        framework_ids: list[str],
        resource_count: int,
    ) -> None:
        """Log the start of a multi-framework analysis."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "analysis_start",
            "analysis_id": analysis_id,
            "tenant_id": tenant_id,
            "project_id": project_id,
            "framework_ids": framework_ids,
            "resource_count": resource_count,
        })

        self._console.print(
            f"[bold #5eead4]Analysis {analysis_id}[/bold #5eead4] "
            f"[dim]tenant={tenant_id} project={project_id} "
            f"frameworks={len(framework_ids)} resources={resource_count}[/dim]",
            highlight=False,
        )

    def log_analysis_complete(self, result: MultiFrameworkAnalysisResult) -> None:
        """Log the outcome of a multi-framework analysis."""
        summary = result.aggregated_summary
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "analysis_complete",
            "analysis_id": result.analysis_id,
            "status": result.status.value,
            "duration_ms": result.duration_ms,
            "completed_frameworks": summary.completed_frameworks,
            "failed_frameworks": summary.failed_frameworks,
            "total_findings": summary.total_findings,
            "overall_score": summary.overall_score,
        })

        style = _ANALYSIS_STATUS_STYLES[result.status]
        self._console.print(
            f"[{style}]{result.status.value.upper()}[/{style}] "
            f"{summary.completed_frameworks}/{summary.total_frameworks} frameworks, "
            f"{summary.total_findings} finding(s), score {summary.overall_score:.1f}%",
            highlight=False,
        )

    # -------------------------------------------------------------------
    # Framework lifecycle
    # -------------------------------------------------------------------

    def log_framework_start(self, framework_id: str, tenant_id: str) -> None:
        """Log the start of one framework evaluation."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "framework_start",
            "framework_id": framework_id,
            "tenant_id": tenant_id,
        })

    def log_rules_loaded(
        self, framework_id: str, total_rules: int, enabled_rules: int
    ) -> None:
        """Log how many of a framework's rules are enabled for the tenant."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "rules_loaded",
            "framework_id": framework_id,
            "total_rules": total_rules,
            "enabled_rules": enabled_rules,
        })

    def log_framework_result(self, result: FrameworkAnalysisResult) -> None:
        """Log the outcome of one framework evaluation."""
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "framework_result",
            "framework_id": result.framework_id,
            "status": result.status.value,
            "duration_ms": result.duration_ms,
            "total_findings": result.summary.total_findings,
            "percentage": result.summary.percentage,
        }
        if result.error is not None:
            entry["error"] = result.error
        self._write_entry(entry)

        if result.status == FrameworkRunStatus.COMPLETED:
            self._console.print(
                f"  [#00ff88]✓[/#00ff88] {result.framework_id} "
                f"[dim]{result.summary.total_findings} finding(s), "
                f"{result.summary.percentage:.1f}%[/dim]",
                highlight=False,
            )
        else:
            self._console.print(
                f"  [bold red]✗ {result.status.value.upper()}[/bold red] {result.framework_id}",
                highlight=False,
            )
            if result.error:
                self._console.print(f"    [dim]{result.error}[/dim]", highlight=False)

    # -------------------------------------------------------------------
    # Rules and backends
    # -------------------------------------------------------------------

    def log_rule_result(self, framework_id: str, result: RuleExecutionResult) -> None:
        """Log one rule evaluation outcome."""
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "rule_result",
            "framework_id": framework_id,
            "rule_id": result.rule_id,
            "status": result.status.value,
            "findings": len(result.findings),
            "execution_time_ms": result.execution_time_ms,
        }
        if result.error is not None:
            entry["error"] = result.error
        self._write_entry(entry)

        if result.status == RuleStatus.ERROR:
            self._console.print(
                f"    [bold red]✗ ERROR[/bold red] {framework_id}/{result.rule_id}",
                highlight=False,
            )
            self._console.print(f"      [dim]{result.error}[/dim]", highlight=False)
        elif self._verbose:
            style = _RULE_STATUS_STYLES[result.status]
            self._console.print(
                f"    [{style}]{result.status.value.upper()}[/{style}] "
                f"{framework_id}/{result.rule_id} [dim]({len(result.findings)})[/dim]",
                highlight=False,
            )

    def log_malformed_response(self, rule_id: str, reason: str, excerpt: str) -> None:
        """Log an AI response that yielded no usable findings array.

        The rule reports zero findings; this entry is what distinguishes that
        from a genuine clean pass.
        """
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "malformed_ai_response",
            "rule_id": rule_id,
            "reason": reason,
            "excerpt": excerpt,
        })

        self._console.print(
            f"    [#ffcc00]⚠ unparseable AI response[/#ffcc00] {rule_id} [dim]({reason})[/dim]",
            highlight=False,
        )

    def log_backend_not_implemented(self, rule_id: str, kind: str) -> None:
        """Log a rule whose implementation kind has no working backend yet."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "backend_not_implemented",
            "rule_id": rule_id,
            "kind": kind,
        })

        self._console.print(
            f"    [#ffcc00]⚠ {kind} evaluation not implemented[/#ffcc00] {rule_id}",
            highlight=False,
        )

    # -------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------

    def log_registry_error(self, operation: str, detail: str) -> None:
        """Log a backing-store failure seen by the registry."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "registry_error",
            "operation": operation,
            "detail": detail,
        })

        self._console.print(
            f"  [bold red]✗ registry[/bold red] {operation}", highlight=False,
        )
        self._console.print(f"    [dim]{detail}[/dim]", highlight=False)

    def log_framework_seeded(self, framework_id: str, rule_count: int) -> None:
        """Log a built-in framework written to the registry."""
        self._write_entry({
            "timestamp": _now_iso(),
            "event": "framework_seeded",
            "framework_id": framework_id,
            "rule_count": rule_count,
        })

    # -------------------------------------------------------------------

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a JSON entry to the log file (if configured)."""
        if self._log_file is not None:
            self._log_file.write(json.dumps(entry, default=str) + "\n")
            self._log_file.flush()


def _now_iso() -> str:
    """Return the current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
