"""Rich CLI rendering for analysis results.

Produces a formatted terminal report with a summary panel, a framework
score table, findings grouped by framework, and recommendations.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Any

from cloudward.frameworks.findings import (
    AnalysisStatus,
    FrameworkRunStatus,
    MultiFrameworkAnalysisResult,
)
from cloudward.frameworks.schema import Severity

_STATUS_COLORS = {
    AnalysisStatus.COMPLETED: "#00ff88",
    AnalysisStatus.PARTIAL: "#ffcc00",
    AnalysisStatus.FAILED: "#ff3366",
    AnalysisStatus.TIMEOUT: "#ff3366",
}

_SEVERITY_STYLES = {
    Severity.CRITICAL: "bold #ff3366",
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "bold yellow",
    Severity.LOW: "cyan",
    Severity.INFORMATIONAL: "dim",
}


def _score_color(percentage: float) -> str:
    if percentage >= 80:
        return "#00ff88"
    if percentage >= 50:
        return "#ffcc00"
    return "#ff3366"


def render_analysis_report(result: MultiFrameworkAnalysisResult, console: Any) -> None:
    """Render an analysis result to the terminal using rich.

    Args:
        result: The multi-framework analysis result.
        console: A rich Console instance.
    """
    from rich.panel import Panel
    from rich.table import Table

    summary = result.aggregated_summary

    # --- Summary panel ---
    status_color = _STATUS_COLORS[result.status]
    parts = [
        f"[bold {status_color}]{result.status.value.upper()}[/bold {status_color}]",
        f"[bold]{summary.completed_frameworks}/{summary.total_frameworks}[/bold] frameworks",
        f"[bold]{summary.total_findings}[/bold] finding(s)",
    ]
    if summary.completed_frameworks:
        color = _score_color(summary.overall_score)
        parts.append(f"score [bold {color}]{summary.overall_score:.1f}%[/bold {color}]")
    console.print(
        Panel(
            " · ".join(parts),
            title=f"Analysis {result.analysis_id}",
            subtitle=f"tenant {result.tenant_id} · project {result.project_id}",
            border_style="#5eead4",
        )
    )

    # --- Framework table ---
    if result.frameworks:
        table = Table(
            title="Frameworks",
            show_header=True,
            header_style="bold dim",
            border_style="#333333",
            title_style="#5eead4 bold",
            expand=True,
        )
        table.add_column("Framework", style="cyan", ratio=3)
        table.add_column("Status", justify="center", ratio=1)
        table.add_column("Rules", justify="center", ratio=1)
        table.add_column("Findings", justify="center", ratio=1)
        table.add_column("Score", justify="right", ratio=1)

        for framework in result.frameworks:
            if framework.status == FrameworkRunStatus.COMPLETED:
                color = _score_color(framework.summary.percentage)
                status = "[bold #00ff88]DONE[/bold #00ff88]"
                score = f"[{color}]{framework.summary.percentage:.1f}%[/{color}]"
            else:
                status = f"[bold #ff3366]{framework.status.value.upper()}[/bold #ff3366]"
                score = "—"
            table.add_row(
                framework.framework_name,
                status,
                str(framework.summary.total_rules),
                str(framework.summary.total_findings),
                score,
            )

        console.print(table)
        console.print()

    # --- Findings grouped by framework ---
    for framework in result.frameworks:
        if framework.error:
            console.print(
                f"[bold red]✗ {framework.framework_id}:[/bold red] {framework.error}"
            )
            continue
        if not framework.findings:
            continue

        table = Table(
            title=framework.framework_name,
            show_header=True,
            header_style="bold dim",
            border_style="#333333",
            title_style="#5eead4 bold",
            expand=True,
        )
        table.add_column("Severity", no_wrap=True)
        table.add_column("Rule", style="cyan", no_wrap=True)
        table.add_column("Resource", ratio=2)
        table.add_column("Finding", ratio=4)

        for finding in framework.findings:
            style = _SEVERITY_STYLES[finding.severity]
            table.add_row(
                f"[{style}]{finding.severity.value.upper()}[/{style}]",
                finding.rule_id,
                finding.resource.name,
                f"{finding.title}\n[dim]{finding.description}[/dim]",
            )

        console.print(table)
        console.print()

    errored = [
        (framework.framework_id, rule)
        for framework in result.frameworks
        for rule in framework.rule_results
        if rule.error
    ]
    for framework_id, rule in errored:
        console.print(f"[dim]! {framework_id}/{rule.rule_id} errored: {rule.error}[/dim]")
    if errored:
        console.print()

    # --- Recommendations ---
    if summary.recommendations:
        console.print("[bold]Recommendations[/bold]")
        for message in summary.recommendations:
            console.print(f"  • {message}")
        console.print()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def render_analysis_json(result: MultiFrameworkAnalysisResult) -> dict[str, Any]:
    """Convert an analysis result to a JSON-serializable dict.

    Args:
        result: The multi-framework analysis result.

    Returns:
        A dict suitable for json.dumps(), with enums as their string values.
    """
    return _jsonable(dataclasses.asdict(result))
