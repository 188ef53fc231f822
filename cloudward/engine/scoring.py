"""Per-framework scoring and cross-framework aggregation.

Scoring is severity-blind: every enabled rule is worth 10 points, and a
rule that produced at least one finding earns none, however many findings
it produced.
"""

from __future__ import annotations

from collections.abc import Sequence

from cloudward.frameworks.findings import (
    AggregatedSummary,
    AnalysisStatus,
    FrameworkAnalysisResult,
    FrameworkRunStatus,
    FrameworkSummary,
    RuleExecutionResult,
    RuleStatus,
)
from cloudward.frameworks.schema import Pillar, Rule, Severity

POINTS_PER_RULE = 10

CRITICAL_RECOMMENDATION = (
    "Address critical security findings immediately to prevent potential breaches."
)
HIGH_RECOMMENDATION = (
    "Prioritize high-severity findings for remediation within the next sprint."
)


def empty_severity_tally() -> dict[str, int]:
    return {severity.value: 0 for severity in Severity}


def empty_pillar_tally() -> dict[str, int]:
    return {pillar.value: 0 for pillar in Pillar}


def _percentage(score: int, max_score: int) -> float:
    return score / max_score * 100 if max_score > 0 else 0.0


def summarize_framework(
    rules: Sequence[Rule],
    results: Sequence[RuleExecutionResult],
    *,
    strict_mode: bool = False,
) -> FrameworkSummary:
    """Score one framework's rule results.

    Args:
        rules: The enabled rules that were evaluated.
        results: One result per enabled rule.
        strict_mode: Also count ``error`` results as not passed.

    Returns:
        The framework summary. Findings without a pillar are left out of
        the pillar tally.
    """
    by_severity = empty_severity_tally()
    by_category = {rule.category: 0 for rule in rules}
    by_pillar = empty_pillar_tally()

    total_findings = 0
    for result in results:
        for finding in result.findings:
            total_findings += 1
            by_severity[finding.severity.value] += 1
            by_category[finding.category] = by_category.get(finding.category, 0) + 1
            if finding.pillar is not None:
                by_pillar[finding.pillar.value] += 1

    not_passed = {RuleStatus.FAIL, RuleStatus.ERROR} if strict_mode else {RuleStatus.FAIL}
    failed_rules = sum(1 for result in results if result.status in not_passed)
    enabled = len(rules)
    max_score = enabled * POINTS_PER_RULE
    score = (enabled - failed_rules) * POINTS_PER_RULE

    return FrameworkSummary(
        total_rules=enabled,
        executed_rules=len(results),
        skipped_rules=sum(1 for result in results if result.status == RuleStatus.SKIP),
        total_findings=total_findings,
        findings_by_severity=by_severity,
        findings_by_category=by_category,
        findings_by_pillar=by_pillar,
        score=score,
        max_score=max_score,
        percentage=_percentage(score, max_score),
    )


def empty_framework_summary() -> FrameworkSummary:
    """Summary for a framework whose pipeline never evaluated a rule."""
    return summarize_framework([], [])


def recommendations(
    findings_by_severity: dict[str, int],
    findings_by_category: dict[str, int],
) -> list[str]:
    """Critical, then high, then the category with the most findings."""
    messages: list[str] = []
    if findings_by_severity.get(Severity.CRITICAL.value, 0) > 0:
        messages.append(CRITICAL_RECOMMENDATION)
    if findings_by_severity.get(Severity.HIGH.value, 0) > 0:
        messages.append(HIGH_RECOMMENDATION)

    ranked = sorted(
        (item for item in findings_by_category.items() if item[1] > 0),
        key=lambda item: (-item[1], item[0]),
    )
    if ranked:
        messages.append(
            f"Focus on {ranked[0][0]} improvements as this category has the most findings."
        )
    return messages


def aggregate(results: Sequence[FrameworkAnalysisResult]) -> AggregatedSummary:
    """Roll up framework results. Only completed frameworks contribute."""
    by_severity = empty_severity_tally()
    by_category: dict[str, int] = {}
    by_pillar = empty_pillar_tally()
    framework_scores: dict[str, float] = {}
    total_findings = 0
    total_score = 0
    total_max_score = 0

    completed = [r for r in results if r.status == FrameworkRunStatus.COMPLETED]
    for result in completed:
        summary = result.summary
        total_findings += summary.total_findings
        total_score += summary.score
        total_max_score += summary.max_score
        framework_scores[result.framework_id] = summary.percentage
        for severity, count in summary.findings_by_severity.items():
            by_severity[severity] = by_severity.get(severity, 0) + count
        for category, count in summary.findings_by_category.items():
            by_category[category] = by_category.get(category, 0) + count
        for pillar, count in summary.findings_by_pillar.items():
            by_pillar[pillar] = by_pillar.get(pillar, 0) + count

    return AggregatedSummary(
        total_frameworks=len(results),
        completed_frameworks=len(completed),
        failed_frameworks=len(results) - len(completed),
        total_findings=total_findings,
        findings_by_severity=by_severity,
        findings_by_category=by_category,
        findings_by_pillar=by_pillar,
        overall_score=_percentage(total_score, total_max_score),
        framework_scores=framework_scores,
        recommendations=recommendations(by_severity, by_category),
    )


def empty_aggregate() -> AggregatedSummary:
    return aggregate([])


def overall_status(results: Sequence[FrameworkAnalysisResult]) -> AnalysisStatus:
    """COMPLETED if every framework completed, FAILED if none did, else PARTIAL."""
    completed = sum(1 for r in results if r.status == FrameworkRunStatus.COMPLETED)
    if completed == len(results):
        return AnalysisStatus.COMPLETED
    if completed == 0:
        return AnalysisStatus.FAILED
    return AnalysisStatus.PARTIAL
