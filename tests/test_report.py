"""Tests for terminal and JSON rendering of analysis results."""

from __future__ import annotations

import io
import json

import pytest
from rich.console import Console

from cloudward.engine.scoring import aggregate, empty_framework_summary, summarize_framework
from cloudward.frameworks.findings import (
    AnalysisStatus,
    Finding,
    FrameworkAnalysisResult,
    FrameworkRunStatus,
    MultiFrameworkAnalysisResult,
    ResourceInfo,
    RuleExecutionResult,
    RuleStatus,
)
from cloudward.frameworks.schema import FrameworkType, Severity
from cloudward.report import render_analysis_json, render_analysis_report
from tests.fixtures.builders import make_rule


def _result() -> MultiFrameworkAnalysisResult:
    rules = [
        make_rule("SEC.01", severity=Severity.CRITICAL),
        make_rule("SEC.02"),
        make_rule("SEC.03"),
    ]
    finding = Finding(
        id="a-1-SEC.01-0",
        rule_id="SEC.01",
        rule_name="Rule SEC.01",
        severity=Severity.CRITICAL,
        category="Security",
        pillar=rules[0].pillar,
        title="Bucket is public",
        description="LogsBucket allows public reads",
        resource=ResourceInfo(type="AWS::S3::Bucket", name="LogsBucket"),
        remediation="Block public access",
    )
    rule_results = [
        RuleExecutionResult("SEC.01", RuleStatus.FAIL, [finding], 4),
        RuleExecutionResult("SEC.02", RuleStatus.PASS, [], 2),
        RuleExecutionResult("SEC.03", RuleStatus.ERROR, [], 1, error="InferenceError: throttled"),
    ]
    completed = FrameworkAnalysisResult(
        framework_id="fw-good",
        framework_name="Good Framework",
        framework_type=FrameworkType.BEST_PRACTICE_LENS,
        status=FrameworkRunStatus.COMPLETED,
        start_time="2024-01-01T00:00:00+00:00",
        end_time="2024-01-01T00:00:01+00:00",
        duration_ms=1000,
        findings=[finding],
        rule_results=rule_results,
        summary=summarize_framework(rules, rule_results),
    )
    failed = FrameworkAnalysisResult(
        framework_id="fw-missing",
        framework_name="fw-missing",
        framework_type=None,
        status=FrameworkRunStatus.FAILED,
        start_time="2024-01-01T00:00:00+00:00",
        end_time="2024-01-01T00:00:00+00:00",
        duration_ms=0,
        findings=[],
        rule_results=[],
        summary=empty_framework_summary(),
        error="Framework 'fw-missing' not found",
    )
    frameworks = [completed, failed]
    return MultiFrameworkAnalysisResult(
        analysis_id="analysis-7",
        tenant_id="tenant-1",
        project_id="project-1",
        status=AnalysisStatus.PARTIAL,
        start_time="2024-01-01T00:00:00+00:00",
        end_time="2024-01-01T00:00:01+00:00",
        duration_ms=1000,
        frameworks=frameworks,
        aggregated_summary=aggregate(frameworks),
    )


def _render(result: MultiFrameworkAnalysisResult) -> str:
    buffer = io.StringIO()
    render_analysis_report(result, Console(file=buffer, width=200, no_color=True))
    return buffer.getvalue()


class TestRenderReport:
    def test_summary_panel(self) -> None:
        output = _render(_result())
        assert "Analysis analysis-7" in output
        assert "PARTIAL" in output
        assert "1/2" in output
        assert "66.7%" in output

    def test_framework_rows(self) -> None:
        output = _render(_result())
        assert "Good Framework" in output
        assert "DONE" in output
        assert "FAILED" in output

    def test_findings_and_errors(self) -> None:
        output = _render(_result())
        assert "Bucket is public" in output
        assert "LogsBucket" in output
        assert "CRITICAL" in output
        assert "fw-missing: Framework 'fw-missing' not found" in output
        assert "! fw-good/SEC.03 errored: InferenceError: throttled" in output

    def test_recommendations(self) -> None:
        output = _render(_result())
        assert "Recommendations" in output
        assert "Focus on Security improvements" in output


class TestRenderJson:
    def test_enums_become_values(self) -> None:
        data = render_analysis_json(_result())

        assert data["status"] == "partial"
        good, missing = data["frameworks"]
        assert good["framework_type"] == "best-practice-lens"
        assert good["status"] == "completed"
        assert good["findings"][0]["severity"] == "critical"
        assert good["rule_results"][2]["status"] == "error"
        assert missing["framework_type"] is None
        scores = data["aggregated_summary"]["framework_scores"]
        assert scores == {"fw-good": pytest.approx(66.67, abs=0.01)}

    def test_serializable(self) -> None:
        text = json.dumps(render_analysis_json(_result()))
        assert json.loads(text)["analysis_id"] == "analysis-7"
