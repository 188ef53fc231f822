"""Tests for the analysis audit logger."""

from __future__ import annotations

import io
import json
from pathlib import Path

from rich.console import Console

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.frameworks.findings import RuleExecutionResult, RuleStatus


def _logger(
    log_path: Path | None = None, verbose: bool = False
) -> tuple[AnalysisAuditLogger, io.StringIO]:
    buffer = io.StringIO()
    logger = AnalysisAuditLogger(
        log_path=log_path,
        console=Console(file=buffer, width=200, no_color=True),
        verbose=verbose,
    )
    return logger, buffer


def _entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestJsonLines:
    def test_entries_appended(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "audit.jsonl"
        logger, _ = _logger(path)

        logger.log_analysis_start("a-1", "tenant-1", "project-1", ["fw-a", "fw-b"], 3)
        logger.log_rules_loaded("fw-a", total_rules=4, enabled_rules=2)
        logger.close()

        start, loaded = _entries(path)
        assert start["event"] == "analysis_start"
        assert start["framework_ids"] == ["fw-a", "fw-b"]
        assert start["resource_count"] == 3
        assert "timestamp" in start
        assert loaded == {
            "timestamp": loaded["timestamp"],
            "event": "rules_loaded",
            "framework_id": "fw-a",
            "total_rules": 4,
            "enabled_rules": 2,
        }

    def test_reopening_appends(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.jsonl"
        for _ in range(2):
            logger, _ = _logger(path)
            logger.log_framework_seeded("fw-a", 3)
            logger.close()
        assert [e["event"] for e in _entries(path)] == ["framework_seeded"] * 2

    def test_console_only_without_path(self) -> None:
        logger, buffer = _logger()
        logger.log_registry_error("get_framework", "StoreError: timeout")
        logger.close()
        assert "get_framework" in buffer.getvalue()

    def test_close_is_idempotent(self, tmp_path: Path) -> None:
        logger, _ = _logger(tmp_path / "audit.jsonl")
        logger.close()
        logger.close()


class TestRuleResults:
    def test_error_always_printed(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.jsonl"
        logger, buffer = _logger(path)

        logger.log_rule_result(
            "fw-a",
            RuleExecutionResult("R.1", RuleStatus.ERROR, [], 12, error="SandboxError: boom"),
        )
        logger.close()

        assert "ERROR fw-a/R.1" in buffer.getvalue()
        assert "SandboxError: boom" in buffer.getvalue()
        (entry,) = _entries(path)
        assert entry["status"] == "error"
        assert entry["error"] == "SandboxError: boom"
        assert entry["execution_time_ms"] == 12

    def test_pass_printed_only_when_verbose(self) -> None:
        result = RuleExecutionResult("R.1", RuleStatus.PASS, [], 1)

        quiet, quiet_buffer = _logger()
        quiet.log_rule_result("fw-a", result)
        loud, loud_buffer = _logger(verbose=True)
        loud.log_rule_result("fw-a", result)

        assert quiet_buffer.getvalue() == ""
        assert "PASS fw-a/R.1" in loud_buffer.getvalue()

    def test_passing_result_has_no_error_key(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.jsonl"
        logger, _ = _logger(path)
        logger.log_rule_result("fw-a", RuleExecutionResult("R.1", RuleStatus.PASS, [], 1))
        logger.close()
        assert "error" not in _entries(path)[0]


class TestDataQuality:
    def test_malformed_response(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.jsonl"
        logger, buffer = _logger(path)

        logger.log_malformed_response("SEC.01", "no JSON array", "I could not find")
        logger.close()

        assert "unparseable AI response" in buffer.getvalue()
        entry = _entries(path)[0]
        assert entry["event"] == "malformed_ai_response"
        assert entry["rule_id"] == "SEC.01"
        assert entry["reason"] == "no JSON array"
        assert entry["excerpt"] == "I could not find"

    def test_backend_not_implemented(self, tmp_path: Path) -> None:
        path = tmp_path / "audit.jsonl"
        logger, buffer = _logger(path)

        logger.log_backend_not_implemented("POL.01", "declarative-policy")
        logger.close()

        assert "declarative-policy evaluation not implemented" in buffer.getvalue()
        assert _entries(path)[0]["kind"] == "declarative-policy"
