"""Tests for framework, rule, tenant configuration, and settings models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cloudward.frameworks.schema import (
    CustomRule,
    Framework,
    FrameworkSettings,
    FrameworkStatus,
    FrameworkType,
    Pillar,
    Rule,
    RuleImplementation,
    RuleImplementationKind,
    Severity,
    TenantFrameworkConfig,
)
from tests.fixtures.builders import make_rule


class TestEnums:
    def test_severity_values(self) -> None:
        assert [s.value for s in Severity] == [
            "critical", "high", "medium", "low", "informational",
        ]

    def test_pillar_values(self) -> None:
        assert Pillar("operational-excellence") == Pillar.OPERATIONAL_EXCELLENCE
        assert len(Pillar) == 6

    def test_implementation_kinds(self) -> None:
        assert {k.value for k in RuleImplementationKind} == {
            "ai-inference", "sandboxed-script", "declarative-policy", "external-process",
        }

    def test_framework_types(self) -> None:
        assert FrameworkType("posture-management") == FrameworkType.POSTURE_MANAGEMENT
        assert FrameworkType.CUSTOM.value == "custom"


class TestRuleImplementation:
    def test_defaults(self) -> None:
        impl = RuleImplementation(kind=RuleImplementationKind.AI_INFERENCE)
        assert impl.payload == ""
        assert impl.timeout is None
        assert impl.dependencies == []

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="timeout must be positive"):
            RuleImplementation(kind=RuleImplementationKind.SANDBOXED_SCRIPT, timeout=0)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuleImplementation(kind="wasm")  # type: ignore[arg-type]


class TestFrameworkAndRule:
    def test_framework_defaults_to_active(self) -> None:
        fw = Framework(id="f", type=FrameworkType.CUSTOM, name="F", version="1")
        assert fw.status == FrameworkStatus.ACTIVE
        assert fw.categories == []

    def test_framework_is_frozen(self) -> None:
        fw = Framework(id="f", type=FrameworkType.CUSTOM, name="F", version="1")
        with pytest.raises(ValidationError):
            fw.name = "changed"  # type: ignore[misc]

    def test_rule_round_trips_through_json_dump(self) -> None:
        rule = make_rule("SEC.01", parameters={"port": 22}, timeout=5)
        restored = Rule.model_validate(rule.model_dump(mode="json"))
        assert restored == rule
        assert restored.implementation.timeout == 5

    def test_rule_pillar_is_optional(self) -> None:
        rule = make_rule("S3.1", pillar=None)
        assert rule.pillar is None
        assert rule.model_dump(mode="json")["pillar"] is None

    def test_rule_requires_severity(self) -> None:
        with pytest.raises(ValidationError):
            Rule.model_validate({
                "id": "x",
                "framework_id": "f",
                "rule_id": "X.1",
                "name": "x",
                "category": "c",
                "implementation": {"kind": "ai-inference"},
            })


class TestTenantFrameworkConfig:
    def test_defaults(self) -> None:
        config = TenantFrameworkConfig(tenant_id="t", framework_id="f")
        assert config.enabled_rules == []
        assert config.is_default is False
        assert config.settings == FrameworkSettings()
        assert config.settings.strict_mode is False

    def test_parameters_for_overlays_overrides(self) -> None:
        rule = make_rule("EC2.2", parameters={"port": 22, "protocol": "tcp"})
        config = TenantFrameworkConfig(
            tenant_id="t",
            framework_id="fw-test",
            rule_overrides={"EC2.2": {"port": 3389}},
        )
        assert config.parameters_for(rule) == {"port": 3389, "protocol": "tcp"}

    def test_parameters_for_does_not_mutate_rule(self) -> None:
        rule = make_rule("EC2.2", parameters={"port": 22})
        config = TenantFrameworkConfig(
            tenant_id="t", framework_id="fw-test", rule_overrides={"EC2.2": {"port": 80}},
        )
        config.parameters_for(rule)
        assert rule.parameters == {"port": 22}

    def test_parameters_for_rule_without_override(self) -> None:
        rule = make_rule("REL.01", parameters={"min_group_size": 2})
        config = TenantFrameworkConfig(tenant_id="t", framework_id="fw-test")
        assert config.parameters_for(rule) == {"min_group_size": 2}

    def test_custom_rules_validated(self) -> None:
        config = TenantFrameworkConfig.model_validate({
            "tenant_id": "t",
            "framework_id": "f",
            "custom_rules": [{
                "id": "CUST.01",
                "name": "Tag everything",
                "severity": "low",
                "category": "Governance",
                "implementation": {"kind": "sandboxed-script", "payload": "def evaluate(*a): pass"},
            }],
        })
        assert isinstance(config.custom_rules[0], CustomRule)
        assert config.custom_rules[0].severity == Severity.LOW
