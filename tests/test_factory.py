"""Tests for building an engine from settings."""

from __future__ import annotations

import pytest

from cloudward.config.schema import (
    EngineSettings,
    InferenceProvider,
    InferenceSettings,
    RegistrySettings,
    SandboxSettings,
)
from cloudward.dispatch.inference import (
    AnthropicInferenceClient,
    BedrockInferenceClient,
)
from cloudward.dispatch.sandbox import SandboxedScriptBackend, SandboxLimits
from cloudward.engine.factory import build_engine, build_inference_client, build_store
from cloudward.frameworks.findings import FrameworkRunStatus, RuleStatus
from cloudward.frameworks.schema import RuleImplementationKind
from cloudward.frameworks.store import DynamoDBRegistryStore, InMemoryRegistryStore
from tests.fixtures.builders import (
    ANALYSIS,
    OPEN_SECURITY_GROUP,
    PROJECT,
    TENANT,
    FakeInferenceClient,
    make_framework,
    make_rule,
    quiet_audit,
    seed,
)


class TestBuildStore:
    def test_memory_by_default(self) -> None:
        assert isinstance(build_store(RegistrySettings()), InMemoryRegistryStore)

    def test_dynamodb(self) -> None:
        store = build_store(RegistrySettings(
            backend="dynamodb", table_name="frameworks", region="us-east-1",
        ))
        assert isinstance(store, DynamoDBRegistryStore)


class TestBuildInferenceClient:
    def test_bedrock_by_default(self) -> None:
        assert isinstance(build_inference_client(InferenceSettings()), BedrockInferenceClient)

    def test_anthropic_requires_key(self) -> None:
        settings = InferenceSettings(provider=InferenceProvider.ANTHROPIC, api_key_env="MY_KEY")
        with pytest.raises(ValueError, match="Set MY_KEY"):
            build_inference_client(settings)

    @pytest.mark.asyncio
    async def test_anthropic_with_key(self) -> None:
        settings = InferenceSettings(provider=InferenceProvider.ANTHROPIC)
        client = build_inference_client(settings, api_key="sk-test")
        try:
            assert isinstance(client, AnthropicInferenceClient)
        finally:
            await client.close()


class TestBuildEngine:
    @pytest.mark.asyncio
    async def test_inference_settings_reach_requests(self) -> None:
        settings = EngineSettings(
            inference=InferenceSettings(model_id="model-under-test", max_tokens=123),
        )
        client = FakeInferenceClient("[]")
        engine = build_engine(
            settings,
            audit=quiet_audit(),
            store=InMemoryRegistryStore(),
            inference_client=client,
        )
        await seed(
            engine.registry,
            make_framework(),
            [make_rule("AI.01", kind=RuleImplementationKind.AI_INFERENCE, payload="Check it")],
        )

        result = await engine.execute_single_framework(
            TENANT, PROJECT, ANALYSIS, "fw-test", [OPEN_SECURITY_GROUP],
        )
        await engine.close()

        assert result.status == FrameworkRunStatus.COMPLETED
        assert result.rule_results[0].status == RuleStatus.PASS
        assert [r.model_id for r in client.requests] == ["model-under-test"]
        assert client.requests[0].max_tokens == 123
        assert client.closed

    def test_anthropic_without_key_fails_to_build(self) -> None:
        settings = EngineSettings(
            inference=InferenceSettings(provider=InferenceProvider.ANTHROPIC),
        )
        with pytest.raises(ValueError, match="needs an API key"):
            build_engine(settings, audit=quiet_audit(), store=InMemoryRegistryStore())

    def test_sandbox_settings_reach_limits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        built: list[tuple[SandboxLimits, str | None]] = []

        class RecordingSandbox(SandboxedScriptBackend):
            def __init__(self, limits=None, python_executable=None) -> None:
                built.append((limits, python_executable))
                super().__init__(limits, python_executable=python_executable)

        monkeypatch.setattr("cloudward.engine.factory.SandboxedScriptBackend", RecordingSandbox)
        settings = EngineSettings(
            sandbox=SandboxSettings(
                timeout_seconds=3,
                cpu_seconds=1,
                memory_limit_mb=64,
                max_output_bytes=4096,
                max_open_files=4,
                python_executable="/usr/bin/python3",
            ),
        )

        build_engine(
            settings,
            audit=quiet_audit(),
            store=InMemoryRegistryStore(),
            inference_client=FakeInferenceClient("[]"),
        )

        assert built == [(
            SandboxLimits(
                timeout_seconds=3,
                cpu_seconds=1,
                memory_limit_mb=64,
                max_output_bytes=4096,
                max_open_files=4,
            ),
            "/usr/bin/python3",
        )]
