"""Builds a ready-to-run engine from EngineSettings.

All configuration arrives through the settings object; nothing here reads
the process environment. Callers that want the Anthropic transport pass
the API key explicitly.
"""

from __future__ import annotations

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.config.schema import (
    EngineSettings,
    InferenceProvider,
    InferenceSettings,
    RegistryBackend,
    RegistrySettings,
)
from cloudward.dispatch.dispatcher import RuleDispatcher
from cloudward.dispatch.inference import (
    AIInferenceBackend,
    AnthropicInferenceClient,
    BedrockInferenceClient,
    InferenceClient,
)
from cloudward.dispatch.sandbox import SandboxedScriptBackend, SandboxLimits
from cloudward.engine.executor import FrameworkExecutionEngine
from cloudward.frameworks.registry import FrameworkRegistry
from cloudward.frameworks.store import (
    DynamoDBRegistryStore,
    InMemoryRegistryStore,
    RegistryStore,
)


def build_store(settings: RegistrySettings) -> RegistryStore:
    if settings.backend == RegistryBackend.DYNAMODB:
        assert settings.table_name is not None
        return DynamoDBRegistryStore(settings.table_name, region=settings.region)
    return InMemoryRegistryStore()


def build_inference_client(
    settings: InferenceSettings, api_key: str | None = None
) -> InferenceClient:
    """Create the inference transport named by ``settings.provider``.

    Raises:
        ValueError: If the Anthropic provider is selected without an API key.
    """
    if settings.provider == InferenceProvider.ANTHROPIC:
        if not api_key:
            msg = (
                f"The anthropic inference provider needs an API key. "
                f"Set {settings.api_key_env} or switch provider to 'bedrock'."
            )
            raise ValueError(msg)
        return AnthropicInferenceClient(
            api_key,
            base_url=settings.base_url,
            request_timeout=settings.request_timeout,
        )
    return BedrockInferenceClient(region=settings.region)


def build_engine(
    settings: EngineSettings,
    *,
    audit: AnalysisAuditLogger | None = None,
    store: RegistryStore | None = None,
    inference_client: InferenceClient | None = None,
    api_key: str | None = None,
) -> FrameworkExecutionEngine:
    """Wire registry, backends, dispatcher, and engine together.

    Args:
        settings: Validated engine settings.
        audit: Event logger shared by every component.
        store: Registry store to use instead of the configured one.
        inference_client: Inference transport to use instead of the configured one.
        api_key: Anthropic API key, when that provider is configured.
    """
    audit = audit if audit is not None else AnalysisAuditLogger(
        log_path=settings.audit.log_path, verbose=settings.audit.verbose,
    )
    registry = FrameworkRegistry(
        store if store is not None else build_store(settings.registry), audit,
    )

    client = inference_client if inference_client is not None else build_inference_client(
        settings.inference, api_key,
    )
    sandbox = settings.sandbox
    dispatcher = RuleDispatcher(
        inference=AIInferenceBackend(
            client,
            settings.inference.model_id,
            max_tokens=settings.inference.max_tokens,
            audit=audit,
        ),
        sandbox=SandboxedScriptBackend(
            SandboxLimits(
                timeout_seconds=sandbox.timeout_seconds,
                cpu_seconds=sandbox.cpu_seconds,
                memory_limit_mb=sandbox.memory_limit_mb,
                max_output_bytes=sandbox.max_output_bytes,
                max_open_files=sandbox.max_open_files,
            ),
            python_executable=sandbox.python_executable,
        ),
        default_timeout=settings.execution.default_rule_timeout,
        audit=audit,
    )
    return FrameworkExecutionEngine(
        registry,
        dispatcher,
        rule_batch_size=settings.execution.rule_batch_size,
        framework_batch_size=settings.execution.framework_batch_size,
        framework_timeout=settings.execution.framework_timeout,
        audit=audit,
    )
