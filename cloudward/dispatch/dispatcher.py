"""Rule backend dispatcher.

Maps a rule's implementation kind to its backend and runs the backend under
a timeout. One invocation ends in exactly one of: findings, a backend error,
or RuleTimeoutError. There is no retry here; retry is the caller's policy.
"""

from __future__ import annotations

import asyncio
from typing import assert_never

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.dispatch.base import (
    ExtensionPointBackend,
    RuleBackend,
    RuleContext,
    RuleEvaluation,
)
from cloudward.errors import RuleTimeoutError, UnsupportedImplementationError
from cloudward.frameworks.schema import RuleImplementationKind

DEFAULT_RULE_TIMEOUT_SECONDS = 60.0


class RuleDispatcher:
    """Dispatches rules to the backend for their implementation kind."""

    def __init__(
        self,
        *,
        inference: RuleBackend,
        sandbox: RuleBackend,
        declarative_policy: RuleBackend | None = None,
        external_process: RuleBackend | None = None,
        default_timeout: float = DEFAULT_RULE_TIMEOUT_SECONDS,
        audit: AnalysisAuditLogger | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            inference: Backend for AI_INFERENCE rules.
            sandbox: Backend for SANDBOXED_SCRIPT rules.
            declarative_policy: Backend for DECLARATIVE_POLICY rules. Defaults
                to an extension-point placeholder (zero findings + warning).
            external_process: Backend for EXTERNAL_PROCESS rules. Same default.
            default_timeout: Seconds allowed when a rule declares no timeout.
            audit: Logger handed to the placeholder backends.
        """
        if default_timeout <= 0:
            msg = f"default_timeout must be positive, got {default_timeout}"
            raise ValueError(msg)
        self._inference = inference
        self._sandbox = sandbox
        self._declarative_policy = declarative_policy or ExtensionPointBackend(
            RuleImplementationKind.DECLARATIVE_POLICY, audit,
        )
        self._external_process = external_process or ExtensionPointBackend(
            RuleImplementationKind.EXTERNAL_PROCESS, audit,
        )
        self._default_timeout = default_timeout

    def backend_for(self, kind: RuleImplementationKind) -> RuleBackend:
        """Return the backend that understands ``kind``.

        Raises:
            UnsupportedImplementationError: If ``kind`` is not a known kind.
        """
        if not isinstance(kind, RuleImplementationKind):
            raise UnsupportedImplementationError(
                f"Unsupported rule implementation kind: {kind!r}"
            )
        match kind:
            case RuleImplementationKind.AI_INFERENCE:
                return self._inference
            case RuleImplementationKind.SANDBOXED_SCRIPT:
                return self._sandbox
            case RuleImplementationKind.DECLARATIVE_POLICY:
                return self._declarative_policy
            case RuleImplementationKind.EXTERNAL_PROCESS:
                return self._external_process
            case _:
                assert_never(kind)

    def timeout_for(self, context: RuleContext) -> float:
        return context.rule.implementation.timeout or self._default_timeout

    async def evaluate(self, context: RuleContext) -> RuleEvaluation:
        """Evaluate one rule.

        Raises:
            UnsupportedImplementationError: Unknown implementation kind.
            RuleTimeoutError: The backend did not settle within the timeout.
            BackendError: Any other backend failure.
        """
        backend = self.backend_for(context.rule.implementation.kind)
        timeout = self.timeout_for(context)
        try:
            return await asyncio.wait_for(backend.evaluate(context), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RuleTimeoutError(
                f"Rule {context.rule.rule_id} exceeded its {timeout:g}s timeout"
            ) from e

    async def close(self) -> None:
        """Close every backend (e.g. HTTP sessions held by inference clients)."""
        for backend in (
            self._inference, self._sandbox, self._declarative_policy, self._external_process,
        ):
            await backend.close()
