"""Exception hierarchy shared across CloudWard.

Registry and dispatcher errors are converted into structured result records
by the execution engine; only configuration errors reach the CLI as-is.
"""

from __future__ import annotations


class CloudwardError(Exception):
    """Base class for all CloudWard errors."""


# -----------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------


class StoreError(CloudwardError):
    """Raised by a registry store when the backing store cannot be reached."""


class RegistryUnavailableError(CloudwardError):
    """Raised when the registry cannot serve a request because its store failed.

    Distinct from not-found: a missing framework is a normal outcome, an
    unreachable store is not.
    """


class FrameworkNotFoundError(CloudwardError):
    """Raised by the engine when a requested framework is not registered."""

    def __init__(self, framework_id: str) -> None:
        self.framework_id = framework_id
        super().__init__(f"Framework not found: {framework_id}")


class TenantConfigNotFoundError(CloudwardError):
    """Raised by the engine when a tenant has no configuration for a framework."""

    def __init__(self, tenant_id: str, framework_id: str) -> None:
        self.tenant_id = tenant_id
        self.framework_id = framework_id
        super().__init__(
            f"Tenant framework configuration not found: {tenant_id}/{framework_id}"
        )


# -----------------------------------------------------------------------
# Rule backends
# -----------------------------------------------------------------------


class BackendError(CloudwardError):
    """A rule evaluation backend could not complete."""


class UnsupportedImplementationError(BackendError):
    """The rule declares an implementation kind no backend understands."""


class RuleTimeoutError(BackendError):
    """A rule evaluation exceeded its timeout."""


class InferenceError(BackendError):
    """The AI inference service call failed."""


class SandboxError(BackendError):
    """A sandboxed script raised, crashed, or produced unusable output."""


class SandboxTimeoutError(SandboxError):
    """A sandboxed script exceeded its wall-clock limit and was killed."""
