"""Built-in framework catalog.

Each catalog module (well_architected, posture, service_delivery) registers
one Framework and its rule templates on import. The registry seeds its store
from this catalog. Adding a built-in framework means adding a module, with no
new registry logic.
"""

from __future__ import annotations

import re
from typing import Any

from cloudward.frameworks.schema import (
    Framework,
    Pillar,
    Rule,
    RuleImplementation,
    Severity,
)

_CATALOG: dict[str, tuple[Framework, list[Rule]]] = {}


def register_catalog_framework(framework: Framework, rules: list[Rule]) -> None:
    """Register a built-in framework and its rule templates.

    Args:
        framework: The framework definition (timestamps are set at seed time).
        rules: Rule templates; each must belong to ``framework``.

    Raises:
        ValueError: If a rule belongs to another framework or a rule code repeats.
    """
    seen: set[str] = set()
    for rule in rules:
        if rule.framework_id != framework.id:
            msg = (
                f"Rule '{rule.rule_id}' belongs to framework '{rule.framework_id}', "
                f"cannot register it under '{framework.id}'."
            )
            raise ValueError(msg)
        if rule.rule_id in seen:
            msg = f"Duplicate rule code '{rule.rule_id}' in framework '{framework.id}'."
            raise ValueError(msg)
        seen.add(rule.rule_id)
    _CATALOG[framework.id] = (framework, list(rules))


def get_catalog_framework(framework_id: str) -> tuple[Framework, list[Rule]]:
    """Get a built-in framework and its rule templates.

    Raises:
        ValueError: If the framework is not in the catalog.
    """
    load_builtin_catalog()
    if framework_id not in _CATALOG:
        available = ", ".join(sorted(_CATALOG)) or "(none)"
        msg = (
            f"Unknown built-in framework: '{framework_id}'. "
            f"Available frameworks: {available}."
        )
        raise ValueError(msg)
    framework, rules = _CATALOG[framework_id]
    return framework, list(rules)


def catalog_frameworks() -> list[str]:
    """Return sorted ids of the built-in frameworks."""
    load_builtin_catalog()
    return sorted(_CATALOG)


def load_builtin_catalog() -> None:
    """Import the built-in catalog modules so they register themselves."""
    from cloudward.frameworks.catalog import (  # noqa: F401
        posture,
        service_delivery,
        well_architected,
    )


def create_custom_rule(
    framework_id: str,
    rule_id: str,
    name: str,
    description: str,
    severity: Severity,
    category: str,
    implementation: RuleImplementation,
    conditions: dict[str, Any] | None = None,
    remediation: str = "",
    pillar: Pillar | None = None,
) -> Rule:
    """Build a tenant- or user-authored rule for a framework.

    The storage id is derived from the rule code: "CUST.01" → "custom-cust-01".
    """
    slug = re.sub(r"[^a-z0-9]", "-", rule_id.lower())
    return Rule(
        id=f"custom-{slug}",
        framework_id=framework_id,
        rule_id=rule_id,
        name=name,
        description=description,
        severity=severity,
        pillar=pillar,
        category=category,
        tags=["custom"],
        implementation=implementation,
        conditions=conditions or {},
        remediation=remediation,
    )
