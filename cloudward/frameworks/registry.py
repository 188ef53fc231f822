"""Framework registry: resolves framework, rule, and tenant configuration ids.

A CRUD-style accessor over a RegistryStore. No evaluation logic lives here.

Not-found is a normal outcome (None). A store failure is not: it is logged
and re-raised as RegistryUnavailableError so the caller can abort whatever
depended on the lookup.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.errors import RegistryUnavailableError, StoreError
from cloudward.frameworks.catalog import catalog_frameworks, get_catalog_framework
from cloudward.frameworks.schema import (
    Framework,
    FrameworkStatus,
    FrameworkType,
    Rule,
    Severity,
    TenantFrameworkConfig,
)
from cloudward.frameworks.store import RegistryStore

_METADATA_SK = "#METADATA"


def framework_key(framework_id: str) -> dict[str, str]:
    return {"pk": f"FRAMEWORK#{framework_id}", "sk": _METADATA_SK}


def rule_key(framework_id: str, rule_id: str) -> dict[str, str]:
    return {"pk": f"FRAMEWORK#{framework_id}", "sk": f"RULE#{rule_id}"}


def tenant_config_key(tenant_id: str, framework_id: str) -> dict[str, str]:
    return {"pk": f"TENANT#{tenant_id}", "sk": f"FRAMEWORK#{framework_id}"}


def encode_page_token(last_key: dict[str, str] | None) -> str | None:
    """Encode a store continuation key as an opaque base64 token."""
    if last_key is None:
        return None
    return base64.b64encode(json.dumps(last_key, sort_keys=True).encode()).decode()


def decode_page_token(token: str | None) -> dict[str, str] | None:
    """Decode a token produced by encode_page_token.

    Raises:
        ValueError: If the token is not a valid continuation cursor.
    """
    if token is None:
        return None
    try:
        decoded = json.loads(base64.b64decode(token.encode(), validate=True))
    except (ValueError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid pagination token: {token!r}") from e
    if not isinstance(decoded, dict) or "pk" not in decoded or "sk" not in decoded:
        raise ValueError(f"Invalid pagination token: {token!r}")
    return decoded


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _strip_keys(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if k not in ("pk", "sk")}


@dataclass(frozen=True)
class FrameworkPage:
    frameworks: list[Framework] = field(default_factory=list)
    next_token: str | None = None


@dataclass(frozen=True)
class RulePage:
    rules: list[Rule] = field(default_factory=list)
    next_token: str | None = None


class FrameworkRegistry:
    """Registry of frameworks, their rules, and per-tenant configuration."""

    def __init__(
        self,
        store: RegistryStore,
        audit: AnalysisAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._audit = audit

    def _unavailable(self, operation: str, error: Exception) -> RegistryUnavailableError:
        if self._audit is not None:
            self._audit.log_registry_error(operation, str(error))
        return RegistryUnavailableError(f"Registry unavailable during {operation}: {error}")

    # -------------------------------------------------------------------
    # Frameworks
    # -------------------------------------------------------------------

    async def get_framework(self, framework_id: str) -> Framework | None:
        """Get a framework by id, or None if it is not registered."""
        key = framework_key(framework_id)
        try:
            item = await self._store.get_item(key["pk"], key["sk"])
        except StoreError as e:
            raise self._unavailable(f"get_framework({framework_id})", e) from e
        if not item:
            return None
        try:
            return Framework.model_validate(_strip_keys(item))
        except ValidationError as e:
            raise RegistryUnavailableError(
                f"Malformed framework definition '{framework_id}': {e}"
            ) from e

    async def list_frameworks(
        self,
        *,
        type: FrameworkType | None = None,
        status: FrameworkStatus | None = None,
        limit: int = 50,
        next_token: str | None = None,
    ) -> FrameworkPage:
        """List frameworks, filtered by type and status (default: active).

        Args:
            type: Only frameworks of this type.
            status: Only frameworks with this status. Defaults to ACTIVE.
            limit: Page size.
            next_token: Continuation token from a previous page.
        """
        filters: dict[str, Any] = {
            "sk": _METADATA_SK,
            "status": (status or FrameworkStatus.ACTIVE).value,
        }
        if type is not None:
            filters["type"] = type.value

        try:
            page = await self._store.scan(
                filters=filters, limit=limit, start_key=decode_page_token(next_token),
            )
        except StoreError as e:
            raise self._unavailable("list_frameworks", e) from e

        try:
            frameworks = [Framework.model_validate(_strip_keys(i)) for i in page.items]
        except ValidationError as e:
            raise RegistryUnavailableError(f"Malformed framework definition: {e}") from e
        return FrameworkPage(
            frameworks=frameworks,
            next_token=encode_page_token(page.last_key),
        )

    async def save_framework(self, framework: Framework) -> Framework:
        """Insert or replace a framework definition (rules are saved separately)."""
        item = {**framework_key(framework.id), **framework.model_dump(mode="json")}
        try:
            await self._store.put_item(item)
        except StoreError as e:
            raise self._unavailable(f"save_framework({framework.id})", e) from e
        return framework

    # -------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------

    async def get_framework_rules(
        self,
        framework_id: str,
        *,
        category: str | None = None,
        severity: Severity | None = None,
        limit: int = 100,
        next_token: str | None = None,
    ) -> RulePage:
        """Get one page of a framework's rules, optionally filtered."""
        filters: dict[str, Any] = {}
        if category is not None:
            filters["category"] = category
        if severity is not None:
            filters["severity"] = severity.value

        key = framework_key(framework_id)
        try:
            page = await self._store.query(
                key["pk"],
                "RULE#",
                filters=filters or None,
                limit=limit,
                start_key=decode_page_token(next_token),
            )
        except StoreError as e:
            raise self._unavailable(f"get_framework_rules({framework_id})", e) from e

        try:
            rules = [Rule.model_validate(_strip_keys(i)) for i in page.items]
        except ValidationError as e:
            raise RegistryUnavailableError(
                f"Malformed rule definition in framework '{framework_id}': {e}"
            ) from e
        return RulePage(rules=rules, next_token=encode_page_token(page.last_key))

    async def get_all_framework_rules(self, framework_id: str) -> list[Rule]:
        """Follow pagination until every rule of the framework is loaded."""
        rules: list[Rule] = []
        token: str | None = None
        while True:
            page = await self.get_framework_rules(framework_id, next_token=token)
            rules.extend(page.rules)
            if page.next_token is None:
                return rules
            token = page.next_token

    async def save_rule(self, rule: Rule) -> Rule:
        """Insert or replace a rule, keyed by its framework and rule code."""
        item = {**rule_key(rule.framework_id, rule.rule_id), **rule.model_dump(mode="json")}
        try:
            await self._store.put_item(item)
        except StoreError as e:
            raise self._unavailable(f"save_rule({rule.framework_id}/{rule.rule_id})", e) from e
        return rule

    # -------------------------------------------------------------------
    # Tenant configuration
    # -------------------------------------------------------------------

    async def get_tenant_framework_config(
        self, tenant_id: str, framework_id: str
    ) -> TenantFrameworkConfig | None:
        """Get a tenant's configuration for a framework, or None if absent."""
        key = tenant_config_key(tenant_id, framework_id)
        try:
            item = await self._store.get_item(key["pk"], key["sk"])
        except StoreError as e:
            raise self._unavailable(
                f"get_tenant_framework_config({tenant_id}/{framework_id})", e
            ) from e
        if not item:
            return None
        try:
            return TenantFrameworkConfig.model_validate(_strip_keys(item))
        except ValidationError as e:
            raise RegistryUnavailableError(
                f"Malformed configuration for tenant '{tenant_id}' and framework "
                f"'{framework_id}': {e}"
            ) from e

    async def save_tenant_framework_config(
        self, config: TenantFrameworkConfig
    ) -> TenantFrameworkConfig:
        """Upsert a tenant configuration, stamping ``updated_at``.

        Saving the same configuration twice leaves one record.
        """
        now = _now_iso()
        saved = config.model_copy(update={
            "created_at": config.created_at or now,
            "updated_at": now,
        })
        item = {
            **tenant_config_key(config.tenant_id, config.framework_id),
            **saved.model_dump(mode="json"),
        }
        try:
            await self._store.put_item(item)
        except StoreError as e:
            raise self._unavailable(
                f"save_tenant_framework_config({config.tenant_id}/{config.framework_id})", e
            ) from e
        return saved

    async def get_default_frameworks_for_tenant(self, tenant_id: str) -> list[Framework]:
        """Return the frameworks a tenant has marked as default."""
        framework_ids: list[str] = []
        start_key: dict[str, str] | None = None
        try:
            while True:
                page = await self._store.query(
                    f"TENANT#{tenant_id}",
                    "FRAMEWORK#",
                    filters={"is_default": True},
                    start_key=start_key,
                )
                framework_ids.extend(item["framework_id"] for item in page.items)
                if page.last_key is None:
                    break
                start_key = page.last_key
        except StoreError as e:
            raise self._unavailable(f"get_default_frameworks_for_tenant({tenant_id})", e) from e

        frameworks: list[Framework] = []
        for framework_id in framework_ids:
            framework = await self.get_framework(framework_id)
            if framework is not None:
                frameworks.append(framework)
        return frameworks

    # -------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------

    async def initialize_default_frameworks(self) -> int:
        """Seed the built-in catalog. Safe to run repeatedly.

        Items are keyed by framework id and rule code, so re-seeding
        replaces rather than duplicates; an existing framework keeps its
        original ``created_at``.

        Returns:
            The number of frameworks seeded.
        """
        framework_ids = catalog_frameworks()
        for framework_id in framework_ids:
            framework, rules = get_catalog_framework(framework_id)
            existing = await self.get_framework(framework_id)
            now = _now_iso()
            await self.save_framework(framework.model_copy(update={
                "created_at": existing.created_at if existing and existing.created_at else now,
                "updated_at": now,
            }))
            for rule in rules:
                await self.save_rule(rule)
            if self._audit is not None:
                self._audit.log_framework_seeded(framework_id, len(rules))
        return len(framework_ids)
