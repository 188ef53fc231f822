"""Key-value stores backing the framework registry.

Items are plain dicts addressed by a two-part key: a partition key ``pk``
(``FRAMEWORK#<id>``, ``TENANT#<id>``) and a sort key ``sk`` (``#METADATA``,
``RULE#<rule_id>``, ``FRAMEWORK#<framework_id>``). Any store that supports
range scans on the sort key satisfies the registry.

Store implementations raise StoreError for any backing-store failure.
"""

from __future__ import annotations

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from functools import reduce
from typing import Any

from cloudward.errors import StoreError


@dataclass(frozen=True)
class StorePage:
    """One page of query/scan results.

    Attributes:
        items: The matching items, in sort-key order.
        last_key: Key of the last item returned when more items remain,
            otherwise None. Pass it back as ``start_key`` to continue.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    last_key: dict[str, str] | None = None


class RegistryStore(ABC):
    """Abstract async store interface used by FrameworkRegistry."""

    @abstractmethod
    async def get_item(self, pk: str, sk: str) -> dict[str, Any] | None:
        """Return the item at (pk, sk), or None if absent."""

    @abstractmethod
    async def put_item(self, item: dict[str, Any]) -> None:
        """Insert or replace an item. ``item`` must contain ``pk`` and ``sk``."""

    @abstractmethod
    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        """Range-scan one partition on a sort-key prefix."""

    @abstractmethod
    async def scan(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        """Scan every partition."""


def _matches(item: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(item.get(name) == value for name, value in filters.items())


class InMemoryRegistryStore(RegistryStore):
    """Process-local store. Items are deep-copied in and out."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._items)

    async def get_item(self, pk: str, sk: str) -> dict[str, Any] | None:
        item = self._items.get((pk, sk))
        return copy.deepcopy(item) if item is not None else None

    async def put_item(self, item: dict[str, Any]) -> None:
        if "pk" not in item or "sk" not in item:
            msg = "Store items must contain 'pk' and 'sk'"
            raise ValueError(msg)
        self._items[(item["pk"], item["sk"])] = copy.deepcopy(item)

    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        keys = sorted(
            key for key in self._items
            if key[0] == pk and key[1].startswith(sk_prefix)
        )
        return self._page(keys, filters, limit, start_key)

    async def scan(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        return self._page(sorted(self._items), filters, limit, start_key)

    def _page(
        self,
        keys: list[tuple[str, str]],
        filters: dict[str, Any] | None,
        limit: int,
        start_key: dict[str, str] | None,
    ) -> StorePage:
        if start_key is not None:
            after = (start_key["pk"], start_key["sk"])
            keys = [key for key in keys if key > after]

        matching = [key for key in keys if _matches(self._items[key], filters)]
        selected = matching[:limit]
        last_key = None
        if len(matching) > limit:
            pk, sk = selected[-1]
            last_key = {"pk": pk, "sk": sk}

        return StorePage(
            items=[copy.deepcopy(self._items[key]) for key in selected],
            last_key=last_key,
        )


# -----------------------------------------------------------------------
# DynamoDB
# -----------------------------------------------------------------------


def _to_dynamo(item: dict[str, Any]) -> dict[str, Any]:
    """DynamoDB rejects floats; round-trip through JSON with Decimal floats."""
    return json.loads(json.dumps(item, default=str), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDBRegistryStore(RegistryStore):
    """Single-table DynamoDB store with ``pk``/``sk`` string keys.

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(
        self,
        table_name: str,
        *,
        region: str | None = None,
        table: Any = None,
    ) -> None:
        """Initialize the store.

        Args:
            table_name: DynamoDB table name.
            region: AWS region for the boto3 session.
            table: Pre-built boto3 Table resource (skips session creation).
        """
        if table is None:
            import boto3

            session = boto3.session.Session(region_name=region)
            table = session.resource("dynamodb").Table(table_name)
        self._table = table
        self._table_name = table_name

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        from botocore.exceptions import BotoCoreError, ClientError

        method = getattr(self._table, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(
                f"DynamoDB {operation} on table '{self._table_name}' failed: {e}"
            ) from e

    @staticmethod
    def _filter_expression(filters: dict[str, Any] | None) -> Any:
        if not filters:
            return None
        from boto3.dynamodb.conditions import Attr

        conditions = [Attr(name).eq(value) for name, value in filters.items()]
        return reduce(lambda left, right: left & right, conditions)

    async def get_item(self, pk: str, sk: str) -> dict[str, Any] | None:
        response = await self._call("get_item", Key={"pk": pk, "sk": sk})
        item = response.get("Item")
        return _from_dynamo(item) if item is not None else None

    async def put_item(self, item: dict[str, Any]) -> None:
        await self._call("put_item", Item=_to_dynamo(item))

    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        from boto3.dynamodb.conditions import Key

        key_condition = Key("pk").eq(pk)
        if sk_prefix:
            key_condition = key_condition & Key("sk").begins_with(sk_prefix)

        kwargs: dict[str, Any] = {"KeyConditionExpression": key_condition, "Limit": limit}
        filter_expression = self._filter_expression(filters)
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if start_key is not None:
            kwargs["ExclusiveStartKey"] = start_key

        response = await self._call("query", **kwargs)
        return StorePage(
            items=[_from_dynamo(item) for item in response.get("Items", [])],
            last_key=response.get("LastEvaluatedKey"),
        )

    async def scan(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
        start_key: dict[str, str] | None = None,
    ) -> StorePage:
        kwargs: dict[str, Any] = {"Limit": limit}
        filter_expression = self._filter_expression(filters)
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if start_key is not None:
            kwargs["ExclusiveStartKey"] = start_key

        response = await self._call("scan", **kwargs)
        return StorePage(
            items=[_from_dynamo(item) for item in response.get("Items", [])],
            last_key=response.get("LastEvaluatedKey"),
        )
