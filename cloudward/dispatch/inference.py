"""AI inference backend.

Builds a prompt from the rule and the resource inventory, sends it to a
language model, and turns the model's JSON array of findings into Finding
records.

A model that answers with something other than a JSON array is not an
error: the rule reports zero findings, the evaluation metadata carries
``response_parsed: False``, and the audit log records the raw excerpt so the
"clean pass" can be told apart from a parse failure.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from cloudward.audit.logger import AnalysisAuditLogger
from cloudward.dispatch.base import (
    RuleBackend,
    RuleContext,
    RuleEvaluation,
    build_finding,
    resource_info_from,
)
from cloudward.errors import InferenceError
from cloudward.frameworks.findings import Finding, ResourceInfo
from cloudward.frameworks.schema import RuleImplementationKind

DETECTED_BY = "ai-inference"

_DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
_ANTHROPIC_API_VERSION = "2023-06-01"
_BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"

# Raw model text kept in the audit log when a response cannot be parsed
_EXCERPT_CHARS = 500


@dataclass(frozen=True)
class InferenceRequest:
    model_id: str
    prompt: str
    max_tokens: int = 4000


class InferenceClient(ABC):
    """A text-completion transport for one model provider."""

    @abstractmethod
    async def complete(self, request: InferenceRequest) -> str:
        """Send ``request`` and return the model's text response.

        Raises:
            InferenceError: If the service call fails or returns no text.
        """

    async def close(self) -> None:
        """Release any held connections."""


def _response_text(payload: Any) -> str:
    """Join the text blocks of an Anthropic messages response."""
    if not isinstance(payload, dict):
        raise InferenceError("Inference response is not a JSON object")
    blocks = payload.get("content")
    if not isinstance(blocks, list):
        raise InferenceError("Inference response has no content blocks")
    texts = [
        block["text"]
        for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text"
        and isinstance(block.get("text"), str)
    ]
    if not texts:
        raise InferenceError("Inference response has no text content")
    return "".join(texts)


def _messages_body(request: InferenceRequest) -> dict[str, Any]:
    return {
        "max_tokens": request.max_tokens,
        "messages": [{"role": "user", "content": request.prompt}],
    }


class BedrockInferenceClient(InferenceClient):
    """Anthropic models served through the Bedrock runtime (boto3).

    boto3 is synchronous, so each call runs in a worker thread.
    """

    def __init__(self, region: str | None = None, client: Any = None) -> None:
        """Initialize the client.

        Args:
            region: AWS region of the Bedrock runtime endpoint.
            client: Pre-built ``bedrock-runtime`` client (tests inject a mock).
        """
        self._region = region
        self._client = client

    def _get_client(self) -> Any:
        # Created on first use so rule sets without AI rules need no AWS setup
        if self._client is None:
            import boto3

            self._client = boto3.client("bedrock-runtime", region_name=self._region)
        return self._client

    async def complete(self, request: InferenceRequest) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        body = {"anthropic_version": _BEDROCK_ANTHROPIC_VERSION, **_messages_body(request)}
        try:
            response = await asyncio.to_thread(
                self._get_client().invoke_model,
                modelId=request.model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            payload = json.loads(response["body"].read())
        except (BotoCoreError, ClientError) as e:
            raise InferenceError(f"Bedrock invocation failed for {request.model_id}: {e}") from e
        except (KeyError, ValueError) as e:
            raise InferenceError(f"Bedrock returned an unreadable response: {e}") from e
        return _response_text(payload)


class AnthropicInferenceClient(InferenceClient):
    """Anthropic Messages API over HTTP (aiohttp)."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = _DEFAULT_ANTHROPIC_BASE_URL,
        request_timeout: float = 120.0,
        session: ClientSession | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/") + "/v1/messages"
        self._request_timeout = request_timeout
        self._session = session

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=ClientTimeout(total=self._request_timeout, connect=30),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def complete(self, request: InferenceRequest) -> str:
        session = await self._get_session()
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": _ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }
        body = {"model": request.model_id, **_messages_body(request)}
        try:
            async with session.post(self._url, headers=headers, json=body) as response:
                if response.status != 200:
                    detail = (await response.text())[:200]
                    raise InferenceError(
                        f"Anthropic API returned HTTP {response.status}: {detail}"
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise InferenceError(f"Anthropic API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise InferenceError(
                f"Anthropic API request exceeded {self._request_timeout:g}s"
            ) from e
        except ValueError as e:
            raise InferenceError(f"Anthropic API returned invalid JSON: {e}") from e
        return _response_text(payload)


# -----------------------------------------------------------------------
# Prompt and response handling
# -----------------------------------------------------------------------


def build_prompt(context: RuleContext) -> str:
    """Render the evaluation prompt for one rule."""
    rule = context.rule
    sections = [
        "You are a cloud security and best practices expert. Analyze the "
        "following cloud resources against the rule below and report every "
        "violation you find.",
        "",
        "Rule Details:",
        f"- Rule ID: {rule.rule_id}",
        f"- Name: {rule.name}",
        f"- Description: {rule.description}",
        f"- Severity: {rule.severity.value}",
        f"- Category: {rule.category}",
    ]
    if rule.pillar is not None:
        sections.append(f"- Pillar: {rule.pillar.value}")
    if rule.implementation.payload:
        sections += ["", "Rule Guidance:", rule.implementation.payload]
    sections += [
        "",
        "Conditions to check:",
        json.dumps(rule.conditions, indent=2, default=str),
    ]
    if context.parameters:
        sections += ["", "Parameters:", json.dumps(context.parameters, indent=2, default=str)]
    sections += [
        "",
        "Resources to analyze:",
        json.dumps(list(context.resources), indent=2, default=str),
        "",
        "Instructions:",
        "1. Check each resource against the rule conditions.",
        "2. Report one finding per violating resource.",
        "3. If no resource violates the rule, return an empty array.",
        "",
        "Response Format:",
        "Respond with only a JSON array of findings, no other text:",
        "[",
        "  {",
        '    "resourceName": "name of the violating resource",',
        '    "resourceType": "type of the resource",',
        '    "resourceArn": "ARN if known, else empty string",',
        '    "title": "short title of the issue",',
        '    "description": "what is wrong and why it matters",',
        '    "remediation": "how to fix it"',
        "  }",
        "]",
    ]
    return "\n".join(sections)


def extract_json_array(text: str) -> tuple[list[Any] | None, str]:
    """Return the first decodable top-level JSON array in ``text``.

    Models often wrap the array in prose or code fences, so decoding is
    attempted from each ``[`` in turn rather than from the start.

    Returns:
        ``(array, "")`` on success, ``(None, reason)`` otherwise.
    """
    decoder = json.JSONDecoder()
    index = text.find("[")
    if index < 0:
        return None, "no JSON array in response"
    while index >= 0:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("[", index + 1)
            continue
        if isinstance(value, list):
            return value, ""
        index = text.find("[", index + 1)
    return None, "JSON array in response could not be decoded"


def _match_resource(context: RuleContext, item: dict[str, Any]) -> ResourceInfo:
    """Resolve an AI-reported resource against the inventory when possible."""
    arn = item.get("resourceArn") or ""
    name = item.get("resourceName") or ""
    for resource in context.resources:
        info = resource_info_from(resource, context)
        if (arn and info.arn == arn) or (name and info.name == name):
            return info
    return ResourceInfo(
        type=str(item.get("resourceType") or "Unknown"),
        name=str(name or "Unknown"),
        arn=str(arn),
        region="unknown",
        account_id=context.tenant_id,
        properties={},
    )


class AIInferenceBackend(RuleBackend):
    """Evaluates AI_INFERENCE rules through an InferenceClient."""

    kind = RuleImplementationKind.AI_INFERENCE

    def __init__(
        self,
        client: InferenceClient,
        model_id: str,
        *,
        max_tokens: int = 4000,
        audit: AnalysisAuditLogger | None = None,
    ) -> None:
        self._client = client
        self._model_id = model_id
        self._max_tokens = max_tokens
        self._audit = audit

    async def close(self) -> None:
        await self._client.close()

    async def evaluate(self, context: RuleContext) -> RuleEvaluation:
        request = InferenceRequest(
            model_id=self._model_id,
            prompt=build_prompt(context),
            max_tokens=self._max_tokens,
        )
        text = await self._client.complete(request)

        items, reason = extract_json_array(text)
        if items is None:
            if self._audit is not None:
                self._audit.log_malformed_response(
                    context.rule.rule_id, reason, text[:_EXCERPT_CHARS],
                )
            return RuleEvaluation(
                findings=[],
                metadata={
                    "detected_by": DETECTED_BY,
                    "response_parsed": False,
                    "parse_error": reason,
                },
            )

        findings: list[Finding] = []
        discarded = 0
        for item in items:
            if not isinstance(item, dict):
                discarded += 1
                continue
            findings.append(build_finding(
                context,
                len(findings),
                _match_resource(context, item),
                str(item.get("title") or context.rule.name),
                str(item.get("description") or ""),
                remediation=str(item.get("remediation") or ""),
                detected_by=DETECTED_BY,
            ))

        metadata: dict[str, Any] = {"detected_by": DETECTED_BY, "response_parsed": True}
        if discarded:
            metadata["discarded_items"] = discarded
        return RuleEvaluation(findings=findings, metadata=metadata)
