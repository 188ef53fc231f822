"""Sandboxed script backend.

Each SANDBOXED_SCRIPT rule runs in a fresh child interpreter started with
``-I -S``. The child gets an empty environment, an empty temporary working
directory and resource limits. The script sees only namespace views of
allowed modules, may not name private or dunder attributes, and runs under
an audit hook that rejects file, socket, process and introspection events
(see ``_sandbox_runner``). The parent enforces the wall-clock limit, kills
the child's process group when it expires, caps output size, and builds the
Finding records itself.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cloudward.dispatch.base import (
    RuleBackend,
    RuleContext,
    RuleEvaluation,
    build_finding,
    resource_info_from,
)
from cloudward.errors import SandboxError, SandboxTimeoutError
from cloudward.frameworks.findings import Finding
from cloudward.frameworks.schema import RuleImplementationKind

DETECTED_BY = "sandboxed-script"

_RUNNER_SOURCE = Path(__file__).with_name("_sandbox_runner.py").read_text(encoding="utf-8")

_READ_CHUNK = 65536


@dataclass(frozen=True)
class SandboxLimits:
    """Resource limits for one child interpreter.

    Attributes:
        timeout_seconds: Wall-clock limit enforced by the parent.
        cpu_seconds: RLIMIT_CPU inside the child.
        memory_limit_mb: RLIMIT_AS inside the child, unless the rule sets
            ``implementation.memory_limit_mb``.
        max_output_bytes: Largest stdout/stderr the parent will accept.
        max_open_files: RLIMIT_NOFILE inside the child.
    """

    timeout_seconds: float = 10.0
    cpu_seconds: int = 5
    memory_limit_mb: int = 256
    max_output_bytes: int = 1_048_576
    max_open_files: int = 16


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def _read_capped(stream: asyncio.StreamReader, limit: int) -> bytes:
    chunks: list[bytes] = []
    size = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return b"".join(chunks)
        size += len(chunk)
        if size > limit:
            raise SandboxError(f"Sandbox output exceeded {limit} bytes")
        chunks.append(chunk)


class SandboxedScriptBackend(RuleBackend):
    """Evaluates SANDBOXED_SCRIPT rules in an isolated child interpreter."""

    kind = RuleImplementationKind.SANDBOXED_SCRIPT

    def __init__(
        self,
        limits: SandboxLimits | None = None,
        python_executable: str | None = None,
    ) -> None:
        self._limits = limits or SandboxLimits()
        self._python = python_executable or sys.executable

    async def evaluate(self, context: RuleContext) -> RuleEvaluation:
        implementation = context.rule.implementation
        if not implementation.payload.strip():
            raise SandboxError(f"Rule {context.rule.rule_id} has an empty script")

        request = {
            "code": implementation.payload,
            "resources": list(context.resources),
            "rule": context.rule.model_dump(mode="json", exclude={"implementation"}),
            "parameters": context.parameters,
        }
        memory_mb = implementation.memory_limit_mb or self._limits.memory_limit_mb
        reply = await self._run(json.dumps(request, default=str).encode(), memory_mb)

        if not reply.get("ok"):
            raise SandboxError(
                f"Script for rule {context.rule.rule_id} failed: "
                f"{reply.get('error', 'unknown error')}"
            )

        findings: list[Finding] = []
        for record in reply.get("findings") or []:
            findings.append(build_finding(
                context,
                len(findings),
                resource_info_from(record.get("resource"), context),
                record.get("title", ""),
                record.get("description", ""),
                detected_by=DETECTED_BY,
            ))

        metadata: dict[str, Any] = {"detected_by": DETECTED_BY}
        if reply.get("output"):
            metadata["script_output"] = reply["output"]
        return RuleEvaluation(findings=findings, metadata=metadata)

    async def _run(self, request: bytes, memory_mb: int) -> dict[str, Any]:
        """Run the child interpreter on ``request`` and return its JSON reply."""
        limits = self._limits
        with tempfile.TemporaryDirectory(prefix="cloudward-sandbox-") as workdir:
            process = await asyncio.create_subprocess_exec(
                self._python, "-I", "-S", "-c", _RUNNER_SOURCE,
                str(limits.cpu_seconds), str(memory_mb), str(limits.max_open_files),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env={"PYTHONHASHSEED": "0"},
                start_new_session=True,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    self._exchange(process, request), timeout=limits.timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise SandboxTimeoutError(
                    f"Sandboxed script exceeded {limits.timeout_seconds:g}s and was killed"
                ) from e
            finally:
                # Also reached on cancellation by the dispatcher's timeout
                if process.returncode is None:
                    _kill(process)
                    await process.wait()

        if process.returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip()[-300:]
            if process.returncode < 0:
                reason = f"killed by signal {-process.returncode}"
            else:
                reason = f"exited with status {process.returncode}"
            raise SandboxError(f"Sandbox {reason}" + (f": {detail}" if detail else ""))

        try:
            reply = json.loads(stdout)
        except ValueError as e:
            raise SandboxError(f"Sandbox produced unreadable output: {e}") from e
        if not isinstance(reply, dict):
            raise SandboxError("Sandbox produced unreadable output: not a JSON object")
        return reply

    async def _exchange(
        self, process: asyncio.subprocess.Process, request: bytes
    ) -> tuple[bytes, bytes]:
        assert process.stdin is not None
        assert process.stdout is not None
        assert process.stderr is not None
        try:
            process.stdin.write(request)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Child died before reading; its exit status explains why
            pass
        process.stdin.close()

        stdout, stderr = await asyncio.gather(
            _read_capped(process.stdout, self._limits.max_output_bytes),
            _read_capped(process.stderr, self._limits.max_output_bytes),
        )
        await process.wait()
        return stdout, stderr
