"""Tests for the sandboxed script backend.

These start real child interpreters, so they exercise the resource limits,
the audit hook, and the restricted builtins end to end.
"""

from __future__ import annotations

import sys
import textwrap

import pytest

from cloudward.dispatch.sandbox import SandboxedScriptBackend, SandboxLimits
from cloudward.errors import SandboxError, SandboxTimeoutError
from cloudward.frameworks.catalog import get_catalog_framework
from cloudward.frameworks.catalog.posture import FRAMEWORK_ID as POSTURE_ID
from cloudward.frameworks.schema import RuleImplementationKind
from tests.fixtures.builders import (
    OPEN_SECURITY_GROUP,
    PRIVATE_BUCKET,
    make_context,
    make_rule,
)

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="sandbox relies on POSIX process groups and rlimits",
)


def _script_rule(source: str, **kwargs):
    return make_rule(
        "SCRIPT.01",
        kind=RuleImplementationKind.SANDBOXED_SCRIPT,
        payload=textwrap.dedent(source),
        **kwargs,
    )


async def _evaluate(source: str, resources=(), parameters=None, limits=None, **kwargs):
    backend = SandboxedScriptBackend(limits)
    rule = _script_rule(source, **kwargs)
    return await backend.evaluate(make_context(rule, list(resources), parameters))


class TestFindings:
    @pytest.mark.asyncio
    async def test_create_finding(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                for resource in resources:
                    if resource["Type"] == "AWS::EC2::SecurityGroup":
                        utils.create_finding(resource, "Open group", "Too permissive")
            """,
            [OPEN_SECURITY_GROUP, PRIVATE_BUCKET],
        )
        assert len(evaluation.findings) == 1
        finding = evaluation.findings[0]
        assert finding.title == "Open group"
        assert finding.description == "Too permissive"
        assert finding.resource.name == "WebSecurityGroup"
        assert finding.resource.type == "AWS::EC2::SecurityGroup"
        assert finding.metadata == {"detected_by": "sandboxed-script"}
        assert evaluation.metadata == {"detected_by": "sandboxed-script"}

    @pytest.mark.asyncio
    async def test_no_findings(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                return None
            """,
            [PRIVATE_BUCKET],
        )
        assert evaluation.findings == []

    @pytest.mark.asyncio
    async def test_rule_and_parameters_visible(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                utils.create_finding({}, rule["rule_id"], str(parameters["port"]))
            """,
            parameters={"port": 3389},
        )
        assert evaluation.findings[0].title == "SCRIPT.01"
        assert evaluation.findings[0].description == "3389"

    @pytest.mark.asyncio
    async def test_implementation_not_exposed(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                utils.create_finding({}, "keys", ",".join(sorted(rule)))
            """,
        )
        assert "implementation" not in evaluation.findings[0].description.split(",")

    @pytest.mark.asyncio
    async def test_returned_list_is_used(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                keep = utils.create_finding({}, "kept", "")
                utils.create_finding({}, "dropped", "")
                return [keep]
            """,
        )
        assert [f.title for f in evaluation.findings] == ["kept"]

    @pytest.mark.asyncio
    async def test_async_evaluate(self) -> None:
        evaluation = await _evaluate(
            """
            async def evaluate(resources, rule, parameters, utils):
                for resource in resources:
                    utils.create_finding(resource, "async", "")
            """,
            [PRIVATE_BUCKET],
        )
        assert [f.title for f in evaluation.findings] == ["async"]

    @pytest.mark.asyncio
    async def test_allowed_modules_importable(self) -> None:
        evaluation = await _evaluate(
            """
            import ipaddress
            import re
            from collections import Counter

            def evaluate(resources, rule, parameters, utils):
                counts = Counter(r["Type"] for r in resources)
                if ipaddress.ip_network("0.0.0.0/0").num_addresses > 1 and re.match("AWS", "AWS"):
                    utils.create_finding({}, "counted", str(counts["AWS::S3::Bucket"]))
            """,
            [PRIVATE_BUCKET, PRIVATE_BUCKET],
        )
        assert evaluation.findings[0].description == "2"

    @pytest.mark.asyncio
    async def test_print_output_captured(self) -> None:
        evaluation = await _evaluate(
            """
            def evaluate(resources, rule, parameters, utils):
                print("checked", len(resources))
            """,
            [PRIVATE_BUCKET],
        )
        assert evaluation.metadata["script_output"] == "checked 1\n"

    @pytest.mark.asyncio
    async def test_catalog_ssh_rule(self) -> None:
        _, rules = get_catalog_framework(POSTURE_ID)
        ssh_rule = next(r for r in rules if r.rule_id == "EC2.2")
        backend = SandboxedScriptBackend()

        evaluation = await backend.evaluate(
            make_context(ssh_rule, [OPEN_SECURITY_GROUP, PRIVATE_BUCKET]),
        )

        assert len(evaluation.findings) == 1
        assert evaluation.findings[0].title == "Security group allows unrestricted SSH access"

    @pytest.mark.asyncio
    async def test_same_input_same_output(self) -> None:
        source = """
            def evaluate(resources, rule, parameters, utils):
                for resource in sorted(resources, key=lambda r: r["LogicalResourceId"]):
                    utils.create_finding(resource, resource["LogicalResourceId"], "")
            """
        first = await _evaluate(source, [OPEN_SECURITY_GROUP, PRIVATE_BUCKET])
        second = await _evaluate(source, [OPEN_SECURITY_GROUP, PRIVATE_BUCKET])
        assert first.findings == second.findings


class TestScriptErrors:
    @pytest.mark.asyncio
    async def test_empty_payload(self) -> None:
        with pytest.raises(SandboxError, match="empty script"):
            await _evaluate("   ")

    @pytest.mark.asyncio
    async def test_syntax_error(self) -> None:
        with pytest.raises(SandboxError, match="SyntaxError"):
            await _evaluate("def evaluate(:\n")

    @pytest.mark.asyncio
    async def test_missing_evaluate(self) -> None:
        with pytest.raises(SandboxError, match="must define evaluate"):
            await _evaluate("x = 1\n")

    @pytest.mark.asyncio
    async def test_script_exception(self) -> None:
        with pytest.raises(SandboxError, match="SCRIPT.01 failed: KeyError"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    return resources[0]["Missing"]
                """,
                [PRIVATE_BUCKET],
            )

    @pytest.mark.asyncio
    async def test_suspending_coroutine_rejected(self) -> None:
        with pytest.raises(SandboxError, match="may not suspend"):
            await _evaluate(
                """
                class Pause:
                    def __await__(self):
                        yield

                async def evaluate(resources, rule, parameters, utils):
                    await Pause()
                """,
            )

    @pytest.mark.asyncio
    async def test_bad_return_value(self) -> None:
        with pytest.raises(SandboxError, match="must return None or a list"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    return "nothing"
                """,
            )


class TestIsolation:
    @pytest.mark.asyncio
    async def test_open_unavailable(self) -> None:
        with pytest.raises(SandboxError, match="NameError"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    open("/etc/passwd").read()
                """,
            )

    @pytest.mark.asyncio
    async def test_import_os_blocked(self) -> None:
        with pytest.raises(SandboxError, match="import of 'os' is not permitted"):
            await _evaluate(
                """
                import os

                def evaluate(resources, rule, parameters, utils):
                    return None
                """,
            )

    @pytest.mark.asyncio
    async def test_import_socket_blocked_inside_evaluate(self) -> None:
        with pytest.raises(SandboxError, match="import of 'socket' is not permitted"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    import socket
                """,
            )

    @pytest.mark.asyncio
    async def test_relative_import_blocked(self) -> None:
        with pytest.raises(SandboxError, match="not permitted"):
            await _evaluate(
                """
                from . import anything

                def evaluate(resources, rule, parameters, utils):
                    return None
                """,
            )

    @pytest.mark.asyncio
    async def test_eval_unavailable(self) -> None:
        with pytest.raises(SandboxError, match="NameError"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    eval("1 + 1")
                """,
            )

    @pytest.mark.asyncio
    async def test_private_module_attribute_rejected(self) -> None:
        # collections keeps a reference to sys, and sys.modules holds os
        with pytest.raises(SandboxError, match="name '_sys' is not permitted"):
            await _evaluate(
                """
                import collections

                def evaluate(resources, rule, parameters, utils):
                    collections._sys.modules["os"].listdir("/")
                """,
            )

    @pytest.mark.asyncio
    async def test_utils_function_globals_unreachable(self) -> None:
        with pytest.raises(SandboxError, match="is not permitted in the rule sandbox"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    real = utils.create_finding.__func__.__builtins__
                    real["open"]("/etc/passwd")
                """,
            )

    @pytest.mark.asyncio
    async def test_subclass_walk_rejected(self) -> None:
        with pytest.raises(SandboxError, match="is not permitted in the rule sandbox"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    for cls in ().__class__.__base__.__subclasses__():
                        if cls.__name__ == "BuiltinImporter":
                            cls.load_module("posix").stat("/etc/passwd")
                """,
            )

    @pytest.mark.asyncio
    async def test_dunder_names_rejected(self) -> None:
        with pytest.raises(SandboxError, match="name '__import__' is not permitted"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    __import__("posix").access("/etc/shadow", 0)
                """,
            )

    @pytest.mark.asyncio
    async def test_generator_frames_rejected(self) -> None:
        with pytest.raises(SandboxError, match="name 'gi_frame' is not permitted"):
            await _evaluate(
                """
                def walk():
                    yield 1

                def evaluate(resources, rule, parameters, utils):
                    frame = walk().gi_frame
                """,
            )

    @pytest.mark.asyncio
    async def test_attribute_hooks_rejected(self) -> None:
        with pytest.raises(SandboxError, match="name '__setattr__' is not permitted"):
            await _evaluate(
                """
                class Capture:
                    def __setattr__(self, name, value):
                        pass

                def evaluate(resources, rule, parameters, utils):
                    return None
                """,
            )

    @pytest.mark.asyncio
    async def test_module_views_hide_submodules(self) -> None:
        # fnmatch imports os; the view must not carry it
        with pytest.raises(SandboxError, match="AttributeError"):
            await _evaluate(
                """
                import fnmatch

                def evaluate(resources, rule, parameters, utils):
                    fnmatch.os.stat("/etc/passwd")
                """,
            )

    @pytest.mark.asyncio
    async def test_submodule_import_from_view_rejected(self) -> None:
        with pytest.raises(SandboxError, match="ImportError"):
            await _evaluate(
                """
                from statistics import sys

                def evaluate(resources, rule, parameters, utils):
                    return None
                """,
            )

    @pytest.mark.asyncio
    async def test_attribute_copying_helpers_hidden(self) -> None:
        with pytest.raises(SandboxError, match="AttributeError"):
            await _evaluate(
                """
                import functools

                def evaluate(resources, rule, parameters, utils):
                    functools.update_wrapper(object(), evaluate, assigned=("__globals__",))
                """,
            )

    @pytest.mark.asyncio
    async def test_nested_allowed_module(self) -> None:
        evaluation = await _evaluate(
            """
            import collections.abc
            from fnmatch import fnmatch

            def evaluate(resources, rule, parameters, utils):
                if isinstance(parameters, collections.abc.Mapping) and fnmatch("s3", "s*"):
                    utils.create_finding({}, "ok", "")
            """,
            parameters={"region": "eu-west-1"},
        )
        assert [f.title for f in evaluation.findings] == ["ok"]


class TestLimits:
    @pytest.mark.asyncio
    async def test_wall_clock_timeout(self) -> None:
        with pytest.raises(SandboxTimeoutError, match="exceeded 1s and was killed"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    while True:
                        pass
                """,
                limits=SandboxLimits(timeout_seconds=1, cpu_seconds=30),
            )

    @pytest.mark.asyncio
    async def test_cpu_limit_kills_child(self) -> None:
        with pytest.raises(SandboxError, match="killed by signal"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    while True:
                        pass
                """,
                limits=SandboxLimits(timeout_seconds=30, cpu_seconds=1),
            )

    @pytest.mark.asyncio
    async def test_output_cap(self) -> None:
        with pytest.raises(SandboxError, match="output exceeded 1024 bytes"):
            await _evaluate(
                """
                def evaluate(resources, rule, parameters, utils):
                    print("x" * 5000)
                """,
                limits=SandboxLimits(max_output_bytes=1024),
            )
