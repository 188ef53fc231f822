"""Child-side runtime for sandboxed rule scripts.

Executed as ``python -I -S -c <this source> <cpu> <memory_mb> <nofile>`` by
SandboxedScriptBackend, never imported by the engine. Standard library only.

Protocol: one JSON request on stdin
``{"code", "resources", "rule", "parameters"}``; one JSON reply on stdout
``{"ok": true, "findings": [...], "output": "..."}`` or
``{"ok": false, "error": "..."}``.

Order matters: resource limits, input, the name check, compilation and the
module views all happen before the audit hook is installed. After that no
file, socket, process, import or introspection event is permitted.

Scripts never see a real module or a runner function. Imports return
namespace views holding the public, non-module attributes of an allowed
module. Private, dunder and frame attributes are rejected before compiling.
``utils.create_finding`` is a class, so no function object hangs off
``utils``.
"""

# Nothing here may import subprocess (directly or via asyncio): its fork
# helper raises no audit event.
import ast
import builtins
import io
import json
import sys
import types

import collections
import collections.abc
import datetime
import fnmatch
import functools
import ipaddress
import itertools
import math
import re
import statistics
import string

# datetime.strptime imports this lazily
import _strptime  # noqa: F401

try:
    import resource
except ImportError:  # not POSIX
    resource = None

_ALLOWED_MODULES = frozenset({
    "collections",
    "collections.abc",
    "datetime",
    "fnmatch",
    "functools",
    "ipaddress",
    "itertools",
    "json",
    "math",
    "re",
    "statistics",
    "string",
})

# Helpers that read or copy attributes named by a string
_HIDDEN_ATTRIBUTES = {
    "functools": frozenset({"update_wrapper", "wraps"}),
    "string": frozenset({"Formatter"}),
}

_FRAME_ATTRIBUTES = frozenset({
    "ag_await", "ag_code", "ag_frame",
    "cr_await", "cr_code", "cr_frame", "cr_origin",
    "f_back", "f_builtins", "f_code", "f_globals", "f_locals", "f_trace",
    "gi_code", "gi_frame", "gi_yieldfrom",
    "tb_frame", "tb_next",
})

_ALLOWED_DUNDER_METHODS = frozenset({
    "__init__", "__repr__", "__str__", "__hash__", "__bool__",
    "__eq__", "__ne__", "__lt__", "__le__", "__gt__", "__ge__",
    "__len__", "__iter__", "__next__", "__contains__", "__getitem__",
    "__call__", "__await__",
    "__add__", "__sub__", "__mul__", "__truediv__",
})

_BLOCKED_EVENTS = frozenset({
    "compile",
    "import",
    "open",
    "object.__getattr__",
    "sys._getframe",
    "sys.settrace",
    "sys.setprofile",
    "sys.addaudithook",
})

_BLOCKED_PREFIXES = (
    "os.",
    "socket.",
    "subprocess.",
    "shutil.",
    "ctypes.",
    "urllib.",
    "http.",
    "ftplib.",
    "smtplib.",
    "glob.",
    "tempfile.",
    "marshal.",
    "pickle.",
    "code.",
    "gc.",
    "winreg.",
)

_SAFE_BUILTINS = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytes", "callable", "chr",
    "classmethod", "complex", "dict", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "hash", "hex", "int", "isinstance", "issubclass",
    "iter", "len", "list", "map", "max", "min", "next", "object", "oct", "ord",
    "pow", "print", "property", "range", "repr", "reversed", "round", "set",
    "slice", "sorted", "staticmethod", "str", "sum", "super", "tuple", "zip",
    "__build_class__",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "OverflowError", "RuntimeError", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
)

_MAX_CAPTURED_OUTPUT = 65536

# Filled by _CreatedFinding; read once evaluate() returns
_CREATED = []


def _audit(event, args):
    if event in _BLOCKED_EVENTS or event.startswith(_BLOCKED_PREFIXES):
        raise PermissionError(f"'{event}' is not permitted in the rule sandbox")


def _rejected_name(node):
    if isinstance(node, ast.Attribute):
        if node.attr.startswith("_") or node.attr in _FRAME_ATTRIBUTES:
            return node.attr
    elif isinstance(node, ast.Name):
        if node.id.startswith("__"):
            return node.id
    elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        if node.name.startswith("__") and node.name not in _ALLOWED_DUNDER_METHODS:
            return node.name
    elif isinstance(node, ast.ImportFrom):
        for alias in node.names:
            if alias.name.startswith("_"):
                return alias.name
    elif isinstance(node, ast.MatchClass):
        # Keyword patterns read attributes by name
        for attr in node.kwd_attrs:
            if attr.startswith("_") or attr in _FRAME_ATTRIBUTES:
                return attr
    return None


def _check_names(tree):
    for node in ast.walk(tree):
        name = _rejected_name(node)
        if name is not None:
            raise PermissionError(
                f"name '{name}' is not permitted in the rule sandbox "
                f"(line {getattr(node, 'lineno', '?')})"
            )


def _module_view(module):
    hidden = _HIDDEN_ATTRIBUTES.get(module.__name__, frozenset())
    public = {}
    for name in dir(module):
        if name.startswith("_") or name in hidden:
            continue
        value = getattr(module, name)
        if not isinstance(value, types.ModuleType):
            public[name] = value
    return types.SimpleNamespace(**public)


def _module_views():
    views = {name: _module_view(sys.modules[name]) for name in _ALLOWED_MODULES}
    for name in _ALLOWED_MODULES:
        parent, _, child = name.rpartition(".")
        if parent:
            setattr(views[parent], child, views[name])
    return views


def _restricted_import(views):
    def restricted_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name not in views:
            raise ImportError(f"import of '{name}' is not permitted in the rule sandbox")
        if fromlist:
            return views[name]
        return views[name.partition(".")[0]]

    return restricted_import


class _CreatedFinding:
    """Returned by ``utils.create_finding``; creating one records it."""

    __slots__ = ("resource", "title", "description")

    def __init__(self, resource, title, description):
        self.resource = resource
        self.title = str(title)
        self.description = str(description)
        _CREATED.append(self)


def _apply_limits(cpu_seconds, memory_mb, max_files):
    if resource is None:
        return
    resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds))
    resource.setrlimit(resource.RLIMIT_FSIZE, (0, 0))
    resource.setrlimit(resource.RLIMIT_NOFILE, (max_files, max_files))
    if hasattr(resource, "RLIMIT_NPROC"):
        resource.setrlimit(resource.RLIMIT_NPROC, (0, 0))
    memory = memory_mb * 1024 * 1024
    try:
        resource.setrlimit(resource.RLIMIT_AS, (memory, memory))
    except (ValueError, OSError):
        # RLIMIT_AS is not enforceable on every platform (e.g. macOS)
        pass


def _reply(stream, payload):
    stream.write(json.dumps(payload, default=str))
    stream.flush()


def _describe(error):
    return f"{type(error).__name__}: {error}"


def _drive(coroutine):
    # No event loop is loaded in the child, so a coroutine must finish without suspending
    try:
        coroutine.send(None)
    except StopIteration as stop:
        return stop.value
    coroutine.close()
    raise RuntimeError("async evaluate() may not suspend in the rule sandbox")


def _run(request):
    tree = ast.parse(request["code"], "<rule>", "exec")
    _check_names(tree)
    code = compile(tree, "<rule>", "exec")

    script_builtins = {name: getattr(builtins, name) for name in _SAFE_BUILTINS}
    script_builtins["__import__"] = _restricted_import(_module_views())
    namespace = {"__builtins__": script_builtins, "__name__": "rule"}
    utils = types.SimpleNamespace(create_finding=_CreatedFinding)

    # Audit hooks cannot be removed once added
    sys.addaudithook(_audit)
    exec(code, namespace)
    evaluate = namespace.get("evaluate")
    if not callable(evaluate):
        raise TypeError("script must define evaluate(resources, rule, parameters, utils)")

    result = evaluate(request["resources"], request["rule"], request["parameters"], utils)
    if isinstance(result, collections.abc.Coroutine):
        result = _drive(result)

    if result is None:
        return list(_CREATED)
    if not isinstance(result, (list, tuple)):
        raise TypeError("evaluate() must return None or a list of created findings")
    for item in result:
        if not isinstance(item, _CreatedFinding):
            raise TypeError("evaluate() must return findings made by utils.create_finding")
    return list(result)


def main():
    cpu_seconds, memory_mb, max_files = (int(arg) for arg in sys.argv[1:4])
    _apply_limits(cpu_seconds, memory_mb, max_files)

    reply_stream = sys.stdout
    captured = io.StringIO()
    request = json.loads(sys.stdin.buffer.read())

    sys.stdout = captured
    sys.stderr = captured

    try:
        findings = _run(request)
    except SyntaxError as e:
        _reply(reply_stream, {"ok": False, "error": f"SyntaxError: {e.msg} (line {e.lineno})"})
        return
    except Exception as e:  # noqa: BLE001 - reported to the parent as the rule's error
        _reply(reply_stream, {
            "ok": False,
            "error": _describe(e),
            "output": captured.getvalue()[:_MAX_CAPTURED_OUTPUT],
        })
        return

    _reply(reply_stream, {
        "ok": True,
        "findings": [
            {"resource": f.resource, "title": f.title, "description": f.description}
            for f in findings
        ],
        "output": captured.getvalue()[:_MAX_CAPTURED_OUTPUT],
    })


if __name__ == "__main__":
    main()
