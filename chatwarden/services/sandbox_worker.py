# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/sandbox_worker.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Script worker executed in a fresh ``python -I -S -B`` process.

Standard library only: this file is run by path, never imported by the host.
It reads one JSON request from stdin, locks the process down further, runs the
script with a restricted builtins table and read-only module proxies, and
writes exactly one JSON line tagged with the request nonce to stdout.

Request fields: ``nonce``, ``source``, ``bindings``, ``max_output_chars``.
Response fields: ``nonce``, ``status`` (``ok``, ``error``, ``silent``,
``resource_exceeded``), ``output``, ``message``.
"""

# Standard
import ast
import builtins
import collections
import datetime
import functools
import itertools
import json
import math
import random
import re
import resource
import statistics
import string
import sys
import time
import types

ALLOWED_MODULES = {
    "collections": collections,
    "datetime": datetime,
    "functools": functools,
    "itertools": itertools,
    "json": json,
    "math": math,
    "random": random,
    "re": re,
    "statistics": statistics,
    "string": string,
    "time": time,
}

# Members that reach attributes through format strings
HIDDEN_MEMBERS = {"string": {"Formatter"}}


class NoReply(Exception):
    """Raise from a script to send no reply."""


class OutputLimitExceeded(BaseException):
    """Printed output went past the configured ceiling."""


class ModuleProxy:
    """Read-only view of the public, non-module members of a module."""

    __slots__ = ("_name", "_members")

    def __init__(self, module):
        hidden = HIDDEN_MEMBERS.get(module.__name__, set())
        members = {k: v for k, v in vars(module).items() if not k.startswith("_") and not isinstance(v, types.ModuleType) and k not in hidden}
        object.__setattr__(self, "_name", module.__name__)
        object.__setattr__(self, "_members", members)

    def __getattr__(self, item):
        try:
            return self._members[item]
        except KeyError:
            raise AttributeError(f"module '{self._name}' has no attribute '{item}'") from None

    def __setattr__(self, key, value):
        raise AttributeError(f"module '{self._name}' is read-only")

    def __dir__(self):
        return sorted(self._members)

    def __repr__(self):
        return f"<module '{self._name}'>"


class OutputBuffer:
    """Collects printed text up to a character ceiling."""

    def __init__(self, limit):
        self.limit = limit
        self.parts = []
        self.size = 0
        self.overflow = False

    def write(self, text):
        self.size += len(text)
        if self.size > self.limit:
            self.overflow = True
            raise OutputLimitExceeded()
        self.parts.append(text)

    def getvalue(self):
        return "".join(self.parts)


def make_builtins(buffer):
    """Build the builtins table scripts run with."""
    proxies = {name: ModuleProxy(module) for name, module in ALLOWED_MODULES.items()}

    def safe_import(name, globals=None, locals=None, fromlist=(), level=0):  # pylint: disable=redefined-builtin,unused-argument
        if level != 0 or name not in proxies:
            raise ImportError(f"import of '{name}' is not allowed")
        return proxies[name]

    def safe_print(*args, sep=" ", end="\n"):
        buffer.write(str(sep).join(str(a) for a in args) + str(end))

    allowed = [
        abs, all, any, ascii, bin, bool, bytes, callable, chr, classmethod, dict, divmod, enumerate, filter, float, format,
        frozenset, hash, hex, int, isinstance, issubclass, iter, len, list, map, max, min, next, oct, ord, pow, property,
        range, repr, reversed, round, set, slice, sorted, staticmethod, str, sum, super, tuple, zip,
        ArithmeticError, AssertionError, AttributeError, Exception, ImportError, IndexError, KeyError, LookupError,
        NameError, NotImplementedError, OverflowError, RecursionError, RuntimeError, StopIteration, TypeError,
        ValueError, ZeroDivisionError,
    ]  # fmt: skip
    table = {obj.__name__: obj for obj in allowed}
    table.update(
        {
            "__build_class__": builtins.__build_class__,
            "__import__": safe_import,
            "print": safe_print,
            "NoReply": NoReply,
        }
    )
    return table


def lock_down():
    """Forbid opening files and spawning processes for the rest of the run."""
    for limit, value in ((resource.RLIMIT_NOFILE, 3), (resource.RLIMIT_NPROC, 0)):
        _, hard = resource.getrlimit(limit)
        ceiling = value if hard == resource.RLIM_INFINITY else min(value, hard)
        resource.setrlimit(limit, (ceiling, ceiling))


def compile_script(source):
    """Compile the body, evaluating a trailing expression separately."""
    tree = ast.parse(source, filename="<script>", mode="exec")
    tail = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = compile(ast.Expression(tree.body.pop().value), "<script>", "eval")
    return compile(tree, "<script>", "exec"), tail


def run(request):
    """Execute one request and return the response payload."""
    buffer = OutputBuffer(int(request.get("max_output_chars") or 1900))
    scope = {"__builtins__": make_builtins(buffer), "__name__": "script"}
    for key, value in (request.get("bindings") or {}).items():
        if key.isidentifier() and not key.startswith("_"):
            scope[key] = value

    try:
        body, tail = compile_script(request.get("source") or "")
        lock_down()
        exec(body, scope)  # nosec B102 - restricted scope
        if tail is not None:
            value = eval(tail, scope)  # nosec B307 - restricted scope
            if value is not None:
                buffer.write(repr(value))
    except NoReply:
        return {"status": "silent"}
    except OutputLimitExceeded:
        return {"status": "resource_exceeded", "message": f"Output limit of {buffer.limit} characters exceeded"}
    except MemoryError:
        scope.clear()
        return {"status": "resource_exceeded", "message": "Memory limit exceeded"}
    except SyntaxError as exc:
        return {"status": "error", "message": f"SyntaxError: {exc.msg} (line {exc.lineno})"}
    except Exception as exc:  # pylint: disable=broad-except
        text = str(exc)
        return {"status": "error", "message": f"{type(exc).__name__}: {text}" if text else type(exc).__name__}

    if buffer.overflow:
        return {"status": "resource_exceeded", "message": f"Output limit of {buffer.limit} characters exceeded"}
    return {"status": "ok", "output": buffer.getvalue().rstrip("\n")}


def main():
    """Entry point: read the request, run it, write the tagged response."""
    stdout = sys.stdout
    request = json.loads(sys.stdin.read())
    payload = run(request)
    payload["nonce"] = request.get("nonce")
    stdout.write(json.dumps(payload) + "\n")
    stdout.flush()


if __name__ == "__main__":
    main()
