# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/sandbox_manager.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Sandbox manager for untrusted user scripts.

Every script runs in a fresh, isolated interpreter process
(``python -I -S -B sandbox_worker.py``) with an empty environment, a private
working directory and POSIX resource limits. The host validates the script's
syntax tree first, talks to the worker over a one-shot JSON line protocol
tagged with a per-run nonce, and turns every outcome into a ``ScriptResult``.

Lifecycle::

    stopped -> starting -> running -> stopped
                           running -> degraded -> stopped

Executions are fair across tenants: a per-tenant semaphore is acquired before
the global pool semaphore, so one tenant never holds every worker slot.
"""

# Future
from __future__ import annotations

# Standard
import ast
import asyncio
import contextlib
import importlib.util
import logging
import math
import os
from pathlib import Path
import shutil
import sys
import tempfile
from typing import Any, Dict, FrozenSet, Mapping, Optional, Set
import uuid

# Third-Party
import orjson

# First-Party
from chatwarden.errors import SandboxIsolationError, SandboxUnavailable, ScriptRuntimeError
from chatwarden.models import SandboxState, ScriptErrorKind, ScriptLimits, ScriptResult

logger = logging.getLogger(__name__)

WORKER_PATH = Path(__file__).with_name("sandbox_worker.py")

ALLOWED_IMPORTS: FrozenSet[str] = frozenset({"collections", "datetime", "functools", "itertools", "json", "math", "random", "re", "statistics", "string", "time"})

# Introspection attributes that lead from a value back to frames, code or types.
BLOCKED_ATTRIBUTES: FrozenSet[str] = frozenset(
    {
        "ag_await",
        "ag_code",
        "ag_frame",
        "co_code",
        "cr_await",
        "cr_code",
        "cr_frame",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "format",
        "format_map",
        "gi_code",
        "gi_frame",
        "gi_yieldfrom",
        "mro",
        "tb_frame",
        "tb_next",
    }
)

PROBE_SOURCE = "open"
STOP_GRACE_SECONDS = 2.0


class ScriptValidator(ast.NodeVisitor):
    """Static checks on a script's syntax tree.

    Examples:
        >>> ScriptValidator().validate("import math\\nmath.sqrt(4)")
        >>> ScriptValidator().validate("().__class__")
        Traceback (most recent call last):
        ...
        chatwarden.errors.ScriptRuntimeError: Access to '__class__' is not allowed
    """

    def __init__(self, allowed_imports: FrozenSet[str] = ALLOWED_IMPORTS) -> None:
        """Create a validator.

        Args:
            allowed_imports: Module names scripts may import.
        """
        self.allowed_imports = allowed_imports

    def validate(self, source: str) -> None:
        """Parse and check a script.

        Args:
            source: Script source.

        Raises:
            ScriptRuntimeError: On a syntax error or a forbidden construct.
        """
        try:
            tree = ast.parse(source, filename="<script>", mode="exec")
        except SyntaxError as exc:
            raise ScriptRuntimeError(f"SyntaxError: {exc.msg} (line {exc.lineno})") from exc
        self.visit(tree)

    def visit_Import(self, node: ast.Import) -> None:  # noqa: N802
        """Allow only allow-listed top-level modules."""
        for alias in node.names:
            self._check_module(alias.name)
            if alias.asname:
                self._check_name(alias.asname)
        self.generic_visit(node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:  # noqa: N802
        """Allow ``from <allowed> import <public name>`` only."""
        if node.level:
            raise ScriptRuntimeError("Relative imports are not allowed")
        self._check_module(node.module or "")
        for alias in node.names:
            if alias.name == "*":
                raise ScriptRuntimeError("Star imports are not allowed")
            self._check_name(alias.name)
            if alias.asname:
                self._check_name(alias.asname)
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:  # noqa: N802
        """Reject private and dunder names."""
        self._check_name(node.id)
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:  # noqa: N802
        """Reject private, dunder and introspection attributes."""
        self._check_name(node.attr)
        if node.attr in BLOCKED_ATTRIBUTES:
            raise ScriptRuntimeError(f"Access to '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:  # noqa: N802
        """Class patterns read attributes by name."""
        for attr in node.kwd_attrs:
            self._check_name(attr)
            if attr in BLOCKED_ATTRIBUTES:
                raise ScriptRuntimeError(f"Access to '{attr}' is not allowed")
        self.generic_visit(node)

    def _check_module(self, name: str) -> None:
        if name not in self.allowed_imports:
            raise ScriptRuntimeError(f"Import of '{name}' is not allowed")

    @staticmethod
    def _check_name(name: str) -> None:
        if name.startswith("_"):
            raise ScriptRuntimeError(f"Access to '{name}' is not allowed")


def _limit_preexec(limits: ScriptLimits):
    """Build the ``preexec_fn`` applying resource limits in the child."""

    def apply() -> None:
        # Standard
        import resource  # pylint: disable=import-outside-toplevel

        memory = limits.max_memory_mb * 1024 * 1024
        cpu = math.ceil(limits.timeout_seconds) + 1
        resource.setrlimit(resource.RLIMIT_AS, (memory, memory))
        resource.setrlimit(resource.RLIMIT_CPU, (cpu, cpu))
        resource.setrlimit(resource.RLIMIT_FSIZE, (0, 0))
        resource.setrlimit(resource.RLIMIT_CORE, (0, 0))

    return apply


class SandboxManager:
    """Owns the lifecycle and execution of sandboxed scripts.

    Examples:
        >>> manager = SandboxManager()
        >>> manager.state
        <SandboxState.STOPPED: 'stopped'>
        >>> manager.in_flight
        0
    """

    def __init__(
        self,
        default_limits: Optional[ScriptLimits] = None,
        pool_size: int = 4,
        per_tenant_concurrency: int = 1,
        python_path: Optional[str] = None,
    ) -> None:
        """Create a stopped manager.

        Args:
            default_limits: Limits used when ``run_script`` gets none.
            pool_size: Maximum concurrent worker processes.
            per_tenant_concurrency: Maximum concurrent scripts per tenant.
            python_path: Interpreter for workers; defaults to the running one.
        """
        self.default_limits = default_limits or ScriptLimits()
        self.pool_size = pool_size
        self.per_tenant_concurrency = per_tenant_concurrency
        self._python_path = python_path
        self._validator = ScriptValidator()
        self._state = SandboxState.STOPPED
        self._stopping = False
        self._pool: Optional[asyncio.Semaphore] = None
        self._tenant_slots: Dict[str, asyncio.Semaphore] = {}
        self._tenant_users: Dict[str, int] = {}
        self._processes: Set[asyncio.subprocess.Process] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._workdir: Optional[Path] = None
        self._interpreter: Optional[str] = None

    @property
    def state(self) -> SandboxState:
        """Current lifecycle state."""
        return self._state

    @property
    def in_flight(self) -> int:
        """Number of executions currently running or queued."""
        return len(self._tasks)

    async def start(self) -> None:
        """Establish isolation and start accepting scripts.

        Raises:
            SandboxIsolationError: If isolation cannot be established; the
                manager is left ``stopped``.
        """
        if self._state is SandboxState.RUNNING:
            return
        if self._state is not SandboxState.STOPPED:
            raise SandboxIsolationError(f"Cannot start sandbox from state '{self._state.value}'")

        self._set_state(SandboxState.STARTING)
        try:
            self._interpreter = self._resolve_interpreter()
            if importlib.util.find_spec("resource") is None:
                raise SandboxIsolationError("POSIX resource limits are not available on this platform")
            if not WORKER_PATH.is_file():
                raise SandboxIsolationError(f"Sandbox worker not found at {WORKER_PATH}")
            self._workdir = Path(tempfile.mkdtemp(prefix="chatwarden-sandbox-"))
            self._pool = asyncio.Semaphore(self.pool_size)
            self._tenant_slots = {}
            self._tenant_users = {}
            self._stopping = False
            await self._probe()
        except (SandboxIsolationError, SandboxUnavailable, OSError) as exc:
            self._cleanup_workdir()
            self._set_state(SandboxState.STOPPED)
            logger.error("Sandbox isolation could not be established: %s", exc)
            if isinstance(exc, SandboxIsolationError):
                raise
            raise SandboxIsolationError(str(exc)) from exc

        self._set_state(SandboxState.RUNNING)

    async def stop(self) -> None:
        """Reject new scripts, kill live workers and wait for in-flight executions."""
        if self._state is SandboxState.STOPPED and not self._tasks:
            return
        self._stopping = True
        for proc in list(self._processes):
            self._kill(proc)

        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=STOP_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._cleanup_workdir()
        self._pool = None
        self._tenant_slots = {}
        self._tenant_users = {}
        self._set_state(SandboxState.STOPPED)
        self._stopping = False

    async def run_script(
        self,
        source: str,
        bindings: Optional[Mapping[str, Any]] = None,
        limits: Optional[ScriptLimits] = None,
        tenant_id: str = "",
    ) -> ScriptResult:
        """Run one script and return its result.

        Timeouts, resource breaches and script exceptions are returned as
        failed results; they never change the manager's state.

        Args:
            source: Script source code.
            bindings: JSON-compatible values injected as globals.
            limits: Resource limits; ``default_limits`` when omitted.
            tenant_id: Tenant submitting the script, for fair scheduling.

        Returns:
            ScriptResult: Output or error information.

        Raises:
            SandboxUnavailable: If the manager is not running, the worker
                could not be spawned, or the manager stopped mid-run.
        """
        self._ensure_accepting()
        limits = limits or self.default_limits

        try:
            self._validator.validate(source)
        except ScriptRuntimeError as exc:
            logger.info("Rejected script from tenant %s: %s", tenant_id or "-", exc)
            return ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, str(exc))

        task = asyncio.create_task(self._run_fair(source, dict(bindings or {}), limits, tenant_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except asyncio.CancelledError:
            if self._stopping and task.cancelled():
                raise SandboxUnavailable("Sandbox stopped while the script was running") from None
            raise

    async def _run_fair(self, source: str, bindings: Dict[str, Any], limits: ScriptLimits, tenant_id: str) -> ScriptResult:
        """Acquire the tenant slot, then a pool slot, then execute."""
        pool = self._pool
        if pool is None:
            raise SandboxUnavailable("Sandbox is not running")
        tenant_slot = self._tenant_slots.get(tenant_id)
        if tenant_slot is None:
            tenant_slot = self._tenant_slots[tenant_id] = asyncio.Semaphore(self.per_tenant_concurrency)
        self._tenant_users[tenant_id] = self._tenant_users.get(tenant_id, 0) + 1
        try:
            async with tenant_slot:
                async with pool:
                    self._ensure_accepting()
                    return await self._execute(source, bindings, limits)
        finally:
            self._release_tenant(tenant_id)

    def _release_tenant(self, tenant_id: str) -> None:
        """Drop a tenant's slot once no script of it is running or queued."""
        remaining = self._tenant_users.get(tenant_id, 1) - 1
        if remaining > 0:
            self._tenant_users[tenant_id] = remaining
            return
        self._tenant_users.pop(tenant_id, None)
        self._tenant_slots.pop(tenant_id, None)

    async def _execute(self, source: str, bindings: Dict[str, Any], limits: ScriptLimits) -> ScriptResult:
        """Spawn a worker, exchange the request and map the outcome."""
        nonce = uuid.uuid4().hex
        request = orjson.dumps({"nonce": nonce, "source": source, "bindings": bindings, "max_output_chars": limits.max_output_chars})

        try:
            proc = await asyncio.create_subprocess_exec(
                self._interpreter or sys.executable,
                "-I",
                "-S",
                "-B",
                str(WORKER_PATH),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workdir) if self._workdir else None,
                env={},
                start_new_session=True,
                preexec_fn=_limit_preexec(limits),  # pylint: disable=subprocess-popen-preexec-fn
            )
        except (OSError, ValueError, RuntimeError) as exc:
            self._enter_degraded(f"failed to spawn worker: {exc}")
            raise SandboxUnavailable("Sandbox is unavailable") from exc

        self._processes.add(proc)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(request), timeout=limits.timeout_seconds)
        except TimeoutError:
            self._kill(proc)
            await proc.wait()
            logger.info("Script timed out after %dms", limits.timeout_ms)
            return ScriptResult.failure(ScriptErrorKind.TIMEOUT, f"Script timed out after {limits.timeout_ms}ms")
        finally:
            if proc.returncode is None:
                self._kill(proc)
            self._processes.discard(proc)

        if self._stopping:
            raise SandboxUnavailable("Sandbox stopped while the script was running")
        return self._interpret(nonce, proc.returncode, stdout, stderr)

    def _interpret(self, nonce: str, returncode: Optional[int], stdout: bytes, stderr: bytes) -> ScriptResult:
        """Map the worker's response (or its absence) to a result."""
        for line in stdout.splitlines():
            try:
                message = orjson.loads(line)
            except orjson.JSONDecodeError:
                continue
            if not isinstance(message, dict) or message.get("nonce") != nonce:
                continue
            status = message.get("status")
            if status == "ok":
                return ScriptResult.success(str(message.get("output") or ""))
            if status == "silent":
                return ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, None)
            if status == "resource_exceeded":
                return ScriptResult.failure(ScriptErrorKind.RESOURCE_EXCEEDED, str(message.get("message") or "Resource limit exceeded"))
            return ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, str(message.get("message") or "Script failed"))

        detail = stderr.decode("utf-8", errors="replace").strip()
        if (returncode is not None and returncode < 0) or "MemoryError" in detail:
            logger.info("Script worker terminated by resource limit (exit %s)", returncode)
            return ScriptResult.failure(ScriptErrorKind.RESOURCE_EXCEEDED, "Script exceeded its resource limits")
        logger.warning("Script worker exited without a result (exit %s): %s", returncode, detail[-500:])
        return ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, "Script worker exited unexpectedly")

    async def _probe(self) -> None:
        """Run a probe script that must not see ``open``."""
        result = await self._execute(PROBE_SOURCE, {}, self.default_limits)
        message = result.error.message if result.error else None
        if result.ok or not message or "NameError" not in message:
            raise SandboxIsolationError(f"Sandbox probe did not confirm a restricted scope: {result}")
        logger.debug("Sandbox probe passed")

    def _resolve_interpreter(self) -> str:
        """Find the Python interpreter used for workers."""
        candidate = self._python_path or sys.executable or shutil.which("python3") or shutil.which("python")
        if not candidate or not os.access(candidate, os.X_OK):
            raise SandboxIsolationError("No Python interpreter available for the sandbox")
        return candidate

    def _ensure_accepting(self) -> None:
        if self._stopping or self._state is not SandboxState.RUNNING:
            raise SandboxUnavailable(f"Sandbox is {self._state.value}")

    def _enter_degraded(self, reason: str) -> None:
        logger.error("Sandbox degraded: %s", reason)
        if self._state is SandboxState.RUNNING:
            self._set_state(SandboxState.DEGRADED)

    def _set_state(self, state: SandboxState) -> None:
        if state is not self._state:
            logger.info("Sandbox state %s -> %s", self._state.value, state.value)
            self._state = state

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()

    def _cleanup_workdir(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
