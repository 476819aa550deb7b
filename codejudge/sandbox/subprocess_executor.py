"""Local-process isolation backend.

Every run gets a private temporary working directory, a scrubbed
environment, its own session and rlimits for address space, CPU time, file
size and core dumps. On top of that:

* ``NamespaceJail`` wraps the launcher in bubblewrap. The guest gets fresh
  pid, network, ipc and mount namespaces in which only the system
  directories are mounted read-only. It sees no host files, has no network,
  and every process it starts dies with the namespace.
* ``SandboxAccounts`` hands each run its own uid when the service runs as
  root. The guest drops to that uid, ``RLIMIT_NPROC`` caps how many
  processes it may own, and release kills whatever the uid still owns.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from functools import partial
from typing import Any, Optional, Sequence

import psutil

from .base import ExecutionLimits, IsolationContext, LanguageExecutor
from .errors import ResourceLimitExceeded, SandboxInfrastructureError
from .harness import GuestRuntime, decode_output, encode_payload, raise_for_exit

try:  # POSIX only
    import resource
except ImportError:  # pragma: no cover - Windows
    resource = None

_LOGGER = logging.getLogger(__name__)

MAX_FILE_BYTES = 1024 * 1024
JAIL_WORKDIR = "/sandbox"
SYSTEM_PATHS = (
    "/usr",
    "/bin",
    "/sbin",
    "/lib",
    "/lib32",
    "/lib64",
    "/etc/alternatives",
    "/etc/ld.so.cache",
)
_READ_CHUNK = 64 * 1024
_KILL_SWEEPS = 40


def _limit_child(limits: ExecutionLimits, limit_address_space: bool, process_limit: Optional[int]) -> None:
    """Runs in the forked child right before exec (after any uid switch)."""

    resource.setrlimit(resource.RLIMIT_CPU, (limits.cpu_seconds, limits.cpu_seconds))
    resource.setrlimit(resource.RLIMIT_FSIZE, (MAX_FILE_BYTES, MAX_FILE_BYTES))
    resource.setrlimit(resource.RLIMIT_CORE, (0, 0))
    if limit_address_space:
        resource.setrlimit(resource.RLIMIT_AS, (limits.memory_bytes, limits.memory_bytes))
    if process_limit:
        resource.setrlimit(resource.RLIMIT_NPROC, (process_limit, process_limit))


async def _read_capped(stream: asyncio.StreamReader, limit: int) -> bytes:
    """Drain ``stream`` completely but keep at most ``limit`` bytes."""

    kept: list[bytes] = []
    size = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        if size < limit:
            kept.append(chunk[: limit - size])
        size += len(chunk)
    return b"".join(kept)


def _account_processes(uid: int) -> list[psutil.Process]:
    found = []
    for proc in psutil.process_iter(["uids", "status"]):
        uids = proc.info["uids"]
        if uids is None or uids.real != uid:
            continue
        if proc.info["status"] == psutil.STATUS_ZOMBIE:
            continue
        found.append(proc)
    return found


def kill_account_processes(uid: int) -> None:
    """SIGKILL every live process whose real uid is ``uid`` until none is left."""

    for _ in range(_KILL_SWEEPS):
        survivors = _account_processes(uid)
        if not survivors:
            return
        for proc in survivors:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        time.sleep(0.05)
    raise SandboxInfrastructureError(f"Processes of sandbox account {uid} survived cleanup")


class SandboxAccounts:
    """Otherwise unused uids, one per concurrently running guest."""

    def __init__(self, first_uid: int, count: int) -> None:
        if first_uid <= 0 or count <= 0:
            raise ValueError("first_uid and count must be positive")
        self._free = list(range(first_uid, first_uid + count))

    @classmethod
    def for_host(cls, first_uid: int, count: int) -> Optional["SandboxAccounts"]:
        """Only root can switch uids; other service accounts run guests as themselves."""

        if getattr(os, "geteuid", lambda: -1)() != 0:
            return None
        return cls(first_uid, count)

    @property
    def available(self) -> int:
        return len(self._free)

    def acquire(self) -> int:
        if not self._free:
            raise SandboxInfrastructureError("No free sandbox account")
        return self._free.pop(0)

    def release(self, uid: int) -> None:
        self._free.append(uid)


class NamespaceJail:
    """bubblewrap command line for one guest run."""

    def __init__(self, executable: str, *, read_only_paths: Sequence[str] = SYSTEM_PATHS) -> None:
        self.executable = executable
        self.read_only_paths = tuple(read_only_paths)

    @classmethod
    def find(cls, executable: Optional[str] = None) -> Optional["NamespaceJail"]:
        path = executable or shutil.which("bwrap")
        if not path or not os.path.exists(path):
            return None
        return cls(path)

    def command(self, argv: Sequence[str], workdir: Optional[str] = None) -> list[str]:
        program = os.path.realpath(argv[0])
        mounts = list(self.read_only_paths)
        prefix = os.path.dirname(os.path.dirname(program))
        if not any(prefix == path or prefix.startswith(path + "/") for path in mounts):
            mounts.append(prefix)

        command = [
            self.executable,
            "--unshare-all",
            "--die-with-parent",
            "--new-session",
        ]
        for path in mounts:
            command += ["--ro-bind-try", path, path]
        command += ["--proc", "/proc", "--dev", "/dev", "--tmpfs", "/tmp"]
        if workdir:
            command += ["--bind", workdir, JAIL_WORKDIR, "--chdir", JAIL_WORKDIR]
        return command + ["--", program, *argv[1:]]

    def verify(self, *, uid: Optional[int] = None) -> Optional[str]:
        """Start an empty jail once; return the failure reason, if any."""

        options: dict[str, Any] = {}
        if uid is not None:
            options.update(user=uid, group=uid, extra_groups=[])
        try:
            completed = subprocess.run(
                self.command(["/bin/sh", "-c", "exit 0"]),
                capture_output=True,
                timeout=10,
                **options,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            return str(exc)
        if completed.returncode != 0:
            return completed.stderr.decode("utf-8", errors="replace").strip() or f"exit status {completed.returncode}"
        return None

    @staticmethod
    def is_setup_failure(stderr: str) -> bool:
        return stderr.lstrip().startswith("bwrap:")


class SubprocessContext(IsolationContext):
    def __init__(self, executor: "SubprocessExecutor", limits: ExecutionLimits) -> None:
        super().__init__(limits)
        self._executor = executor
        self._workdir: Optional[str] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._uid: Optional[int] = None

    async def _setup(self) -> None:
        self._workdir = await asyncio.to_thread(tempfile.mkdtemp, prefix="codejudge-")
        accounts = self._executor.accounts
        if accounts is not None:
            self._uid = accounts.acquire()
            await asyncio.to_thread(os.chown, self._workdir, self._uid, self._uid)

    def _environment(self) -> dict[str, str]:
        home = JAIL_WORKDIR if self._executor.jail else (self._workdir or "/tmp")
        return {
            "PATH": "/usr/local/bin:/usr/bin:/bin",
            "HOME": home,
            "TMPDIR": home,
            "LANG": "C.UTF-8",
            "PYTHONIOENCODING": "utf-8",
        }

    def _spawn_options(self) -> dict[str, Any]:
        runtime = self._executor.runtime
        options: dict[str, Any] = {}
        process_limit = None
        if self._uid is not None:
            options.update(user=self._uid, group=self._uid, extra_groups=[])
            process_limit = self._executor.process_limit
        if resource is not None:
            options["preexec_fn"] = partial(
                _limit_child, self.limits, runtime.limit_address_space, process_limit
            )
        return options

    async def _run(self, code: str, stdin: str, *, entry_point: str) -> str:
        executor = self._executor
        runtime = executor.runtime
        payload = encode_payload(code, stdin, entry_point).encode("ascii")
        argv = runtime.argv(executor.executable, self.limits)
        if executor.jail is not None:
            argv = executor.jail.command(argv, self._workdir)

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._workdir,
                env=self._environment(),
                start_new_session=True,
                **self._spawn_options(),
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SandboxInfrastructureError(f"Could not start {runtime.language.value} process: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                self._communicate(payload), timeout=self.limits.timeout_seconds
            )
        except asyncio.TimeoutError:
            await self._kill()
            raise ResourceLimitExceeded(
                ResourceLimitExceeded.TIME,
                f"Time limit of {self.limits.timeout_ms} ms exceeded",
            ) from None

        limit = executor.max_output_bytes
        error_text = decode_output(stderr, limit)
        returncode = self._process.returncode
        if returncode != 0 and executor.jail is not None and executor.jail.is_setup_failure(error_text):
            raise SandboxInfrastructureError(f"Could not start jail: {error_text.strip()}")
        raise_for_exit(returncode, error_text)
        return decode_output(stdout, limit)

    async def _communicate(self, payload: bytes) -> tuple[bytes, bytes]:
        process = self._process
        limit = self._executor.max_output_bytes

        async def _feed() -> None:
            try:
                process.stdin.write(payload)
                await process.stdin.drain()
                process.stdin.close()
                await process.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                # The guest may exit before the launcher consumed stdin.
                return

        _, stdout, stderr = await asyncio.gather(
            _feed(),
            _read_capped(process.stdout, limit),
            _read_capped(process.stderr, limit),
        )
        await process.wait()
        return stdout, stderr

    async def _kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError:
            process.kill()
        await process.wait()

    async def _release(self) -> None:
        try:
            await self._kill()
            if self._uid is not None:
                await asyncio.to_thread(kill_account_processes, self._uid)
                self._executor.accounts.release(self._uid)
                self._uid = None
        finally:
            if self._workdir:
                workdir, self._workdir = self._workdir, None
                await asyncio.to_thread(shutil.rmtree, workdir)


class SubprocessExecutor(LanguageExecutor):
    backend_name = "subprocess"

    def __init__(
        self,
        runtime: GuestRuntime,
        *,
        executable: Optional[str] = None,
        max_output_bytes: int = 65536,
        jail: Optional[NamespaceJail] = None,
        accounts: Optional[SandboxAccounts] = None,
        process_limit: int = 64,
    ) -> None:
        self.runtime = runtime
        self.language = runtime.language
        self.executable = executable or shutil.which(runtime.default_executable)
        self.max_output_bytes = max_output_bytes
        self.jail = jail
        self.accounts = accounts
        self.process_limit = process_limit

    @property
    def available(self) -> bool:
        return bool(self.executable) and os.path.exists(self.executable)

    @property
    def isolation(self) -> str:
        return "namespace" if self.jail is not None else "host"

    def open_context(self, limits: ExecutionLimits) -> SubprocessContext:
        if not self.available:
            raise SandboxInfrastructureError(
                f"No {self.runtime.default_executable} executable available for {self.language.value}"
            )
        return SubprocessContext(self, limits)

    async def health(self) -> dict[str, Any]:
        if not self.available:
            return {"status": "unavailable", "reason": f"{self.runtime.default_executable} not found"}
        return {"status": "ok", "executable": self.executable}

    def describe(self) -> dict[str, Optional[str]]:
        info = super().describe()
        info["isolation"] = self.isolation
        return info


__all__ = [
    "NamespaceJail",
    "SandboxAccounts",
    "SubprocessContext",
    "SubprocessExecutor",
    "kill_account_processes",
]
