from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Optional

import docker
from docker.errors import DockerException, NotFound
from docker.types import LogConfig

from .base import ExecutionLimits, IsolationContext, LanguageExecutor
from .errors import ResourceLimitExceeded, SandboxInfrastructureError
from .harness import GuestRuntime, decode_output, encode_payload, raise_for_exit

_LOGGER = logging.getLogger(__name__)

NOBODY = "65534:65534"


def _send_stdin(sock: Any, data: bytes) -> None:
    """Write the payload to an attached stdin stream and hang up."""

    raw = getattr(sock, "_sock", sock)
    try:
        raw.sendall(data)
    except (BrokenPipeError, ConnectionResetError):
        # The launcher died before it consumed stdin.
        pass
    finally:
        sock.close()


def _read_log_stream(container: Any, limit: int, *, stdout: bool, stderr: bool) -> bytes:
    """Stream one log channel, stopping once ``limit`` bytes are held."""

    chunks = container.logs(stdout=stdout, stderr=stderr, stream=True, follow=False)
    kept: list[bytes] = []
    size = 0
    try:
        for chunk in chunks:
            if limit > 0:
                chunk = chunk[: limit - size]
            kept.append(chunk)
            size += len(chunk)
            if limit > 0 and size >= limit:
                break
    finally:
        close = getattr(chunks, "close", None)
        if close is not None:
            close()
    return b"".join(kept)


class DockerContext(IsolationContext):
    """One throwaway container; force-removed when the context is left."""

    def __init__(self, executor: "DockerExecutor", limits: ExecutionLimits) -> None:
        super().__init__(limits)
        self._executor = executor
        self._client = None
        self._container = None
        self._stdin = None

    async def _setup(self) -> None:
        try:
            self._client = await asyncio.to_thread(self._executor.client_factory)
        except DockerException as exc:
            raise SandboxInfrastructureError(f"Docker is not reachable: {exc}") from exc

    def _container_options(self) -> dict[str, Any]:
        executor = self._executor
        memory = f"{self.limits.memory_mb}m"
        return {
            "command": executor.runtime.argv(None, self.limits),
            "environment": {"PYTHONIOENCODING": "utf-8"},
            "stdin_open": True,
            "name": f"codejudge_{executor.language.value}_{int(time.time())}_{uuid.uuid4().hex[:8]}",
            "labels": {
                "codejudge.sandbox": "1",
                "codejudge.language": executor.language.value,
            },
            "log_config": LogConfig(
                type=LogConfig.types.JSON,
                config={"max-size": executor.log_max_size, "max-file": "1"},
            ),
            "network_disabled": True,
            "network_mode": "none",
            "mem_limit": memory,
            "memswap_limit": memory,
            "pids_limit": executor.pids_limit,
            "nano_cpus": executor.nano_cpus,
            "read_only": True,
            "tmpfs": {"/tmp": f"rw,noexec,nosuid,size={executor.tmpfs_size}"},
            "cap_drop": ["ALL"],
            "security_opt": ["no-new-privileges"],
            "user": executor.user,
            "working_dir": "/tmp",
        }

    async def _run(self, code: str, stdin: str, *, entry_point: str) -> str:
        payload = encode_payload(code, stdin, entry_point).encode("ascii")

        try:
            self._container = await asyncio.to_thread(
                self._client.containers.create,
                self._executor.image,
                **self._container_options(),
            )
            self._stdin = await asyncio.to_thread(
                self._container.attach_socket, params={"stdin": 1, "stream": 1}
            )
            await asyncio.to_thread(self._container.start)
        except DockerException as exc:
            raise SandboxInfrastructureError(f"Could not start sandbox container: {exc}") from exc

        try:
            status = await asyncio.wait_for(self._feed_and_wait(payload), timeout=self.limits.timeout_seconds)
        except asyncio.TimeoutError:
            await self._kill()
            raise ResourceLimitExceeded(
                ResourceLimitExceeded.TIME,
                f"Time limit of {self.limits.timeout_ms} ms exceeded",
            ) from None
        except DockerException as exc:
            raise SandboxInfrastructureError(f"Lost track of sandbox container: {exc}") from exc

        limit = self._executor.max_output_bytes
        try:
            await asyncio.to_thread(self._container.reload)
            state = (self._container.attrs or {}).get("State", {})
            stdout = await asyncio.to_thread(_read_log_stream, self._container, limit, stdout=True, stderr=False)
            stderr = await asyncio.to_thread(_read_log_stream, self._container, limit, stdout=False, stderr=True)
        except DockerException as exc:
            raise SandboxInfrastructureError(f"Could not collect sandbox output: {exc}") from exc

        raise_for_exit(
            int((status or {}).get("StatusCode", 1)),
            decode_output(stderr, limit),
            oom_killed=bool(state.get("OOMKilled")),
        )
        return decode_output(stdout, limit)

    async def _feed_and_wait(self, payload: bytes) -> dict[str, Any]:
        sock, self._stdin = self._stdin, None
        try:
            await asyncio.to_thread(_send_stdin, sock, payload)
        except OSError as exc:
            raise SandboxInfrastructureError(f"Could not send input to sandbox container: {exc}") from exc
        return await asyncio.to_thread(self._container.wait)

    async def _kill(self) -> None:
        if self._container is None:
            return
        try:
            await asyncio.to_thread(self._container.kill)
        except DockerException as exc:
            # Already exited between the timeout and the kill.
            _LOGGER.debug("Kill of container %s skipped: %s", self._container.id, exc)

    async def _release(self) -> None:
        if self._stdin is not None:
            sock, self._stdin = self._stdin, None
            sock.close()
        try:
            if self._container is not None:
                container, self._container = self._container, None
                try:
                    await asyncio.to_thread(container.remove, force=True)
                except NotFound:
                    pass
        finally:
            if self._client is not None:
                client, self._client = self._client, None
                try:
                    await asyncio.to_thread(client.close)
                except Exception as exc:  # pragma: no cover - closing client is best effort
                    _LOGGER.warning("Closing docker client failed: %s", exc)


class DockerExecutor(LanguageExecutor):
    backend_name = "docker"

    def __init__(
        self,
        runtime: GuestRuntime,
        *,
        image: str,
        client_factory: Optional[Callable[[], Any]] = None,
        pids_limit: int = 64,
        max_output_bytes: int = 65536,
        nano_cpus: int = 1_000_000_000,
        tmpfs_size: str = "16m",
        log_max_size: str = "1m",
        user: str = NOBODY,
    ) -> None:
        self.runtime = runtime
        self.language = runtime.language
        self.image = image
        self.client_factory = client_factory or docker.from_env
        self.pids_limit = pids_limit
        self.max_output_bytes = max_output_bytes
        self.nano_cpus = nano_cpus
        self.tmpfs_size = tmpfs_size
        # Only the first max_output_bytes are ever read back.
        self.log_max_size = log_max_size
        self.user = user

    def open_context(self, limits: ExecutionLimits) -> DockerContext:
        return DockerContext(self, limits)

    async def health(self) -> dict[str, Any]:
        try:
            client = await asyncio.to_thread(self.client_factory)
        except Exception as exc:  # pragma: no cover - depends on docker availability
            return {"status": "error", "reason": str(exc)}

        status: dict[str, Any] = {"image": self.image}
        try:
            await asyncio.to_thread(client.ping)
        except Exception as exc:  # pragma: no cover - depends on docker availability
            status.update({"status": "error", "reason": str(exc)})
        else:
            status["status"] = "ok"
        finally:
            try:  # pragma: no cover - best effort cleanup
                await asyncio.to_thread(client.close)
            except Exception as exc:
                _LOGGER.debug("Closing docker client failed: %s", exc)
        return status

    def describe(self) -> dict[str, Optional[str]]:
        info = super().describe()
        info["image"] = self.image
        return info


__all__ = ["DockerContext", "DockerExecutor"]
