"""Environment driven settings for the grading engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _str(env: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = (env.get(key) or "").strip()
    return value or default


@dataclass(frozen=True)
class Settings:
    sandbox_runner: str = "docker"
    docker_host: Optional[str] = None
    docker_tls_verify: bool = True
    docker_tls_ca_cert: Optional[str] = None
    docker_tls_cert: Optional[str] = None
    docker_tls_key: Optional[str] = None
    python_image: str = "python:3.12-alpine"
    node_image: str = "node:20-alpine"
    python_executable: Optional[str] = None
    node_executable: Optional[str] = None
    subprocess_isolation: str = "namespace"
    bwrap_executable: Optional[str] = None
    sandbox_first_uid: int = 61000
    default_timeout_ms: int = 5000
    default_memory_mb: int = 128
    max_concurrency: int = 4
    max_parallel_cases: int = 1
    max_output_bytes: int = 65536
    pids_limit: int = 64
    submission_rate_limit: int = 0
    submission_rate_window: float = 60.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        defaults = cls()
        runner = (_str(env, "SANDBOX_RUNNER", defaults.sandbox_runner) or "").lower()
        return cls(
            sandbox_runner=runner,
            docker_host=_str(env, "SANDBOX_DOCKER_HOST"),
            docker_tls_verify=(
                _str(env, "SANDBOX_DOCKER_TLS_VERIFY", "1").lower() in _TRUTHY
            ),
            docker_tls_ca_cert=_str(env, "SANDBOX_DOCKER_TLS_CA_CERT"),
            docker_tls_cert=_str(env, "SANDBOX_DOCKER_TLS_CERT"),
            docker_tls_key=_str(env, "SANDBOX_DOCKER_TLS_KEY"),
            python_image=_str(env, "SANDBOX_PYTHON_IMAGE", defaults.python_image),
            node_image=_str(env, "SANDBOX_NODE_IMAGE", defaults.node_image),
            python_executable=_str(env, "SANDBOX_PYTHON_EXECUTABLE"),
            node_executable=_str(env, "SANDBOX_NODE_EXECUTABLE"),
            subprocess_isolation=(
                _str(env, "SANDBOX_SUBPROCESS_ISOLATION", defaults.subprocess_isolation) or ""
            ).lower(),
            bwrap_executable=_str(env, "SANDBOX_BWRAP_EXECUTABLE"),
            sandbox_first_uid=_int(env, "SANDBOX_FIRST_UID", defaults.sandbox_first_uid),
            default_timeout_ms=_int(env, "SANDBOX_DEFAULT_TIMEOUT_MS", defaults.default_timeout_ms),
            default_memory_mb=_int(env, "SANDBOX_DEFAULT_MEMORY_MB", defaults.default_memory_mb),
            max_concurrency=max(1, _int(env, "SANDBOX_MAX_CONCURRENCY", defaults.max_concurrency)),
            max_parallel_cases=max(
                1, _int(env, "SANDBOX_MAX_PARALLEL_CASES", defaults.max_parallel_cases)
            ),
            max_output_bytes=_int(env, "SANDBOX_MAX_OUTPUT_BYTES", defaults.max_output_bytes),
            pids_limit=_int(env, "SANDBOX_PIDS_LIMIT", defaults.pids_limit),
            submission_rate_limit=_int(env, "CODE_SUBMISSION_RATE_LIMIT", 0),
            submission_rate_window=_float(env, "CODE_SUBMISSION_RATE_WINDOW", 60.0),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


__all__ = ["Settings", "get_settings"]
