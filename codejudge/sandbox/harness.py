"""Guest-side launchers and host-side interpretation of their exit status.

The launcher is the only program the isolation context starts. It reads
the base64 payload (guest source, test input, entry point name) from stdin
until EOF, binds the input, runs the guest module, then calls the entry
function (or ``main``) and prints a non-empty return value.
"""

from __future__ import annotations

import base64
import json
import re
import signal
from dataclasses import dataclass
from typing import Optional

from .base import ExecutionLimits, Language
from .errors import GuestRuntimeError, ResourceLimitExceeded

RUNTIME_ERROR_EXIT = 1
MEMORY_ERROR_EXIT = 3

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_MEMORY_MARKERS = ("MemoryError", "heap out of memory", "Allocation failed", "Cannot allocate memory")
_SIGXCPU = getattr(signal, "SIGXCPU", 24)
_SIGKILL = getattr(signal, "SIGKILL", 9)

PYTHON_HARNESS = r'''
import base64, inspect, io, json, os, sys

def _codejudge_main():
    raw = sys.stdin.buffer.read()
    payload = json.loads(base64.b64decode(raw).decode("utf-8"))
    data = payload["input"]
    sys.stdin = io.StringIO(data)
    namespace = {"__name__": "__guest__", "__builtins__": __builtins__, "input_data": data}
    try:
        exec(compile(payload["code"], "<submission>", "exec"), namespace)
        fn = namespace.get(payload["entry"])
        if not callable(fn):
            fn = namespace.get("main")
        if callable(fn):
            try:
                inspect.signature(fn).bind(data)
                takes_input = True
            except TypeError:
                takes_input = False
            except ValueError:
                takes_input = True
            result = fn(data) if takes_input else fn()
            if result is not None:
                print(result)
        sys.stdout.flush()
    except MemoryError:
        sys.stdout.flush()
        sys.stderr.write("MemoryError: memory limit exceeded\n")
        sys.stderr.flush()
        os._exit(3)
    except SystemExit as exc:
        sys.stdout.flush()
        if exc.code not in (None, 0):
            sys.stderr.write("SystemExit: exit status %s\n" % (exc.code,))
            sys.stderr.flush()
            os._exit(1)
    except BaseException as exc:
        sys.stdout.flush()
        sys.stderr.write("%s: %s\n" % (type(exc).__name__, exc))
        sys.stderr.flush()
        os._exit(1)

_codejudge_main()
'''

NODE_HARNESS = r'''
const fs = require("fs");
const raw = fs.readFileSync(0, "utf8");
const payload = JSON.parse(Buffer.from(raw, "base64").toString("utf8"));
const entry = /^[A-Za-z_$][A-Za-z0-9_$]*$/.test(payload.entry) ? payload.entry : "solve";
const input = payload.input;
const lines = input.split("\n");
let lineIndex = 0;
const readline = () => (lineIndex < lines.length ? lines[lineIndex++] : "");
try {
  const guest = new Function("input", "readline",
    payload.code + "\n;return [typeof " + entry + " === 'function' ? " + entry +
    " : null, typeof main === 'function' ? main : null];");
  const found = guest(input, readline);
  const fn = found[0] || found[1];
  if (fn) {
    const result = fn.length >= 1 ? fn(input) : fn();
    if (result !== undefined && result !== null) { console.log(String(result)); }
  }
} catch (err) {
  const name = err && err.name ? err.name : "Error";
  const message = err && err.message !== undefined ? err.message : String(err);
  process.stderr.write(name + ": " + message + "\n");
  process.exitCode = 1;
}
'''


@dataclass(frozen=True)
class GuestRuntime:
    """How one language's launcher is started inside an isolation context."""

    language: Language
    harness: str
    default_executable: str
    # V8 reserves far more address space than it uses, so RLIMIT_AS only
    # applies to runtimes that tolerate it.
    limit_address_space: bool = True

    def argv(self, executable: Optional[str], limits: ExecutionLimits) -> list[str]:
        exe = executable or self.default_executable
        if self.language == Language.python:
            return [exe, "-I", "-B", "-c", self.harness]
        if self.language == Language.javascript:
            heap_mb = max(16, (limits.memory_mb * 3) // 4)
            return [exe, f"--max-old-space-size={heap_mb}", "-e", self.harness]
        raise ValueError(f"No launcher for {self.language.value}")


PYTHON_RUNTIME = GuestRuntime(Language.python, PYTHON_HARNESS, "python")
NODE_RUNTIME = GuestRuntime(Language.javascript, NODE_HARNESS, "node", limit_address_space=False)

def validate_entry_point(name: Optional[str]) -> str:
    name = (name or "solve").strip()
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid entry point name '{name}'")
    return name


def encode_payload(code: str, stdin: str, entry_point: str = "solve") -> str:
    document = {"code": code, "input": stdin or "", "entry": validate_entry_point(entry_point)}
    return base64.b64encode(json.dumps(document).encode("utf-8")).decode("ascii")


def decode_output(data: bytes, limit: int) -> str:
    if limit > 0 and len(data) > limit:
        data = data[:limit]
    return data.decode("utf-8", errors="replace")


def last_error_line(stderr: str) -> str:
    for line in reversed((stderr or "").splitlines()):
        if line.strip():
            return line.strip()
    return ""


def _signal_number(exit_code: int) -> Optional[int]:
    if exit_code < 0:
        return -exit_code
    if exit_code > 128:
        return exit_code - 128
    return None


def raise_for_exit(exit_code: int, stderr: str, *, oom_killed: bool = False) -> None:
    """Translate a finished launcher's status into an ExecutionError."""

    if oom_killed:
        raise ResourceLimitExceeded(ResourceLimitExceeded.MEMORY)
    if exit_code == 0:
        return
    message = last_error_line(stderr)
    if exit_code == RUNTIME_ERROR_EXIT:
        raise GuestRuntimeError(message or "Runtime error")
    if exit_code == MEMORY_ERROR_EXIT or any(marker in (stderr or "") for marker in _MEMORY_MARKERS):
        raise ResourceLimitExceeded(ResourceLimitExceeded.MEMORY)
    if _signal_number(exit_code) in {_SIGXCPU, _SIGKILL}:
        raise ResourceLimitExceeded(ResourceLimitExceeded.TIME, "CPU time limit exceeded")
    raise GuestRuntimeError(message or f"Process exited with status {exit_code}")
