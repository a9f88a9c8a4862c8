"""Helpers to run a PyPlay program in a short-lived worker process.

`run_code_in_subprocess` launches ``backend.pyplay._subprocess_worker`` (which
follows a simple JSON-over-stdin/stdout protocol), enforces a wall-clock
timeout and can apply light OS-level resource limits on POSIX systems (CPU
seconds and address-space / memory usage) to reduce the blast radius of
runaway programs.

Behavior and guarantees:
  - On POSIX, optional RLIMIT_CPU and RLIMIT_AS limits are applied using a
    preexec function. On Windows these limits are no-ops.
  - The worker is launched with closed file descriptors and a minimal
    environment.
  - The function returns (returncode, stdout, stderr). A returncode of -1
    indicates the process was terminated due to timeout.

Note: This is not a substitute for proper container/VM-based isolation in
production.
"""

import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

WORKER_MODULE = "backend.pyplay._subprocess_worker"

# repository root: the directory that contains the `backend` package
_ROOT = Path(__file__).resolve().parents[2]


def _make_posix_preexec(cpu_seconds: Optional[int], mem_limit_mb: Optional[int]):
    """Return a preexec_fn that applies resource limits on POSIX systems.

    If the `resource` module is unavailable the function becomes a no-op.
    """
    def preexec():
        try:
            import resource

            if cpu_seconds is not None:
                resource.setrlimit(resource.RLIMIT_CPU, (int(cpu_seconds), int(cpu_seconds)))

            if mem_limit_mb is not None:
                mem_bytes = int(mem_limit_mb) * 1024 * 1024
                resource.setrlimit(resource.RLIMIT_AS, (mem_bytes, mem_bytes))

            # new session so signals sent to the parent's group skip the worker
            os.setsid()
        except (ImportError, OSError, ValueError):
            return

    return preexec


def run_code_in_subprocess(
    code: str,
    inputs: Optional[List[str]] = None,
    settings: Optional[Dict[str, Any]] = None,
    timeout_s: float = 2,
    *,
    cpu_seconds: Optional[int] = 2,
    mem_limit_mb: Optional[int] = 200,
) -> Tuple[int, str, str]:
    """Run `code` in the worker process and return its raw outputs.

    Parameters:
      - code: program source sent to the worker.
      - inputs: queued answers for ``input()``.
      - settings: interpreter tunables forwarded to ``Interpreter.run``.
      - timeout_s: wall-clock timeout for the whole operation (seconds).
      - cpu_seconds: optional RLIMIT_CPU (seconds) applied on POSIX.
      - mem_limit_mb: optional RLIMIT_AS (MB) applied on POSIX.

    Returns (returncode, stdout, stderr). On timeout the process is killed and
    (-1, "", "TIMEOUT") is returned.
    """
    # Minimal environment: PATH for the interpreter, PYTHONPATH so the
    # worker can import the `backend` package from a source checkout.
    env = {
        "PATH": os.environ.get("PATH", ""),
        "PYTHONPATH": str(_ROOT),
    }

    popen_kwargs: Dict[str, Any] = dict(
        args=[sys.executable, "-m", WORKER_MODULE],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
        cwd=str(_ROOT),
        close_fds=True,
    )

    if os.name != "nt":
        popen_kwargs["preexec_fn"] = _make_posix_preexec(cpu_seconds, mem_limit_mb)

    proc = subprocess.Popen(**popen_kwargs)

    payload = json.dumps({"code": code, "inputs": inputs or [], "settings": settings or {}})
    try:
        out, err = proc.communicate(payload, timeout=timeout_s)
    except subprocess.TimeoutExpired:
        logger.warning("Worker exceeded %.1fs timeout; killing pid %s", timeout_s, proc.pid)
        proc.kill()
        proc.communicate()
        return -1, "", "TIMEOUT"

    return proc.returncode, out or "", err or ""
