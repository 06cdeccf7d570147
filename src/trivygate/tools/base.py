"""Shared subprocess infrastructure for external tool wrappers.

Provides:
- check_binary: PATH lookup for a tool binary
- run_subprocess: Bounded child-process execution with process-group kill
"""

import asyncio
import os
import shutil
import signal

import structlog

logger = structlog.get_logger()

REAP_TIMEOUT_SECONDS = 5


def check_binary(binary_name: str) -> bool:
    """Check if binary exists on PATH.

    Args:
        binary_name: Name of binary to check (e.g., "trivy")

    Returns:
        True if binary is available, False otherwise
    """
    return shutil.which(binary_name) is not None


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        # Group already gone or never formed; fall back to the direct child
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def _reap(process: asyncio.subprocess.Process, log) -> None:
    # A grandchild that escaped the kill can hold the pipes open
    try:
        await asyncio.wait_for(process.communicate(), timeout=REAP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        log.warning("subprocess_reap_timeout", pid=process.pid)


async def run_subprocess(
    cmd: list[str],
    timeout: int = 120,
    cwd: str | None = None,
) -> tuple[str, str, int]:
    """Run command via subprocess with timeout.

    Uses asyncio.create_subprocess_exec (NEVER shell=True). The child is
    started in its own session so that, on timeout or cancellation, the whole
    process group is killed and reaped (bounded by REAP_TIMEOUT_SECONDS).

    Args:
        cmd: Command and arguments as list (e.g., ["trivy", "fs", "."])
        timeout: Timeout in seconds
        cwd: Working directory for the child (default: inherited)

    Returns:
        Tuple of (stdout, stderr, returncode)

    Raises:
        asyncio.TimeoutError: If command exceeds timeout
        asyncio.CancelledError: If the awaiting task is cancelled
    """
    log = logger.bind(cmd=cmd[0], timeout=timeout)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
    )
    log.debug("subprocess_started", pid=process.pid)

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout
        )
    except BaseException as e:
        # Whatever interrupted the wait, the process group must not outlive it
        if isinstance(e, asyncio.TimeoutError):
            log.warning("subprocess_timeout", pid=process.pid)
        else:
            log.warning("subprocess_interrupted", pid=process.pid, error=type(e).__name__)
        _kill_process_group(process)
        await _reap(process, log)
        raise

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    returncode = process.returncode

    log.debug(
        "subprocess_completed",
        returncode=returncode,
        stdout_len=len(stdout),
        stderr_len=len(stderr)
    )

    return stdout, stderr, returncode
