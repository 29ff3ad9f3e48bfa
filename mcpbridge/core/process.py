"""Child process termination.

Stops the bridged server and anything it spawned:
- Unix: SIGTERM to the process group -> wait -> SIGKILL to the process group
- Windows: terminate() -> wait -> kill()
"""

import asyncio
import logging
import os
import signal
import sys
from asyncio.subprocess import Process

logger = logging.getLogger(__name__)

GRACEFUL_TIMEOUT: float = 5.0


async def terminate_process_tree(
    process: Process,
    graceful_timeout: float = GRACEFUL_TIMEOUT,
) -> int | None:
    """Terminate a process and all its children.

    Asks the process to exit first and kills it if it is still running
    after graceful_timeout seconds.

    Args:
        process: The asyncio subprocess to terminate.
        graceful_timeout: Seconds to wait before escalating to a forceful kill.

    Returns:
        The process return code, or None if it could not be collected.
    """
    if process.returncode is not None:
        return process.returncode

    pid = process.pid
    if pid is None:
        return None

    if sys.platform == "win32":
        _send(process, pid, None)
    else:
        _send(process, pid, signal.SIGTERM)

    try:
        return await asyncio.wait_for(process.wait(), timeout=graceful_timeout)
    except TimeoutError:
        logger.warning(
            "Child process %d did not exit within %.1fs, killing it", pid, graceful_timeout
        )

    if sys.platform == "win32":
        try:
            process.kill()
        except ProcessLookupError:
            pass
    else:
        _send(process, pid, signal.SIGKILL)

    try:
        return await process.wait()
    except Exception as e:
        logger.debug("Failed to reap child process %d: %s", pid, e)
        return None


def _send(process: Process, pid: int, sig: signal.Signals | None) -> None:
    """Deliver sig to the process group, falling back to the single process."""
    if sig is None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        return

    try:
        pgid = os.getpgid(pid)
        os.killpg(pgid, sig)
        logger.debug("Sent %s to process group %d", sig.name, pgid)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            pass
