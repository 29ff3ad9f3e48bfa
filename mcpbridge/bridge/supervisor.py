"""Child process supervision.

The ProcessSupervisor launches the bridged MCP server as a subprocess and
owns its three pipes:
- stdin: newline-terminated JSON messages written by send()
- stdout: framed into JSON messages and handed to the on_message callback
- stderr: forwarded line by line to the mcpbridge.child logger

When the child exits the shared ChildProcessState loses readiness. The
supervisor never respawns the child.
"""

import asyncio
import logging
import os
import shlex
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from mcpbridge.bridge.framing import LineFramer
from mcpbridge.bridge.state import ChildProcessState
from mcpbridge.core.errors import ProcessUnavailableError, StartupError, TransportParseError
from mcpbridge.core.process import GRACEFUL_TIMEOUT, terminate_process_tree
from mcpbridge.rpc.protocol import encode_message, parse_message

logger = logging.getLogger(__name__)
child_logger = logging.getLogger("mcpbridge.child")

MessageHandler = Callable[[dict[str, Any]], None]

# Interpreters for entry points that are not directly executable
_NODE_SUFFIXES = frozenset({".js", ".mjs", ".cjs"})
_PYTHON_SUFFIXES = frozenset({".py"})

READ_CHUNK_SIZE = 65536  # 64KB
STDOUT_DRAIN_TIMEOUT = 1.0


def build_child_command(entry_path: Path, command: str | None = None) -> list[str]:
    """Build the argv used to run an entry point.

    Args:
        entry_path: Path of the child entry point.
        command: Explicit interpreter (may contain arguments, shell-quoted).

    Returns:
        The argument list for create_subprocess_exec.
    """
    if command:
        return [*shlex.split(command), str(entry_path)]
    suffix = entry_path.suffix.lower()
    if suffix in _NODE_SUFFIXES:
        return ["node", str(entry_path)]
    if suffix in _PYTHON_SUFFIXES:
        return [sys.executable, str(entry_path)]
    return [str(entry_path)]


def _describe_directory(path: Path) -> str:
    try:
        return ", ".join(sorted(p.name for p in path.iterdir())) or "(empty)"
    except OSError as e:
        return f"(unreadable: {e})"


class ProcessSupervisor:
    """Own the single child process and its pipes.

    Attributes:
        state: Shared readiness state, updated on spawn and exit.
        on_message: Called with every JSON message the child writes to stdout.
    """

    def __init__(
        self,
        state: ChildProcessState,
        on_message: MessageHandler,
        command: str | None = None,
    ) -> None:
        self.state = state
        self.on_message = on_message
        self._command = command
        self._process: asyncio.subprocess.Process | None = None
        self._framer = LineFramer()
        self._tasks: list[asyncio.Task[None]] = []
        # Serializes writes so concurrent callers never interleave partial lines
        self._write_lock = asyncio.Lock()
        self._exited = asyncio.Event()

    async def start(self, entry_path: Path) -> None:
        """Launch the child process.

        Args:
            entry_path: Path of the child entry point. Its directory becomes the
                child's working directory.

        Raises:
            StartupError: If the entry point does not exist or cannot be spawned.
        """
        if not entry_path.exists():
            logger.error("MCP entry point not found: %s", entry_path)
            logger.error(
                "Files in %s: %s", entry_path.parent, _describe_directory(entry_path.parent)
            )
            raise StartupError(f"MCP entry point not found: {entry_path}")

        argv = build_child_command(entry_path, self._command)
        env = {**os.environ, "NODE_ENV": "production"}
        logger.info("Starting MCP process: %s", " ".join(argv))

        try:
            if sys.platform == "win32":
                self._process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                    cwd=str(entry_path.parent),
                    creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
                )
            else:
                # New session so SIGTERM/SIGKILL reach the child's own children
                self._process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                    cwd=str(entry_path.parent),
                    start_new_session=True,
                )
        except FileNotFoundError as e:
            raise StartupError(f"MCP server command not found: {argv[0]}") from e
        except OSError as e:
            raise StartupError(f"Failed to start MCP server: {e}") from e

        self.state.process = self._process
        self.state.exited = False
        self.state.exit_code = None
        self._exited.clear()
        self._framer.reset()

        self._tasks = [
            asyncio.create_task(self._read_stdout(), name="mcp-stdout"),
            asyncio.create_task(self._read_stderr(), name="mcp-stderr"),
            asyncio.create_task(self._watch_exit(), name="mcp-exit"),
        ]
        logger.info("MCP process started (pid %s)", self._process.pid)

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    async def wait_exited(self) -> None:
        """Block until the child has exited and its exit was recorded."""
        await self._exited.wait()

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message to the child's stdin.

        Raises:
            ProcessUnavailableError: If there is no live child or its stdin is closed.
        """
        process = self._process
        if process is None or process.returncode is not None or self.state.exited:
            raise ProcessUnavailableError("MCP process not available")
        stdin = process.stdin
        if stdin is None or stdin.is_closing():
            raise ProcessUnavailableError("MCP process stdin is closed")

        data = encode_message(message)
        async with self._write_lock:
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
                raise ProcessUnavailableError(f"Failed to write to MCP process: {e}") from e

    async def _read_stdout(self) -> None:
        """Frame stdout into messages until EOF."""
        process = self._process
        if process is None or process.stdout is None:
            return

        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                if self._framer.pending:
                    logger.warning(
                        "Discarding %d bytes of incomplete output from MCP process",
                        self._framer.pending,
                    )
                break
            for line in self._framer.feed(chunk):
                self._dispatch_line(line)

    def _dispatch_line(self, line: bytes) -> None:
        try:
            message = parse_message(line)
        except TransportParseError as e:
            logger.error("Failed to parse MCP output: %s (%r)", e.message, line[:200])
            return
        try:
            self.on_message(message)
        except Exception:
            logger.exception("Error handling message from MCP process")

    async def _read_stderr(self) -> None:
        """Forward stderr lines to the log."""
        process = self._process
        if process is None or process.stderr is None:
            return

        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                # Line longer than the stream limit; skip what was buffered
                logger.debug("Oversized stderr line from MCP process skipped")
                continue
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if text:
                child_logger.info("%s", text)

    async def _watch_exit(self) -> None:
        process = self._process
        if process is None:
            return
        code = await process.wait()
        # Deliver whatever the child wrote before it exited
        stdout_task = self._tasks[0] if self._tasks else None
        if stdout_task is not None and stdout_task is not asyncio.current_task():
            await asyncio.wait({stdout_task}, timeout=STDOUT_DRAIN_TIMEOUT)
        if code is not None and code < 0:
            logger.warning("MCP process exited with signal %d", -code)
        else:
            logger.warning("MCP process exited with code %s", code)
        self.state.mark_exited(code)
        self._exited.set()

    async def stop(self, grace: float = GRACEFUL_TIMEOUT) -> int | None:
        """Terminate the child, killing it if it outlives the grace window.

        Returns:
            The child's return code, or None if no child was running.
        """
        process = self._process
        if process is None:
            return None

        if process.stdin is not None and not process.stdin.is_closing():
            try:
                process.stdin.close()
            except Exception as e:
                logger.debug("Stdin close error (expected during shutdown): %s", e)

        code = await terminate_process_tree(process, graceful_timeout=grace)

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Supervisor task ended with error: %s", e)
        self._tasks = []

        if not self.state.exited:
            self.state.mark_exited(code)
            self._exited.set()
        logger.info("MCP process stopped (exit code %s)", code)
        return code
