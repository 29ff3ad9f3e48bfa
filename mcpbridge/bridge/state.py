"""Shared state describing the bridged child process."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from asyncio.subprocess import Process


@dataclass
class HandshakeInfo:
    """What the child reported in its initialize result.

    Attributes:
        capabilities: Server capabilities (tools, resources, prompts, ...).
        server_info: The serverInfo object (name, version), if any.
        protocol_version: Protocol version the child agreed to, if any.
        raw: The complete initialize result as received.
    """

    capabilities: dict[str, Any]
    server_info: dict[str, Any] | None = None
    protocol_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: Any) -> HandshakeInfo | None:
        """Create from an initialize result, or None unless capabilities is an object."""
        if not isinstance(result, dict):
            return None
        capabilities = result.get("capabilities")
        if not isinstance(capabilities, dict):
            return None
        server_info = result.get("serverInfo")
        return cls(
            capabilities=capabilities,
            server_info=server_info if isinstance(server_info, dict) else None,
            protocol_version=result.get("protocolVersion"),
            raw=result,
        )


@dataclass
class ChildProcessState:
    """Readiness of the single child process.

    Owned by the Bridge; the supervisor flips it on spawn and exit, the
    correlator flips it when an initialize result arrives.

    Attributes:
        process: Handle to the running process, None before start.
        handshake: Handshake result, None until the child is ready.
        exited: Whether the child has exited.
        exit_code: Return code once exited (negative for a signal on POSIX).
    """

    process: Process | None = None
    handshake: HandshakeInfo | None = None
    exited: bool = False
    exit_code: int | None = None

    @property
    def ready(self) -> bool:
        """True once a handshake has succeeded and the child is still running."""
        return self.handshake is not None and not self.exited

    @property
    def capabilities(self) -> dict[str, Any] | None:
        return self.handshake.capabilities if self.handshake else None

    @property
    def server_info(self) -> dict[str, Any] | None:
        return self.handshake.server_info if self.handshake else None

    def mark_ready(self, handshake: HandshakeInfo) -> None:
        self.handshake = handshake

    def mark_exited(self, exit_code: int | None) -> None:
        """Record child exit and drop readiness until a future handshake."""
        self.exited = True
        self.exit_code = exit_code
        self.handshake = None
