"""Child process bridge: supervision, correlation, sessions and streams."""

from mcpbridge.bridge.correlator import PendingRequest, RequestCorrelator
from mcpbridge.bridge.framing import LineFramer
from mcpbridge.bridge.hub import StreamConnection, StreamingHub
from mcpbridge.bridge.runtime import Bridge
from mcpbridge.bridge.sessions import Session, SessionManager
from mcpbridge.bridge.state import ChildProcessState, HandshakeInfo
from mcpbridge.bridge.supervisor import ProcessSupervisor, build_child_command

__all__ = [
    "Bridge",
    "ChildProcessState",
    "HandshakeInfo",
    "LineFramer",
    "PendingRequest",
    "ProcessSupervisor",
    "RequestCorrelator",
    "Session",
    "SessionManager",
    "StreamConnection",
    "StreamingHub",
    "build_child_command",
]
