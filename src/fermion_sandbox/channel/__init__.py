"""
Duplex channel to a sandbox container.

Usage:
    from fermion_sandbox.channel import SandboxWebSocket, StreamingTaskHandler

    channel = SandboxWebSocket(url, token)
    await channel.connect()
    reply = await channel.send(EvalSmallCodeSnippetRequest(command="ls"))
"""

from .models import (
    CloseEventDetails,
    ContainerServerReady,
    EvalSmallCodeSnippetRequest,
    EvalSmallCodeSnippetResponse,
    HealthPingRequest,
    IoEventDetails,
    RunLongRunningCommandData,
    RunLongRunningCommandRequest,
    RunLongRunningCommandResponse,
    StreamLongRunningTaskEvent,
    parse_response_payload,
)
from .websocket import ConnectionState, SandboxWebSocket, StreamingTaskHandler

__all__ = [
    "SandboxWebSocket",
    "StreamingTaskHandler",
    "ConnectionState",
    "CloseEventDetails",
    "ContainerServerReady",
    "EvalSmallCodeSnippetRequest",
    "EvalSmallCodeSnippetResponse",
    "HealthPingRequest",
    "IoEventDetails",
    "RunLongRunningCommandData",
    "RunLongRunningCommandRequest",
    "RunLongRunningCommandResponse",
    "StreamLongRunningTaskEvent",
    "parse_response_payload",
]
