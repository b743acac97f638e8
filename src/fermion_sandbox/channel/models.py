"""
Pydantic models for the container duplex protocol.

Covers:
- Outbound request payloads (client -> container)
- Inbound response payloads and unsolicited events (container -> client)
- Streaming task event details

Wire fields are camelCase; models expose snake_case attributes.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ─── Outbound payloads ───────────────────────────────────────────────


class RunLongRunningCommandData(WireModel):
    command: str
    args: list[str] = Field(default_factory=list)
    stdin: str | None = None


class RunLongRunningCommandRequest(WireModel):
    """Start a long-running command whose output is streamed back."""

    event_type: Literal["RunLongRunningCommand"] = "RunLongRunningCommand"
    data: RunLongRunningCommandData


class EvalSmallCodeSnippetRequest(WireModel):
    """Run a short command and get its complete output in one reply."""

    event_type: Literal["EvalSmallCodeSnippetInsideContainer"] = (
        "EvalSmallCodeSnippetInsideContainer"
    )
    command: str


class HealthPingRequest(WireModel):
    event_type: Literal["HealthPing"] = "HealthPing"


class OutboundMessage(WireModel):
    """Envelope for every outbound message; ``message_id`` correlates the reply."""

    message_id: str
    payload: dict[str, Any]


# ─── Inbound payloads ────────────────────────────────────────────────


class RunLongRunningCommandStarted(WireModel):
    unique_task_id: str
    process_id: int


class RunLongRunningCommandResponse(WireModel):
    event_type: Literal["RunLongRunningCommand"]
    data: RunLongRunningCommandStarted


class EvalSmallCodeSnippetResponse(WireModel):
    event_type: Literal["EvalSmallCodeSnippetInsideContainer"]
    stdout: str = ""
    stderr: str = ""


class HealthPingResponse(WireModel):
    event_type: Literal["HealthPing"]
    status: Literal["healthy"] = "healthy"


class ContainerServerReady(WireModel):
    event_type: Literal["ContainerServerReady"]


class IoEventDetails(WireModel):
    """Incremental output for a streaming task."""

    type: Literal["io"]
    stdout: str | None = None
    stderr: str | None = None


class CloseEventDetails(WireModel):
    """Terminal notification for a streaming task."""

    type: Literal["close"]
    code: int | None = None
    error: str | None = None


EventDetails = Annotated[
    Union[IoEventDetails, CloseEventDetails], Field(discriminator="type")
]


class StreamLongRunningTaskEvent(WireModel):
    event_type: Literal["StreamLongRunningTaskEvent"]
    unique_task_id: str
    process_id: int | None = None
    event_details: EventDetails


ResponsePayload = Annotated[
    Union[
        RunLongRunningCommandResponse,
        EvalSmallCodeSnippetResponse,
        HealthPingResponse,
        StreamLongRunningTaskEvent,
        ContainerServerReady,
    ],
    Field(discriminator="event_type"),
]

_response_adapter = TypeAdapter(ResponsePayload)


def parse_response_payload(payload: dict[str, Any]):
    """Validate a raw inbound payload into its typed variant."""
    return _response_adapter.validate_python(payload)


STREAM_EVENT_TYPE = "StreamLongRunningTaskEvent"
CONTAINER_READY_EVENT_TYPE = "ContainerServerReady"
