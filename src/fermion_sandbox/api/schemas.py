"""
Request/response schemas for the provisioning backend.

Every call is wrapped in the same envelope:

    POST {"data": [{"context": {"namespace": ..., "functionName": ...}, "data": {...}}]}
    ->   [{"output": {"status": "ok", "data": {...}}}]
      |  [{"output": {"status": "error", "errorMessage": "..."}}]
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Envelope ────────────────────────────────────────────────────────


class ApiRequestContext(ApiModel):
    namespace: Literal["public", "fermion-user"]
    function_name: str


class ApiRequest(ApiModel):
    context: ApiRequestContext
    data: dict[str, Any]


class ApiOkOutput(ApiModel):
    status: Literal["ok"]
    data: Any = None


class ApiErrorOutput(ApiModel):
    status: Literal["error"]
    error_message: str = Field(validation_alias=AliasChoices("errorMessage", "message"))


class ApiResponse(ApiModel):
    output: Annotated[Union[ApiOkOutput, ApiErrorOutput], Field(discriminator="status")]


# ─── create-new-playground-snippet ───────────────────────────────────


class BootParams(ApiModel):
    source: Literal["empty"] = "empty"
    should_backup_filesystem: bool


class CreatePlaygroundSnippetInput(ApiModel):
    boot_params: BootParams


class CreatePlaygroundSnippetOutput(ApiModel):
    playground_snippet_id: str


# ─── start-playground-session ────────────────────────────────────────


class AttentionType(str, Enum):
    CANNOT_GET_NEW = "cannot-get-new"
    CAN_TERMINATE_AND_GET_NEW = "can-terminate-and-get-new"
    CAN_CREATE_ACCOUNT_AND_GET_NEW = "can-create-account-and-get-new"


class UserType(str, Enum):
    FERMION_USER = "fermion-user"
    CODEDAMN_USER = "codedamn-user"
    UNKNOWN = "unknown"


class StartPlaygroundSessionInput(ApiModel):
    playground_snippet_id: str


class SessionStarted(ApiModel):
    status: Literal["ok"]
    playground_session_id: str


class AttentionNeeded(ApiModel):
    status: Literal["attention-needed"]
    attention_type: AttentionType
    user_type: UserType | None = None
    is_vpn_found: bool | None = None
    is_limit_exceeded: bool | None = None


class StartPlaygroundSessionOutput(ApiModel):
    response: Annotated[Union[SessionStarted, AttentionNeeded], Field(discriminator="status")]


# ─── get-running-playground-session-details ──────────────────────────


class ContainerDetails(ApiModel):
    """Access token and routing subdomain of a running session."""

    model_config = ConfigDict(frozen=True)

    playground_container_access_token: str
    subdomain: str


class SessionDetailsParams(ApiModel):
    playground_session_id: str
    playground_snippet_id: str
    is_waiting_for_upscale: bool = False
    playground_type: Literal["PlaygroundSnippet"] = "PlaygroundSnippet"


class GetRunningPlaygroundSessionDetailsInput(ApiModel):
    params: SessionDetailsParams


class WaitingForUpscale(ApiModel):
    is_waiting_for_upscale: Literal[True]


class SessionReady(ApiModel):
    is_waiting_for_upscale: Literal[False]
    container_details: ContainerDetails


class GetRunningPlaygroundSessionDetailsOutput(ApiModel):
    response: Union[WaitingForUpscale, SessionReady]
