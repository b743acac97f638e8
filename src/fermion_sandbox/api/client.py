"""
HTTP client for the provisioning backend.

Handles request/response validation with pydantic schemas, the shared
request envelope and API-key authentication. No retries happen here.
"""

from typing import Any, Literal, TypeVar

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from fermion_sandbox.api.schemas import (
    ApiErrorOutput,
    ApiModel,
    ApiRequest,
    ApiRequestContext,
    ApiResponse,
    CreatePlaygroundSnippetInput,
    CreatePlaygroundSnippetOutput,
    GetRunningPlaygroundSessionDetailsInput,
    GetRunningPlaygroundSessionDetailsOutput,
    StartPlaygroundSessionInput,
    StartPlaygroundSessionOutput,
)
from fermion_sandbox.config import SandboxConfig
from fermion_sandbox.errors import (
    ApiError,
    InvalidCredentialsError,
    ResponseValidationError,
    TransportError,
    ValidationError,
)
from fermion_sandbox.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=ApiModel)

API_KEY_HEADER = "Fermion-Api-Key"

# Lower-cased backend messages that mean the API key was rejected
INVALID_CREDENTIAL_MESSAGES = (
    "invalid api key",
    "api key is invalid",
    "invalid fermion api key",
    "unauthorized",
)

_response_list_adapter = TypeAdapter(list[ApiResponse])


def _is_invalid_credential_message(message: str) -> bool:
    lowered = message.lower()
    return any(known in lowered for known in INVALID_CREDENTIAL_MESSAGES)


class ApiClient:
    """
    Client for the create-snippet / start-session / poll-session calls.

    Args:
        config: Client configuration (API key, base URL, HTTP timeout).
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(self, config: SandboxConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.http_timeout, transport=self._transport)

    async def _call(
        self,
        *,
        function_name: str,
        namespace: Literal["public", "fermion-user"],
        data: dict[str, Any],
        input_model: type[ApiModel],
        output_model: type[T],
    ) -> T:
        try:
            validated = input_model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid input for {function_name}: {e}") from e

        request = ApiRequest(
            context=ApiRequestContext(namespace=namespace, function_name=function_name),
            data=validated.model_dump(by_alias=True),
        )
        body = {"data": [request.model_dump(by_alias=True)]}

        logger.debug(f"Calling {namespace}/{function_name}")
        try:
            async with self._client() as client:
                response = await client.post(
                    self.config.api_base_url,
                    json=body,
                    headers={API_KEY_HEADER: self.config.api_key},
                )
        except httpx.HTTPError as e:
            logger.error(f"API request {function_name} failed: {e}")
            raise TransportError(f"API request failed: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            envelopes = _response_list_adapter.validate_python(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ResponseValidationError(f"Malformed response for {function_name}: {e}") from e
        if not envelopes:
            raise ResponseValidationError(f"Empty response for {function_name}")

        output = envelopes[0].output
        if isinstance(output, ApiErrorOutput):
            message = output.error_message
            if _is_invalid_credential_message(message):
                raise InvalidCredentialsError(f"API error: {message}")
            raise ApiError(f"API error: {message}")

        try:
            return output_model.model_validate(output.data)
        except PydanticValidationError as e:
            raise ResponseValidationError(f"Malformed data for {function_name}: {e}") from e

    async def create_playground_snippet(
        self, should_backup_filesystem: bool
    ) -> CreatePlaygroundSnippetOutput:
        """Create a new empty playground snippet."""
        return await self._call(
            function_name="create-new-playground-snippet",
            namespace="public",
            data={"bootParams": {"source": "empty", "shouldBackupFilesystem": should_backup_filesystem}},
            input_model=CreatePlaygroundSnippetInput,
            output_model=CreatePlaygroundSnippetOutput,
        )

    async def start_playground_session(self, snippet_id: str) -> StartPlaygroundSessionOutput:
        """Start a session for a snippet; may answer ``attention-needed``."""
        return await self._call(
            function_name="start-playground-session",
            namespace="public",
            data={"playgroundSnippetId": snippet_id},
            input_model=StartPlaygroundSessionInput,
            output_model=StartPlaygroundSessionOutput,
        )

    async def get_running_playground_session_details(
        self, session_id: str, snippet_id: str
    ) -> GetRunningPlaygroundSessionDetailsOutput:
        """Poll a session; answers either waiting-for-upscale or the container details."""
        return await self._call(
            function_name="get-running-playground-session-details",
            namespace="fermion-user",
            data={
                "params": {
                    "playgroundSessionId": session_id,
                    "playgroundSnippetId": snippet_id,
                    "isWaitingForUpscale": False,
                    "playgroundType": "PlaygroundSnippet",
                }
            },
            input_model=GetRunningPlaygroundSessionDetailsInput,
            output_model=GetRunningPlaygroundSessionDetailsOutput,
        )
