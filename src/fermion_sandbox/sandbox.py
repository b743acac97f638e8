"""
Sandbox: provisioning, command execution and file access for one remote container.

Usage:
    async with Sandbox(api_key) as sandbox:
        await sandbox.create(should_backup_filesystem=False)
        await sandbox.set_file("~/hello.txt", "hi")
        result = await sandbox.run_command("echo", ["ok"])
"""

import asyncio
import math
import shlex
from typing import AsyncIterator, Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from fermion_sandbox.api.client import ApiClient
from fermion_sandbox.api.schemas import (
    AttentionNeeded,
    AttentionType,
    ContainerDetails,
    SessionReady,
)
from fermion_sandbox.channel.models import (
    CONTAINER_READY_EVENT_TYPE,
    CloseEventDetails,
    EvalSmallCodeSnippetRequest,
    EvalSmallCodeSnippetResponse,
    RunLongRunningCommandData,
    RunLongRunningCommandRequest,
    RunLongRunningCommandResponse,
    parse_response_payload,
)
from fermion_sandbox.channel.websocket import SandboxWebSocket, StreamingTaskHandler
from fermion_sandbox.config import DEFAULT_CLONE_DIR, SandboxConfig
from fermion_sandbox.errors import (
    AlreadyConnectedError,
    AttentionNeededError,
    CommandError,
    NotConnectedError,
    ProvisioningTimeoutError,
    ResponseValidationError,
    SandboxError,
    SandboxFileNotFoundError,
    TransportError,
    UnexpectedResponseError,
)
from fermion_sandbox.logger import get_logger
from fermion_sandbox.results import CommandExit, CommandResult, LongCommandResult, OutputChunk
from fermion_sandbox.validation import normalize_sandbox_path, validate_exposable_port

logger = get_logger(__name__)

ACCESS_TOKEN_PARAM = "playground-container-access-token"
FULL_PATH_PARAM = "full-path"

ATTENTION_MESSAGES = {
    AttentionType.CANNOT_GET_NEW: "Cannot get new session",
    AttentionType.CAN_TERMINATE_AND_GET_NEW: "Can terminate and get new session",
    AttentionType.CAN_CREATE_ACCOUNT_AND_GET_NEW: "Can create account and get new session",
}


class Sandbox:
    """
    One remote sandbox session.

    Provisioning (``create`` or ``attach``) runs at most once per instance.
    After ``disconnect`` every operation raises NotConnectedError.

    Args:
        api_key: Fermion API key. Ignored when ``config`` is given.
        config: Full client configuration.
        transport: Optional httpx transport shared by all HTTP calls.
        connector: Optional websocket connector passed to the channel.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        config: SandboxConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        connector: Callable | None = None,
    ):
        self.config = config or SandboxConfig(api_key=api_key)
        self._transport = transport
        self._connector = connector
        self._api = ApiClient(self.config, transport=transport)

        self._snippet_id: str | None = None
        self._session_id: str | None = None
        self._container_details: ContainerDetails | None = None
        self._ws: SandboxWebSocket | None = None
        self._closed = False

    async def __aenter__(self) -> "Sandbox":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ─── Accessors ───────────────────────────────────────────────────

    @property
    def snippet_id(self) -> str | None:
        return self._snippet_id

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def container_details(self) -> ContainerDetails | None:
        return self._container_details

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.is_connected()

    # ─── Provisioning ────────────────────────────────────────────────

    async def create(
        self, should_backup_filesystem: bool = True, git_repo_url: str | None = None
    ) -> "Sandbox":
        """
        Provision a fresh snippet, start its session and connect.

        Args:
            should_backup_filesystem: Whether the backend persists the filesystem.
            git_repo_url: Repository cloned into ``/home/damner/code`` before returning.

        Raises:
            AttentionNeededError: The backend refused to start a session.
            ProvisioningTimeoutError: The session did not become ready in time.
            AlreadyConnectedError: This sandbox is already provisioned.
        """
        self._ensure_can_provision()
        snippet = await self._api.create_playground_snippet(
            should_backup_filesystem=should_backup_filesystem
        )
        logger.info(f"Created playground snippet {snippet.playground_snippet_id}")
        await self._provision(snippet.playground_snippet_id)

        if git_repo_url:
            await self._clone_repository(git_repo_url)
        return self

    async def attach(self, snippet_id: str) -> "Sandbox":
        """Start a session for an existing snippet and connect to it."""
        self._ensure_can_provision()
        await self._provision(snippet_id)
        return self

    def _ensure_can_provision(self) -> None:
        if self._closed:
            raise NotConnectedError("Sandbox has been disconnected; create a new Sandbox")
        if self._container_details is not None:
            raise AlreadyConnectedError("Sandbox is already connected")

    async def _provision(self, snippet_id: str) -> None:
        started = await self._api.start_playground_session(snippet_id)
        response = started.response
        if isinstance(response, AttentionNeeded):
            raise AttentionNeededError(
                ATTENTION_MESSAGES[response.attention_type], response.attention_type.value
            )

        session_id = response.playground_session_id
        details = await self._poll_until_ready(snippet_id, session_id)
        channel = await self._open_channel(details)
        if self._closed:
            await channel.disconnect()
            raise NotConnectedError("Sandbox was disconnected while provisioning")

        self._snippet_id = snippet_id
        self._session_id = session_id
        self._container_details = details
        self._ws = channel
        logger.info(f"Sandbox ready (snippet={snippet_id}, session={session_id})")

    async def _poll_until_ready(self, snippet_id: str, session_id: str) -> ContainerDetails:
        interval = self.config.poll_interval
        attempts = max(1, math.ceil(self.config.provisioning_timeout / interval))

        for attempt in range(attempts):
            result = await self._api.get_running_playground_session_details(
                session_id=session_id, snippet_id=snippet_id
            )
            if isinstance(result.response, SessionReady):
                return result.response.container_details
            logger.debug(f"Session {session_id} still provisioning (attempt {attempt + 1})")
            await asyncio.sleep(interval)

        raise ProvisioningTimeoutError(
            f"Provisioning timeout after {self.config.provisioning_timeout}s",
            snippet_id=snippet_id,
            session_id=session_id,
        )

    async def _open_channel(self, details: ContainerDetails) -> SandboxWebSocket:
        channel = SandboxWebSocket(
            self.config.websocket_url(details.subdomain),
            details.playground_container_access_token,
            request_timeout=self.config.request_timeout,
            health_ping_initial_delay=self.config.health_ping_initial_delay,
            health_ping_interval=self.config.health_ping_interval,
            reconnect_delay=self.config.reconnect_delay,
            connector=self._connector,
        )

        # Registered before connecting so an early ready event is not dropped
        ready = None
        if self.config.wait_for_container_ready:
            ready = asyncio.create_task(
                channel.wait_for_event(
                    CONTAINER_READY_EVENT_TYPE, timeout=self.config.container_ready_timeout
                )
            )

        try:
            await channel.connect()
            if ready is not None:
                await ready
        except BaseException:
            if ready is not None and not ready.done():
                ready.cancel()
                try:
                    await ready
                except (asyncio.CancelledError, SandboxError):
                    pass
            await channel.disconnect()
            raise
        return channel

    async def _clone_repository(self, git_repo_url: str) -> None:
        result = await self.run_long_command("git", ["clone", git_repo_url, DEFAULT_CLONE_DIR])
        if result.exit_code != 0:
            raise CommandError(
                f"git clone failed with exit code {result.exit_code}: {result.stderr.strip()}",
                exit_code=result.exit_code,
            )

    # ─── Teardown ────────────────────────────────────────────────────

    async def disconnect(self) -> None:
        """
        Tear the session down: notify the container, then close the channel.

        Calling it again is a no-op.
        """
        if self._closed:
            logger.debug("Sandbox already disconnected")
            return
        self._closed = True

        channel, self._ws = self._ws, None
        if channel is not None:
            channel.disable_auto_reconnect()

        details = self._container_details
        if details is not None:
            try:
                async with self._http_client() as client:
                    response = await client.get(
                        self.config.disconnect_url(details.subdomain),
                        params={ACCESS_TOKEN_PARAM: details.playground_container_access_token},
                    )
                if not response.is_success:
                    logger.warning(f"Disconnect request returned {response.status_code}")
            except httpx.HTTPError as e:
                logger.warning(f"Disconnect request failed: {e}")

        if channel is not None:
            await channel.disconnect()
        logger.info(f"Sandbox disconnected (session={self._session_id})")

    # ─── Files ───────────────────────────────────────────────────────

    async def get_file(self, path: str) -> bytes:
        """
        Read a file from the sandbox.

        Raises:
            InvalidPathError: The path is not under the home directory.
            SandboxFileNotFoundError: The file does not exist.
            TransportError: Any other HTTP failure.
        """
        full_path = normalize_sandbox_path(path)
        details = self._require_details()

        try:
            async with self._http_client() as client:
                response = await client.get(
                    self.config.static_server_url(details.subdomain),
                    params=self._file_params(full_path, details),
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to get file: {e}") from e

        if response.status_code == 404:
            raise SandboxFileNotFoundError(f"File not found: {full_path}")
        if not response.is_success:
            raise TransportError(
                f"Failed to get file: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.content

    async def set_file(self, path: str, content: str | bytes) -> None:
        """Create or overwrite a file in the sandbox."""
        full_path = normalize_sandbox_path(path)
        details = self._require_details()
        body = content.encode("utf-8") if isinstance(content, str) else content

        try:
            async with self._http_client() as client:
                response = await client.put(
                    self.config.static_server_url(details.subdomain),
                    params=self._file_params(full_path, details),
                    content=body,
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to set file: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"Failed to set file: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

    @staticmethod
    def _file_params(full_path: str, details: ContainerDetails) -> dict[str, str]:
        return {
            FULL_PATH_PARAM: full_path,
            ACCESS_TOKEN_PARAM: details.playground_container_access_token,
        }

    # ─── Commands ────────────────────────────────────────────────────

    async def run_command(self, cmd: str, args: list[str] | None = None) -> CommandResult:
        """
        Run a short command and return its complete stdout/stderr.

        Each arg is shell-quoted, so ``args`` are always passed literally.
        Shell operators (pipes, ``&&``, redirects) belong in ``cmd`` itself,
        e.g. ``run_command("ls -la | wc -l")``.
        """
        channel = self._require_channel()
        full_command = " ".join([cmd, *(shlex.quote(a) for a in args or [])])

        reply = await channel.send(EvalSmallCodeSnippetRequest(command=full_command))
        response = self._parse_reply(reply)
        if not isinstance(response, EvalSmallCodeSnippetResponse):
            raise UnexpectedResponseError(
                f"Unexpected response event type: {response.event_type}"
            )
        return CommandResult(stdout=response.stdout, stderr=response.stderr)

    async def stream_command(
        self, cmd: str, args: list[str] | None = None, stdin: str | None = None
    ) -> AsyncIterator[OutputChunk | CommandExit]:
        """
        Run a long-running command and yield its output as it arrives.

        Yields OutputChunk records in arrival order, then exactly one
        CommandExit. A null exit code from the container is reported as 0.

        Raises:
            CommandError: The container reported an error for the command.
            ChannelClosedError: The channel closed before the command finished.
        """
        channel = self._require_channel()
        request = RunLongRunningCommandRequest(
            data=RunLongRunningCommandData(command=cmd, args=list(args or []), stdin=stdin)
        )
        reply = await channel.send(request)
        response = self._parse_reply(reply)
        if not isinstance(response, RunLongRunningCommandResponse):
            raise UnexpectedResponseError(
                f"Unexpected response event type: {response.event_type}"
            )

        task_id = response.data.unique_task_id
        process_id = response.data.process_id
        queue: asyncio.Queue = asyncio.Queue()
        channel.add_streaming_task_handler(
            task_id,
            StreamingTaskHandler(
                on_stdout=lambda text: queue.put_nowait(OutputChunk("stdout", text)),
                on_stderr=lambda text: queue.put_nowait(OutputChunk("stderr", text)),
                on_close=queue.put_nowait,
                on_error=queue.put_nowait,
            ),
        )

        try:
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                if isinstance(item, CloseEventDetails):
                    exit_code = item.code if item.code is not None else 0
                    if item.error is not None:
                        raise CommandError(item.error, exit_code=exit_code)
                    yield CommandExit(exit_code=exit_code, task_id=task_id, process_id=process_id)
                    return
                yield item
        finally:
            channel.remove_streaming_task_handler(task_id)

    async def run_streaming_command(
        self,
        cmd: str,
        args: list[str] | None = None,
        stdin: str | None = None,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> int:
        """Run a long-running command, firing callbacks per chunk. Returns the exit code."""
        exit_code = 0
        async for item in self.stream_command(cmd, args, stdin):
            if isinstance(item, CommandExit):
                exit_code = item.exit_code
            elif item.stream == "stdout":
                if on_stdout is not None:
                    on_stdout(item.text)
            elif on_stderr is not None:
                on_stderr(item.text)
        return exit_code

    async def run_long_command(
        self, cmd: str, args: list[str] | None = None, stdin: str | None = None
    ) -> LongCommandResult:
        """Run a long-running command and return all of its output at once."""
        stdout: list[str] = []
        stderr: list[str] = []
        exit_code = await self.run_streaming_command(
            cmd, args, stdin, on_stdout=stdout.append, on_stderr=stderr.append
        )
        return LongCommandResult(stdout="".join(stdout), stderr="".join(stderr), exit_code=exit_code)

    @staticmethod
    def _parse_reply(reply: dict):
        try:
            return parse_response_payload(reply)
        except PydanticValidationError as e:
            raise ResponseValidationError(f"Malformed reply from container: {e}") from e

    # ─── Networking ──────────────────────────────────────────────────

    def expose_port(self, port: int) -> str:
        """Return the public URL for one of the exposable ports."""
        validate_exposable_port(port)
        details = self._require_details()
        return self.config.public_url(details.subdomain, port)

    # ─── Helpers ─────────────────────────────────────────────────────

    def _require_details(self) -> ContainerDetails:
        if self._closed or self._container_details is None:
            raise NotConnectedError("Not connected")
        return self._container_details

    def _require_channel(self) -> SandboxWebSocket:
        if self._closed or self._ws is None:
            raise NotConnectedError("Not connected")
        return self._ws

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.http_timeout, transport=self._transport)
