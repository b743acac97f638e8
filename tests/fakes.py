"""In-memory fakes for the websocket, the container server and the HTTP backend."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx

API_BASE_URL = "https://backend.test/api"
SUBDOMAIN = "box-123"
ACCESS_TOKEN = "container-token"

_CLOSE = object()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder=None):
        self.sent: list[dict] = []
        self.closed = False
        self.responder = responder
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        if self.closed:
            raise OSError("socket closed")
        message = json.loads(raw)
        self.sent.append(message)
        if self.responder is not None:
            self.responder(self, message)

    def push(self, message: dict) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def reply(self, request: dict, payload: dict) -> None:
        self.push({"messageId": request["messageId"], "payload": payload})

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    def sent_event_types(self) -> list[str]:
        return [m["payload"]["eventType"] for m in self.sent]


class FakeConnector:
    """Hands out prepared sockets in order; raises once they run out."""

    def __init__(self, *sockets: FakeWebSocket, on_connect=None):
        self.sockets = list(sockets)
        self.urls: list[str] = []
        self.on_connect = on_connect

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if not self.sockets:
            raise OSError("connection refused")
        ws = self.sockets.pop(0)
        if self.on_connect is not None:
            self.on_connect(ws)
        return ws


class FakeContainer:
    """
    Emulates the container server behind the duplex channel.

    ``echo`` is answered for short commands; long-running commands emit the
    configured ``stream_lines`` then a close event.
    """

    def __init__(self):
        self.stream_lines = ["line 1\n", "line 2\n", "line 3\n"]
        self.close_code: int | None = 0
        self.close_error: str | None = None
        self.long_commands: list[dict] = []
        self._task_counter = 0

    def socket(self) -> FakeWebSocket:
        return FakeWebSocket(responder=self.respond)

    def respond(self, ws: FakeWebSocket, message: dict) -> None:
        payload = message["payload"]
        event_type = payload["eventType"]

        if event_type == "HealthPing":
            ws.reply(message, {"eventType": "HealthPing", "status": "healthy"})
        elif event_type == "EvalSmallCodeSnippetInsideContainer":
            command = payload["command"]
            if command.startswith("echo "):
                stdout, stderr = command[len("echo "):] + "\n", ""
            else:
                stdout, stderr = "", f"command not found: {command}\n"
            ws.reply(
                message,
                {"eventType": event_type, "stdout": stdout, "stderr": stderr},
            )
        elif event_type == "RunLongRunningCommand":
            self.long_commands.append(payload["data"])
            self._task_counter += 1
            task_id = f"task-{self._task_counter}"
            ws.reply(
                message,
                {"eventType": event_type, "data": {"uniqueTaskId": task_id, "processId": 42}},
            )
            for line in self.stream_lines:
                ws.push(self._stream_event(task_id, {"type": "io", "stdout": line}))
            ws.push(
                self._stream_event(
                    task_id,
                    {"type": "close", "code": self.close_code, "error": self.close_error},
                )
            )

    @staticmethod
    def _stream_event(task_id: str, details: dict) -> dict:
        return {
            "payload": {
                "eventType": "StreamLongRunningTaskEvent",
                "uniqueTaskId": task_id,
                "processId": 42,
                "eventDetails": details,
            }
        }


class FakeBackend:
    """
    Emulates the provisioning API and the per-container HTTP endpoints
    through an ``httpx.MockTransport``.
    """

    def __init__(self, waiting_polls: int = 1):
        self.waiting_polls = waiting_polls
        self.start_response: dict = {"status": "ok", "playgroundSessionId": "session-1"}
        self.files: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.requests: list[httpx.Request] = []
        self.disconnects = 0
        self.poll_count = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == API_BASE_URL:
            return self._handle_api(request)

        params = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}
        if params.get("playground-container-access-token") != ACCESS_TOKEN:
            return httpx.Response(403)

        if request.url.path == "/static-server":
            path = params["full-path"]
            if request.method == "PUT":
                created = path not in self.files
                self.files[path] = request.content
                return httpx.Response(201 if created else 200)
            if path not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, content=self.files[path])

        if request.url.path == "/disconnect":
            self.disconnects += 1
            return httpx.Response(200)
        return httpx.Response(404)

    def _handle_api(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        function_name = body["data"][0]["context"]["functionName"]
        self.calls.append(function_name)

        if function_name == "create-new-playground-snippet":
            data = {"playgroundSnippetId": "snippet-1"}
        elif function_name == "start-playground-session":
            data = {"response": self.start_response}
        elif function_name == "get-running-playground-session-details":
            self.poll_count += 1
            if self.poll_count <= self.waiting_polls:
                data = {"response": {"isWaitingForUpscale": True}}
            else:
                data = {
                    "response": {
                        "isWaitingForUpscale": False,
                        "containerDetails": {
                            "playgroundContainerAccessToken": ACCESS_TOKEN,
                            "subdomain": SUBDOMAIN,
                        },
                    }
                }
        else:
            return httpx.Response(404)
        return httpx.Response(200, json=[{"output": {"status": "ok", "data": data}}])

    def container_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) != API_BASE_URL]


def announce_ready(ws: FakeWebSocket) -> None:
    ws.push({"eventType": "ContainerServerReady"})


