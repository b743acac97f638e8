"""
Exception hierarchy for fermion_sandbox.

Every error raised to callers derives from ``SandboxError``. Timeout, closed
channel and missing-file errors also derive from the matching builtin so that
``except TimeoutError`` and friends keep working.
"""


class SandboxError(Exception):
    """Base class for all sandbox client errors."""
    pass


# ─── Transport ───────────────────────────────────────────────────────


class TransportError(SandboxError):
    """An HTTP call returned a non-success status or could not be made."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionFailedError(TransportError):
    """The duplex connection failed before it reported open."""
    pass


# ─── Validation ──────────────────────────────────────────────────────


class ValidationError(SandboxError):
    """Raised when input or a backend response fails validation."""
    pass


class InvalidApiKeyError(ValidationError):
    """No usable API key was supplied."""
    pass


class InvalidPathError(ValidationError):
    """A sandbox file path is not rooted at the home directory."""
    pass


class UnsupportedPortError(ValidationError):
    """The requested port cannot be exposed publicly."""
    pass


class ResponseValidationError(ValidationError):
    """The backend answered with a payload of the wrong shape."""
    pass


# ─── Timeouts ────────────────────────────────────────────────────────


class SandboxTimeoutError(SandboxError, TimeoutError):
    pass


class RequestTimeoutError(SandboxTimeoutError):
    """A correlated request or event wait exceeded its deadline."""
    pass


class ProvisioningTimeoutError(SandboxTimeoutError):
    """The session did not become ready before the provisioning deadline."""

    def __init__(self, message: str, snippet_id: str | None = None, session_id: str | None = None):
        super().__init__(message)
        self.snippet_id = snippet_id
        self.session_id = session_id


# ─── Protocol / logic ────────────────────────────────────────────────


class ApiError(SandboxError):
    """The provisioning backend answered with an error envelope."""
    pass


class InvalidCredentialsError(ApiError):
    """The backend rejected the API key."""
    pass


class AttentionNeededError(SandboxError):
    """Starting a session requires user attention; the attempt cannot continue."""

    def __init__(self, message: str, attention_type: str):
        super().__init__(message)
        self.attention_type = attention_type


class UnexpectedResponseError(SandboxError):
    """The container replied with an event type that does not match the request."""
    pass


class CommandError(SandboxError):
    """The container reported an error for a long-running command."""

    def __init__(self, message: str, exit_code: int = 0):
        super().__init__(message)
        self.exit_code = exit_code


# ─── State ───────────────────────────────────────────────────────────


class NotConnectedError(SandboxError):
    pass


class AlreadyConnectedError(SandboxError):
    pass


# ─── Channel ─────────────────────────────────────────────────────────


class ChannelClosedError(SandboxError, ConnectionError):
    """The duplex channel was torn down while the operation was outstanding."""
    pass


class SupersededError(SandboxError):
    """An event waiter was replaced by a newer waiter for the same event type."""
    pass


# ─── Files ───────────────────────────────────────────────────────────


class SandboxFileNotFoundError(SandboxError, FileNotFoundError):
    pass
