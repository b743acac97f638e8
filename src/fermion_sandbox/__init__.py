"""
fermion_sandbox
===============

Async client for remote Fermion code sandboxes.

Usage:
    from fermion_sandbox import Sandbox

    async with Sandbox(api_key) as sandbox:
        await sandbox.create(should_backup_filesystem=False)
        await sandbox.set_file("~/hello.txt", "hi")
        print(await sandbox.get_file("~/hello.txt"))
"""

from loguru import logger as _logger

from .config import SandboxConfig
from .errors import (
    AlreadyConnectedError,
    ApiError,
    AttentionNeededError,
    ChannelClosedError,
    CommandError,
    ConnectionFailedError,
    InvalidApiKeyError,
    InvalidCredentialsError,
    InvalidPathError,
    NotConnectedError,
    ProvisioningTimeoutError,
    RequestTimeoutError,
    ResponseValidationError,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxTimeoutError,
    SupersededError,
    TransportError,
    UnexpectedResponseError,
    UnsupportedPortError,
    ValidationError,
)
from .logger import setup_logging
from .results import CommandExit, CommandResult, LongCommandResult, OutputChunk
from .sandbox import Sandbox

_logger.disable(__name__)

__all__ = [
    "Sandbox",
    "SandboxConfig",
    "setup_logging",
    # Results
    "CommandResult",
    "CommandExit",
    "LongCommandResult",
    "OutputChunk",
    # Errors
    "SandboxError",
    "TransportError",
    "ConnectionFailedError",
    "ValidationError",
    "InvalidApiKeyError",
    "InvalidPathError",
    "UnsupportedPortError",
    "ResponseValidationError",
    "SandboxTimeoutError",
    "RequestTimeoutError",
    "ProvisioningTimeoutError",
    "ApiError",
    "InvalidCredentialsError",
    "AttentionNeededError",
    "UnexpectedResponseError",
    "CommandError",
    "NotConnectedError",
    "AlreadyConnectedError",
    "ChannelClosedError",
    "SupersededError",
    "SandboxFileNotFoundError",
]
