"""Provisioning backend client and schemas."""

from .client import ApiClient
from .schemas import (
    AttentionNeeded,
    AttentionType,
    ContainerDetails,
    SessionReady,
    SessionStarted,
    WaitingForUpscale,
)

__all__ = [
    "ApiClient",
    "AttentionNeeded",
    "AttentionType",
    "ContainerDetails",
    "SessionReady",
    "SessionStarted",
    "WaitingForUpscale",
]
