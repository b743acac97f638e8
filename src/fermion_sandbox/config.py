"""
Client configuration.

All tunables live on ``SandboxConfig``; nothing is read from the process
environment except through ``SandboxConfig.from_env``.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from fermion_sandbox.errors import InvalidApiKeyError

DEFAULT_API_BASE_URL = "https://backend.codedamn.com/api"
DEFAULT_SERVICE_DOMAIN = "run-code.com"
DEFAULT_CONTAINER_PORT = 13372

# Absolute home directory inside the container and its shorthand alias
HOME_PREFIX = "/home/damner"
HOME_ALIAS = "~"

# Ports that can be published through a public URL
EXPOSABLE_PORTS = (3000, 1337, 1338)

# Where create(git_repo_url=...) clones the seed repository
DEFAULT_CLONE_DIR = f"{HOME_PREFIX}/code"

API_KEY_ENV = "FERMION_API_KEY"
API_BASE_URL_ENV = "FERMION_API_BASE_URL"


@dataclass(frozen=True)
class SandboxConfig:
    """Connection and timing settings shared by the API client, channel and sandbox."""

    api_key: str
    api_base_url: str = DEFAULT_API_BASE_URL
    service_domain: str = DEFAULT_SERVICE_DOMAIN
    container_port: int = DEFAULT_CONTAINER_PORT

    # Provisioning (seconds)
    provisioning_timeout: float = 30.0
    poll_interval: float = 0.5

    # Duplex channel (seconds)
    request_timeout: float = 30.0
    container_ready_timeout: float = 10.0
    wait_for_container_ready: bool = True
    health_ping_initial_delay: float = 5.0
    health_ping_interval: float = 30.0
    reconnect_delay: float = 2.0

    http_timeout: float = 30.0

    def __post_init__(self):
        if self.api_key is None or not self.api_key.strip():
            raise InvalidApiKeyError(
                "API key is required. Please provide a valid API key when creating the sandbox."
            )
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.provisioning_timeout <= 0:
            raise ValueError("provisioning_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides) -> "SandboxConfig":
        """
        Build a config from ``.env`` / process environment.

        ``FERMION_API_KEY`` is required; ``FERMION_API_BASE_URL`` is optional.
        Keyword arguments override any field.
        """
        load_dotenv()
        values = {"api_key": os.getenv(API_KEY_ENV, "")}
        base_url = os.getenv(API_BASE_URL_ENV)
        if base_url:
            values["api_base_url"] = base_url
        values.update(overrides)
        return cls(**values)

    def container_host(self, subdomain: str) -> str:
        return f"{subdomain}-{self.container_port}.{self.service_domain}"

    def websocket_url(self, subdomain: str) -> str:
        return f"wss://{self.container_host(subdomain)}"

    def static_server_url(self, subdomain: str) -> str:
        return f"https://{self.container_host(subdomain)}/static-server"

    def disconnect_url(self, subdomain: str) -> str:
        return f"https://{self.container_host(subdomain)}/disconnect"

    def public_url(self, subdomain: str, port: int) -> str:
        return f"https://{subdomain}-{port}.{self.service_domain}"
