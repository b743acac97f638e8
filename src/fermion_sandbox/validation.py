"""
Input validation for sandbox operations.

Checks here never touch the network; a failing check raises before any
request is made.
"""

import posixpath

from fermion_sandbox.config import EXPOSABLE_PORTS, HOME_ALIAS, HOME_PREFIX
from fermion_sandbox.errors import InvalidPathError, UnsupportedPortError


def normalize_sandbox_path(path: str) -> str:
    """
    Normalize a sandbox file path to its absolute form.

    Accepts paths rooted at the home directory (``/home/damner/...``) or its
    ``~`` alias (``~/...``). ``~/foo.txt`` and ``/home/damner/foo.txt`` both
    normalize to ``/home/damner/foo.txt``.

    Raises:
        InvalidPathError: If the path is empty, not rooted at the home
            directory, or escapes it with ``..``.
    """
    if not path or not path.strip():
        raise InvalidPathError("Path cannot be empty")

    if path == HOME_ALIAS or path.startswith(HOME_ALIAS + "/"):
        candidate = HOME_PREFIX + path[len(HOME_ALIAS):]
    elif path == HOME_PREFIX or path.startswith(HOME_PREFIX + "/"):
        candidate = path
    else:
        raise InvalidPathError(
            f"Path must start with '{HOME_ALIAS}/' or '{HOME_PREFIX}/': {path}"
        )

    normalized = posixpath.normpath(candidate)
    if normalized != HOME_PREFIX and not normalized.startswith(HOME_PREFIX + "/"):
        raise InvalidPathError(f"Path escapes the home directory: {path}")

    return normalized


def validate_exposable_port(port: int) -> int:
    """Ensure ``port`` is one of the publicly exposable ports."""
    if isinstance(port, bool) or port not in EXPOSABLE_PORTS:
        allowed = ", ".join(str(p) for p in EXPOSABLE_PORTS)
        raise UnsupportedPortError(f"Port {port} cannot be exposed (allowed: {allowed})")
    return port
