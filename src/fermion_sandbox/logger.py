"""
Logging setup for fermion_sandbox.

Every module does ``logger = get_logger(__name__)``. Records from this package
stay disabled until ``setup_logging`` is called so that embedding applications
keep control of their own sinks.
"""

import sys

from loguru import logger as _logger

PACKAGE_NAME = "fermion_sandbox"

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", sink=sys.stderr) -> None:
    """Install a single sink at ``level`` and enable this package's records."""
    _logger.remove()
    _logger.configure(extra={"name": PACKAGE_NAME})
    _logger.add(sink, level=level.upper(), format=LOG_FORMAT)
    _logger.enable(PACKAGE_NAME)


def get_logger(name: str):
    """Return the shared loguru logger bound to a module name."""
    return _logger.bind(name=name)
