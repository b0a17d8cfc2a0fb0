"""Loguru setup shared by the MCP server and the addon.

Both processes use stdout for protocol traffic (MCP stdio on one side, bridge
frames on the other), so log output always goes to stderr.
"""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<dim>{time:HH:mm:ss.SSS}</dim> <level>{level: <7}</level> "
    "<cyan>{name}</cyan> {message}"
)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, backtrace=False)
