from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from godot_bridge.mcp_server.client import DEFAULT_TIMEOUT, SCREENSHOT_TIMEOUT


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GODOT_BRIDGE_", populate_by_name=True)

    # GODOT_PATH is what existing MCP configs already set.
    godot_path: str = Field(
        default="godot",
        validation_alias=AliasChoices("GODOT_PATH", "GODOT_BRIDGE_GODOT_PATH", "godot_path"),
    )
    project_path: str = ""

    request_timeout: float = DEFAULT_TIMEOUT
    screenshot_timeout: float = SCREENSHOT_TIMEOUT
    handshake_timeout: float = 3.0
    handshake_delay: float = 0.5

    log_level: str = "INFO"
