from sqlgate.config.loader import get_platform_config_path, load_settings, resolve_config_path
from sqlgate.config.settings import AgentConfig, MCPConfig, ServerConfig, Settings

__all__ = [
    "AgentConfig",
    "MCPConfig",
    "ServerConfig",
    "Settings",
    "get_platform_config_path",
    "load_settings",
    "resolve_config_path",
]
