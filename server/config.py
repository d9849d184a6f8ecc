"""
Centralized configuration for the Bluff game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.PLAYERS_TO_START)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Room settings
    MAX_PLAYERS_PER_ROOM: int = 6

    # Match settings
    PLAYERS_TO_START: int = 2            # 2 or 3 depending on the table variant
    HAND_SIZE_POLICY: str = "drop_remainder"  # "drop_remainder" or "fixed"
    FIXED_HAND_SIZE: int = 17

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        players_to_start = max(2, get_env_int("PLAYERS_TO_START", 2))
        hand_size_policy = get_env("HAND_SIZE_POLICY", "drop_remainder").lower()
        if hand_size_policy not in ("drop_remainder", "fixed"):
            hand_size_policy = "drop_remainder"

        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 3001),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MAX_PLAYERS_PER_ROOM=max(players_to_start, get_env_int("MAX_PLAYERS_PER_ROOM", 6)),
            PLAYERS_TO_START=players_to_start,
            HAND_SIZE_POLICY=hand_size_policy,
            FIXED_HAND_SIZE=max(1, get_env_int("FIXED_HAND_SIZE", 17)),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
