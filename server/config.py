"""
Centralized configuration for the Quartet game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.ROOM_TTL_MINUTES)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

DATA_DIR = Path(__file__).parent / "data"


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
    PORT: int = 5007
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Room settings
    MAX_PLAYERS_PER_ROOM: int = 6
    ROOM_TTL_MINUTES: int = 240
    ROOM_CODE_LENGTH: int = 6
    CLEANUP_INTERVAL_SECONDS: int = 60
    SAVE_DEBOUNCE_MS: int = 300

    # Storage
    ROOMS_DIR: str = str(DATA_DIR / "rooms")
    TEMPLATES_DIR: str = str(DATA_DIR / "templates")
    CLIENT_DIR: str = str(Path(__file__).parent.parent / "public")
    REDIS_URL: str = ""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 5007),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MAX_PLAYERS_PER_ROOM=get_env_int("MAX_PLAYERS_PER_ROOM", 6),
            ROOM_TTL_MINUTES=get_env_int("ROOM_TTL_MINUTES", 240),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 6),
            CLEANUP_INTERVAL_SECONDS=get_env_int("CLEANUP_INTERVAL_SECONDS", 60),
            SAVE_DEBOUNCE_MS=get_env_int("SAVE_DEBOUNCE_MS", 300),
            ROOMS_DIR=get_env("ROOMS_DIR", str(DATA_DIR / "rooms")),
            TEMPLATES_DIR=get_env("TEMPLATES_DIR", str(DATA_DIR / "templates")),
            CLIENT_DIR=get_env("CLIENT_DIR", str(Path(__file__).parent.parent / "public")),
            REDIS_URL=get_env("REDIS_URL", ""),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
