"""Logfeed configuration"""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


class BotConfig:
    DISCORD_TOKEN: str = os.getenv("DISCORD_TOKEN", "")
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB: str = os.getenv("MONGO_DB", "logfeed")

    NITRADO_API_URL: str = os.getenv("NITRADO_API_URL", "https://api.nitrado.net")
    REQUEST_TIMEOUT_SECONDS: float = _float("REQUEST_TIMEOUT_SECONDS", "20")
    RETRY_MAX_ATTEMPTS: int = _int("RETRY_MAX_ATTEMPTS", "3")
    RETRY_BASE_DELAY: float = _float("RETRY_BASE_DELAY", "1.0")
    RETRY_MAX_DELAY: float = _float("RETRY_MAX_DELAY", "30.0")

    POLL_INTERVAL_SECONDS: float = _float("POLL_INTERVAL_SECONDS", "300")
    MIN_POLL_INTERVAL_SECONDS: float = _float("MIN_POLL_INTERVAL_SECONDS", "120")
    MAX_CONSECUTIVE_ERRORS: int = _int("MAX_CONSECUTIVE_ERRORS", "10")
    INTER_FILE_DELAY_SECONDS: float = _float("INTER_FILE_DELAY_SECONDS", "1.0")
    MAX_FILES_PER_TICK: int = _int("MAX_FILES_PER_TICK", "2")

    FEED_MAP_PATH: str = os.getenv("FEED_MAP_PATH", "")
    MIN_NOTIFY_SEVERITY: str = os.getenv("MIN_NOTIFY_SEVERITY", "info").lower()

    # Serve logs from a local directory instead of Nitrado
    DEV_LOG_DIR: str = os.getenv("DEV_LOG_DIR", "")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> list:
        """Names of required settings that are missing"""
        missing = []
        if not cls.DISCORD_TOKEN:
            missing.append("DISCORD_TOKEN")
        if not cls.MONGO_URI:
            missing.append("MONGO_URI")
        if cls.POLL_INTERVAL_SECONDS < cls.MIN_POLL_INTERVAL_SECONDS:
            logger.warning(
                f"POLL_INTERVAL_SECONDS={cls.POLL_INTERVAL_SECONDS} is below the "
                f"{cls.MIN_POLL_INTERVAL_SECONDS}s floor and will be raised"
            )
        return missing
