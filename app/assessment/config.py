"""
Assessment Engine Configuration
Judge service URLs, polling budget and storage settings
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "codegym_db")

# Code judge (Judge0 compatible)
JUDGE_API_URL = os.getenv("JUDGE_API_URL", "https://judge0-ce.p.rapidapi.com")
JUDGE_API_KEY = os.getenv("JUDGE_API_KEY", "")
JUDGE_HOST = os.getenv("JUDGE_HOST", "judge0-ce.p.rapidapi.com")

# Judge polling settings
JUDGE_POLL_INTERVAL_SECONDS = float(os.getenv("JUDGE_POLL_INTERVAL_SECONDS", "1"))
JUDGE_MAX_POLL_ATTEMPTS = int(os.getenv("JUDGE_MAX_POLL_ATTEMPTS", "10"))
JUDGE_REQUEST_TIMEOUT_SECONDS = float(os.getenv("JUDGE_REQUEST_TIMEOUT_SECONDS", "30"))

# When False, an exhausted poll budget returns the last observed status
JUDGE_RAISE_ON_TIMEOUT = _env_bool("JUDGE_RAISE_ON_TIMEOUT", False)

# Timers
LOW_TIME_WARNING_SECONDS = int(os.getenv("LOW_TIME_WARNING_SECONDS", "300"))

# Leaderboard
LEADERBOARD_DEFAULT_LIMIT = int(os.getenv("LEADERBOARD_DEFAULT_LIMIT", "50"))

# Logging
DEBUG = _env_bool("DEBUG", False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
