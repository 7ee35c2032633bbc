import os
from dotenv import load_dotenv

# 1. Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# 2. Get the URL. If it's not found, raise an error to fail fast.
DATABASE_URL = os.environ.get("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")

DATABASE_ECHO = _env_bool("DATABASE_ECHO")

# Upper bound for one booking commit, in seconds
BOOKING_COMMIT_TIMEOUT_SECONDS = float(os.environ.get("BOOKING_COMMIT_TIMEOUT_SECONDS", "15"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]
CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
