# ABOUTME: Shared app configuration and constants used across API, planner and agent (core package).
# ABOUTME: Values come from the environment (.env via python-dotenv); keeps defaults in one place.

import os

from dotenv import load_dotenv

load_dotenv()

# Auth: SECRET_KEY must be set (e.g. in .env); no default to avoid JWT forgery in production.
_SECRET_KEY = os.environ.get("SECRET_KEY")
if not _SECRET_KEY:
    raise ValueError(
        "SECRET_KEY environment variable must be set. For local dev, add SECRET_KEY=your-secret to .env."
    )
SECRET_KEY = _SECRET_KEY
ALGORITHM = "HS256"
# Seven days.
_DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES = 7 * 24 * 60


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw)
    except ValueError:
        return default


ACCESS_TOKEN_EXPIRE_MINUTES = _parse_int(
    "ACCESS_TOKEN_EXPIRE_MINUTES", _DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES
)

# Google sign-in: ID tokens must be issued for this OAuth client.
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")

# User defaults and limits.
DEFAULT_TIMEZONE = "UTC"
DEFAULT_AVAILABLE_HOURS_PER_WEEK = 20
MAX_AVAILABLE_HOURS_PER_WEEK = 168

# Planning context window (days from today, end exclusive).
UPCOMING_DAYS = 7

# Agent: "http" calls the external agent service, "adk" runs the in-process Gemini agent.
AGENT_BACKEND = os.environ.get("AGENT_BACKEND", "http").strip().lower()
AGENT_SERVICE_URL = os.environ.get("AGENT_SERVICE_URL", "").strip()
AGENT_SERVICE_AUTH_TOKEN = os.environ.get("AGENT_SERVICE_AUTH_TOKEN", "").strip()
AGENT_TIMEOUT_SECONDS = _parse_float("AGENT_TIMEOUT_SECONDS", 60.0)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# CORS: comma-separated origins; default allows a local web client. Set in production.
_raw_cors = os.environ.get("CORS_ORIGINS", "http://localhost:3000")
CORS_ORIGINS = [o.strip() for o in _raw_cors.split(",") if o.strip()] or [
    "http://localhost:3000"
]
