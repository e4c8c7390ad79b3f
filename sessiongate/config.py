"""Configuration helpers for the SessionGate service."""

from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
load_dotenv()


def _split_origins(value: str) -> List[str]:
    """Convert a comma-separated origin string into a clean list.

    Args:
        value (str): One or many origins separated by commas.
    Returns:
        List[str]: Normalized origin values with whitespace removed.
    """
    return [origin.strip() for origin in value.split(",") if origin.strip()]


DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"

API_HOST = os.getenv("SESSIONGATE_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("SESSIONGATE_API_PORT", "8000"))
API_ALLOWED_ORIGINS = _split_origins(os.getenv("SESSIONGATE_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS))

LOG_LEVEL = os.getenv("SESSIONGATE_LOG_LEVEL", "INFO").upper()
