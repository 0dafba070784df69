# visage/config.py
"""
Process configuration, read from the environment.

The Gemini credential is the only required setting. Its absence is not an
import-time error: calls detect it and fail with MissingCredential.
"""

import os
from typing import Optional


def get_api_key() -> Optional[str]:
    """Return the Gemini API key, or None when it is not configured."""
    key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    return key or None


GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_ANALYSIS_MODEL = os.getenv("GEMINI_ANALYSIS_MODEL", "gemini-3-flash-preview")
GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))

CAMERA_INDEX = int(os.getenv("CAMERA_INDEX", "0"))
JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "90"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(12 * 1024 * 1024)))

# Sessions untouched for this long are closed; the oldest is evicted at the cap
SESSION_IDLE_SECONDS = float(os.getenv("SESSION_IDLE_SECONDS", "1800"))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "256"))
