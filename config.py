# config.py
import os
import logging
from typing import List

from dotenv import load_dotenv # Import to load .env file

from errors import ConfigurationError

# Load environment variables from .env file (API keys for Gemini / Vision)
load_dotenv()

logger = logging.getLogger(__name__)


def _split_env_list(value: str) -> List[str]:
    """Splits a comma-separated env value, dropping blanks and repeats but keeping order."""
    items = []
    for item in (value or "").split(","):
        item = item.strip()
        if item and item not in items:
            items.append(item)
    return items


# --- Multimodal model provider (Gemini generateContent) ---
GEMINI_API_URL = os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_LAYOUT_MODEL = os.getenv("GEMINI_LAYOUT_MODEL", "gemini-2.0-flash")
GEMINI_IDENTIFY_MODELS = _split_env_list(
    os.getenv("GEMINI_IDENTIFY_MODELS", "gemini-1.5-flash,gemini-2.0-flash-exp,gemini-1.5-pro")
)
# "box_2d" (0-1000 corners) is canonical, "band" asks for percentage y/height bands
LAYOUT_BOX_CONVENTION = os.getenv("LAYOUT_BOX_CONVENTION", "box_2d").strip().lower()

# --- OCR provider (Google Cloud Vision REST) ---
GOOGLE_VISION_API_URL = os.getenv("GOOGLE_VISION_API_URL", "https://vision.googleapis.com/v1")
OCR_LANGUAGE_HINTS = ["he", "en", "yi"]

# --- Text database (Sefaria public API, no auth) ---
SEFARIA_API_URL = os.getenv("SEFARIA_API_URL", "https://www.sefaria.org/api")
SEFARIA_SITE_URL = os.getenv("SEFARIA_SITE_URL", "https://www.sefaria.org")
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", 5))

# --- Timeouts (seconds) ---
SEFARIA_TIMEOUT_SECONDS = float(os.getenv("SEFARIA_TIMEOUT_SECONDS", 20))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", 60))

# --- App ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ALLOW_ORIGINS = _split_env_list(os.getenv("CORS_ALLOW_ORIGINS", "*"))


def gemini_api_keys() -> List[str]:
    """
    Returns every configured Gemini credential in priority order.
    GEMINI_API_KEY comes first, then the entries of GEMINI_API_KEYS.
    Read at call time so a rotated .env does not need a code change.
    """
    return _split_env_list(",".join([os.getenv("GEMINI_API_KEY", ""), os.getenv("GEMINI_API_KEYS", "")]))


def google_vision_api_key() -> str:
    return os.getenv("GOOGLE_VISION_API_KEY", "").strip()


CREDENTIAL_VARS = {"gemini": "GEMINI_API_KEY", "google_vision": "GOOGLE_VISION_API_KEY"}


def missing_credential(provider: str) -> ConfigurationError:
    """The error an endpoint raises when it needs `provider` and no key for it is set."""
    logger.error(f"No {provider} credential configured.", extra={"event": "missing_credential", "provider": provider})
    return ConfigurationError(f"{CREDENTIAL_VARS[provider]} not configured in environment variables", provider=provider)
