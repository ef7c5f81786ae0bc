"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

logger = logging.getLogger(__name__)


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


# ---- Listing page -------------------------------------------------------------

# Page enumerating the newest products.
LISTING_URL: str = _get_env("LISTING_URL", "https://wcproducts.com/collections/new-products")

# Product links on the listing are relative; they are resolved against this.
BASE_URL: str = _get_env("BASE_URL", "https://wcproducts.com")

# ---- Local state ----------------------------------------------------------------

# JSON document holding every product seen so far.
STORE_PATH: str = _get_env("STORE_PATH", "product_cache.json")

# Flat directory of cached product images, named {imageId}{extension}.
IMAGES_DIR: str = _get_env("IMAGES_DIR", "images")

# ---- Schedule & network -----------------------------------------------------

# Seconds between cycles. One cycle also runs immediately at startup.
CHECK_INTERVAL_SECONDS: int = _parse_int(_get_env("CHECK_INTERVAL_SECONDS"), 180)

# Timeout (seconds) for every outbound HTTP call.
REQUEST_TIMEOUT: float = _parse_float(_get_env("REQUEST_TIMEOUT"), 15.0)

# Attempts per HTTP call. 1 means no retries inside a cycle; the schedule retries.
HTTP_MAX_ATTEMPTS: int = _parse_int(_get_env("HTTP_MAX_ATTEMPTS"), 1)

# Image downloads larger than this are rejected.
IMAGE_MAX_BYTES: int = _parse_int(_get_env("IMAGE_MAX_BYTES"), 8 * 1024 * 1024)

# Wall-clock limit (seconds) on one whole image download.
IMAGE_DOWNLOAD_SECONDS: float = _parse_float(_get_env("IMAGE_DOWNLOAD_SECONDS"), 60.0)

# ---- Slack notifications ----------------------------------------------------

SLACK_ENABLED: bool = _parse_bool(_get_env("SLACK_ENABLED", "true"), True)
SLACK_TOKEN: Optional[str] = _get_env("SLACK_TOKEN")
SLACK_CHANNEL: Optional[str] = _get_env("SLACK_CHANNEL")
SLACK_USERNAME: str = _get_env("SLACK_USERNAME", "West Coast Products Alerts")
SLACK_API_URL: str = _get_env("SLACK_API_URL", "https://slack.com/api/chat.postMessage")

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")

# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate configuration parameters.

    Unusable values raise; a missing Slack credential only disables delivery.
    """
    if not LISTING_URL:
        raise RuntimeError("LISTING_URL must be set.")
    if CHECK_INTERVAL_SECONDS <= 0:
        raise RuntimeError("CHECK_INTERVAL_SECONDS must be a positive integer.")
    if REQUEST_TIMEOUT <= 0:
        raise RuntimeError("REQUEST_TIMEOUT must be positive.")
    if HTTP_MAX_ATTEMPTS < 1:
        raise RuntimeError("HTTP_MAX_ATTEMPTS must be at least 1.")
    if IMAGE_DOWNLOAD_SECONDS <= 0:
        raise RuntimeError("IMAGE_DOWNLOAD_SECONDS must be positive.")
    if SLACK_ENABLED and not (SLACK_TOKEN and SLACK_CHANNEL):
        logger.warning(
            "SLACK_ENABLED is true but SLACK_TOKEN/SLACK_CHANNEL are missing; "
            "notifications will be skipped. See .env.example for details."
        )


__all__ = [
    "LISTING_URL",
    "BASE_URL",
    "STORE_PATH",
    "IMAGES_DIR",
    "CHECK_INTERVAL_SECONDS",
    "REQUEST_TIMEOUT",
    "HTTP_MAX_ATTEMPTS",
    "IMAGE_MAX_BYTES",
    "IMAGE_DOWNLOAD_SECONDS",
    "SLACK_ENABLED",
    "SLACK_TOKEN",
    "SLACK_CHANNEL",
    "SLACK_USERNAME",
    "SLACK_API_URL",
    "LOG_LEVEL",
    "validate",
]
