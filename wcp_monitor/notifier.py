"""Slack notifier.

Posts one Block Kit message per new product through ``chat.postMessage``.
Delivery never raises: every call returns a DeliveryResult the caller logs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .config import (
    REQUEST_TIMEOUT,
    SLACK_API_URL,
    SLACK_CHANNEL,
    SLACK_ENABLED,
    SLACK_TOKEN,
    SLACK_USERNAME,
)
from .errors import DeliveryError
from .scraper import ProductRecord
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

SENT = "sent"
DISABLED = "disabled"
FAILED = "failed"


@dataclass
class DeliveryResult:
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


@retryable_request
def _post(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.post(url, **kwargs)


def build_message(product: ProductRecord, channel: str, username: str = SLACK_USERNAME) -> dict:
    title = product.name or "Unknown product"
    section: dict = {
        "type": "section",
        "fields": [
            {"type": "mrkdwn", "text": f"*Product:*\n<{product.page_url}|{title}>"},
            {"type": "mrkdwn", "text": f"*Price:*\n{product.price or 'n/a'}"},
        ],
    }
    if product.image_url:
        section["accessory"] = {
            "type": "image",
            "image_url": product.image_url,
            "alt_text": title,
        }

    return {
        "channel": channel,
        "username": username,
        "text": f"New product detected: {title}",
        "unfurl_links": False,
        "unfurl_media": False,
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": ":rotating_light: *New product detected!* :rotating_light:",
                },
            },
            section,
        ],
    }


def _deliver(session: requests.Session, url: str, token: str, message: dict) -> None:
    try:
        resp = _post(
            session,
            url,
            json=message,
            headers={"Authorization": f"Bearer {token}"},
            timeout=REQUEST_TIMEOUT,
        )
    except (requests.RequestException, HTTPError) as e:
        raise DeliveryError(str(e)) from e

    try:
        body = resp.json()
    except ValueError as e:
        raise DeliveryError("Slack returned a non-JSON response") from e
    if not isinstance(body, dict):
        raise DeliveryError(f"Slack returned an unexpected response: {body!r}")
    if not body.get("ok"):
        raise DeliveryError(f"Slack rejected the message: {body.get('error', 'unknown error')}")


def send_new_product(
    product: ProductRecord,
    *,
    enabled: Optional[bool] = None,
    token: Optional[str] = None,
    channel: Optional[str] = None,
    api_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> DeliveryResult:
    if enabled is None:
        enabled = SLACK_ENABLED
    if token is None:
        token = SLACK_TOKEN
    if channel is None:
        channel = SLACK_CHANNEL
    if api_url is None:
        api_url = SLACK_API_URL

    if not enabled:
        logger.info("Slack bot is disabled in the config, not sending notification.")
        return DeliveryResult(DISABLED)
    if not (token and channel):
        logger.info("Slack token or channel not configured, not sending notification.")
        return DeliveryResult(DISABLED)

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        logger.info("Sending new product notification to Slack for %s", product.name)
        _deliver(session, api_url, token, build_message(product, channel))
        return DeliveryResult(SENT)
    except DeliveryError as e:
        logger.error("Error sending notification to Slack for %s: %s", product.name, e)
        return DeliveryResult(FAILED, str(e))
    finally:
        if close_session:
            session.close()


__all__ = ["DeliveryResult", "build_message", "send_new_product", "SENT", "DISABLED", "FAILED"]
