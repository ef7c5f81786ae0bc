"""Listing page fetch and product extraction for wcproducts.com.

The storefront renders its "new products" collection as a grid:

    .tt-product-listing
      div.col-6                      one per product, in display order
        div                          product card
          div > a > span > img       image, real URL in data-mainimage
          div
            h2 > a                   name and product page link
            div > span > span        display price
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import BASE_URL, LISTING_URL, REQUEST_TIMEOUT
from .errors import ExtractionError, FetchError
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

LISTING_CONTAINER = ".tt-product-listing"
PRODUCT_CARD = ".tt-product-listing .col-6"
NAME_LINK = ":scope > div:nth-child(1) > div:nth-child(2) > h2:nth-child(1) > a:nth-child(1)"
IMAGE = ":scope > div:nth-child(1) > div:nth-child(1) > a:nth-child(1) > span:nth-child(1) > img:nth-child(1)"
PRICE = ":scope > div:nth-child(1) > div:nth-child(2) > div:nth-child(2) > span:nth-child(1) > span:nth-child(1)"

IMAGE_ATTR = "data-mainimage"
# Lazy-loaded images carry this placeholder where the theme injects a size.
IMAGE_SIZE_TOKEN = "respimgsize"
IMAGE_SIZE = "145x"


@dataclass
class RawProductFields:
    name: str
    page_url_fragment: str
    image_url: str      # already normalized
    price_text: str


@dataclass
class ProductRecord:
    name: str
    page_url: str
    image_id: Optional[str] = None
    image_url: str = ""
    price: str = ""
    cached_time: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "pageUrl": self.page_url,
            "imageUrl": self.image_url,
            "price": self.price,
        }
        if self.image_id:
            data["imageId"] = self.image_id
        if self.cached_time:
            data["cachedTime"] = self.cached_time
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductRecord":
        """Build a record from a store entry.

        Entries written by older versions use ``productPage`` for the page
        link and may lack ``imageId``/``cachedTime``.
        """
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"store entry without a name: {data!r}")
        return cls(
            name=name,
            page_url=str(data.get("pageUrl") or data.get("productPage") or ""),
            image_id=data.get("imageId") or None,
            image_url=str(data.get("imageUrl") or ""),
            price=str(data.get("price") or ""),
            cached_time=data.get("cachedTime") or None,
        )


@retryable_request
def _get(session: requests.Session, url: str, **kwargs: dict) -> requests.Response:
    """Thin wrapper around session.get with retry policy from utils.retryable_request."""
    return session.get(url, **kwargs)


def normalize_image_url(reference: str, base_url: str = BASE_URL) -> str:
    """
    Make a listing image reference stable across fetches.
    Example:
      //wcproducts.com/cdn/shop/files/TalonFXS_respimgsize.png?v=1712345
    ->  https://wcproducts.com/cdn/shop/files/TalonFXS_145x.png
    """
    ref = (reference or "").strip()
    if not ref:
        return ""
    abs_url = urljoin(base_url.rstrip("/") + "/", ref)
    abs_url = abs_url.replace(IMAGE_SIZE_TOKEN, IMAGE_SIZE)
    parts = urlsplit(abs_url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def fetch_listing(
    url: Optional[str] = None,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> str:
    """GET the listing page and return its HTML. Raises FetchError."""
    if url is None:
        url = LISTING_URL

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        resp = _get(session, url, timeout=timeout)
        return resp.text
    except (requests.RequestException, HTTPError) as e:
        raise FetchError(f"Failed to fetch {url}: {e}") from e
    finally:
        if close_session:
            session.close()


def _field(card: Tag, selector: str, label: str, index: int) -> Tag:
    el = card.select_one(selector)
    if el is None:
        raise ExtractionError(f"product #{index}: {label} element not found")
    return el


def extract_products(html: str, base_url: str = BASE_URL) -> List[RawProductFields]:
    """Parse the listing into raw field-sets, in page order.

    A listing container with no products is a valid, empty result; a page
    without the container at all raises ExtractionError.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    if soup.select_one(LISTING_CONTAINER) is None:
        raise ExtractionError(f"listing container {LISTING_CONTAINER!r} not found")

    products: List[RawProductFields] = []
    for index, card in enumerate(soup.select(PRODUCT_CARD), start=1):
        link = _field(card, NAME_LINK, "name", index)
        img = _field(card, IMAGE, "image", index)
        price = _field(card, PRICE, "price", index)

        name = link.get_text().strip()
        href = (link.get("href") or "").strip()
        image_ref = (img.get(IMAGE_ATTR) or "").strip()
        if not name or not href or not image_ref:
            raise ExtractionError(f"product #{index}: name, link or image reference is empty")

        products.append(
            RawProductFields(
                name=name,
                page_url_fragment=href,
                image_url=normalize_image_url(image_ref, base_url),
                price_text=price.get_text().strip(),
            )
        )

    logger.debug("Extracted %d products from listing", len(products))
    return products


def build_record(raw: RawProductFields, image_id: Optional[str], base_url: str = BASE_URL) -> ProductRecord:
    return ProductRecord(
        name=raw.name,
        page_url=urljoin(base_url.rstrip("/") + "/", raw.page_url_fragment),
        image_id=image_id,
        image_url=raw.image_url,
        price=raw.price_text,
    )


__all__ = [
    "RawProductFields",
    "ProductRecord",
    "normalize_image_url",
    "fetch_listing",
    "extract_products",
    "build_record",
]
