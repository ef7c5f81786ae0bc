"""Local cache of product images.

Each product gets a random asset id the first time its image is needed;
the file is stored as ``{imageId}{extension}`` and never downloaded again
for that product.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import secrets
import time
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional
from urllib.parse import urlparse

import requests

from .config import IMAGE_DOWNLOAD_SECONDS, IMAGE_MAX_BYTES, IMAGES_DIR, REQUEST_TIMEOUT
from .errors import AssetFetchError
from .scraper import ProductRecord
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)


@retryable_request
def _get(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.get(url, **kwargs)


def new_image_id() -> str:
    """128 random bits, hex encoded (safe as a filename stem)."""
    return secrets.token_hex(16)


def image_extension(url: str, content_type: Optional[str] = None) -> str:
    """Extension from the URL path, else from the Content-Type, else ''."""
    ext = os.path.splitext(urlparse(url).path)[1]
    if ext:
        return ext.lower()
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return guessed
    return ""


class ImageCache:
    def __init__(
        self,
        directory: Optional[str] = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        max_bytes: int = IMAGE_MAX_BYTES,
        deadline: float = IMAGE_DOWNLOAD_SECONDS,
    ):
        self.directory = Path(directory if directory is not None else IMAGES_DIR)
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.deadline = deadline
        # name -> image id downloaded by this process and not yet saved to the store
        self._assigned: Dict[str, str] = {}
        self.downloads = 0

    def ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def clear(self) -> int:
        """Remove every file in the asset directory. Returns the number removed."""
        self.ensure_dir()
        removed = 0
        for entry in self.directory.iterdir():
            if entry.is_file():
                entry.unlink()
                removed += 1
        self._assigned.clear()
        logger.info("Cleared %d cached images from %s", removed, self.directory)
        return removed

    def resolve(
        self,
        name: str,
        image_url: str,
        known: Mapping[str, ProductRecord],
        *,
        session: Optional[requests.Session] = None,
    ) -> str:
        """Return the asset id for product `name`, downloading its image at most once.

        `known` is the store snapshot taken at cycle start.
        Raises AssetFetchError if a download is needed and fails.
        """
        existing = known.get(name)
        if existing is not None and existing.image_id:
            return existing.image_id
        if name in self._assigned:
            return self._assigned[name]

        image_id = new_image_id()
        self._download(image_url, image_id, session=session)
        self._assigned[name] = image_id
        return image_id

    def persisted(self, names: Iterable[str]) -> None:
        """Forget ids for `names` once the store holds them."""
        for name in names:
            self._assigned.pop(name, None)

    @property
    def pending(self) -> Dict[str, str]:
        """Ids downloaded by this process that the store does not hold yet."""
        return dict(self._assigned)

    def _download(self, url: str, image_id: str, *, session: Optional[requests.Session] = None) -> Path:
        if not url:
            raise AssetFetchError(f"No image URL for asset {image_id}")

        close_session = False
        if session is None:
            session = get_http_session()
            close_session = True

        try:
            self.ensure_dir()
            # `timeout` bounds each read; `deadline` bounds the whole transfer.
            started = time.monotonic()
            with _get(session, url, timeout=self.timeout, stream=True) as resp:
                ext = image_extension(url, resp.headers.get("Content-Type"))
                path = self.directory / f"{image_id}{ext}"
                total = 0
                with open(path, "wb") as f:
                    for chunk in resp.iter_content(8192):
                        if not chunk:
                            continue
                        total += len(chunk)
                        if total > self.max_bytes:
                            raise AssetFetchError(
                                f"Image too large (> {self.max_bytes} bytes): {url}"
                            )
                        f.write(chunk)
                        if time.monotonic() - started > self.deadline:
                            raise AssetFetchError(
                                f"Image download exceeded {self.deadline:g}s: {url}"
                            )
        except (requests.RequestException, HTTPError, OSError) as e:
            raise AssetFetchError(f"Failed to cache image {url}: {e}") from e
        finally:
            if close_session:
                session.close()

        self.downloads += 1
        logger.debug("Cached image %s as %s (%d bytes)", url, path.name, total)
        return path


__all__ = ["ImageCache", "new_image_id", "image_extension"]
