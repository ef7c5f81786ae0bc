from __future__ import annotations

import argparse
import datetime as _dt
import enum
import logging
import sys
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

import requests

from . import config, detector, notifier, scraper
from .errors import AssetFetchError, ExtractionError, FetchError, MonitorError, PersistenceError
from .images import ImageCache
from .notifier import DeliveryResult
from .scraper import ProductRecord
from .store import ProductStore
from .utils import get_http_session

logger = logging.getLogger(__name__)

Notify = Callable[[ProductRecord], DeliveryResult]


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


class CycleState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


@dataclass
class CycleReport:
    state: CycleState = CycleState.IDLE
    listed: int = 0
    known: int = 0
    new: List[ProductRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    notified: int = 0
    delivery_failures: int = 0
    bootstrap: bool = False
    aborted_at: Optional[CycleState] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.aborted_at is None


def _advance(report: CycleReport, state: CycleState) -> None:
    logger.debug("Cycle %s -> %s", report.state.value, state.value)
    report.state = state


def _abort(report: CycleReport, error: MonitorError) -> CycleReport:
    report.aborted_at = report.state
    report.error = f"{type(error).__name__}: {error}"
    logger.error("Cycle aborted while %s: %s", report.state.value, report.error)
    report.state = CycleState.IDLE
    return report


def _now() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def run_cycle(
    store: ProductStore,
    images: ImageCache,
    *,
    listing_url: Optional[str] = None,
    base_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
    notify: Optional[Notify] = None,
) -> CycleReport:
    """Perform one fetch-extract-resolve-diff-persist-notify pass.

    Fetch, extraction and persistence failures end the cycle with the store
    untouched (or, for persistence, without notifying). A failed image only
    drops that product until the next cycle. Never raises MonitorError.
    """
    if base_url is None:
        base_url = config.BASE_URL

    report = CycleReport()
    logger.info("Checking for new products...")

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True
    if notify is None:
        def notify(record: ProductRecord) -> DeliveryResult:
            return notifier.send_new_product(record, session=session)

    try:
        # 1) Snapshot known products and fetch the listing
        _advance(report, CycleState.FETCHING)
        try:
            known = store.load()
            html = scraper.fetch_listing(listing_url, session=session)
        except (PersistenceError, FetchError) as e:
            return _abort(report, e)
        report.known = len(known)
        report.bootstrap = not known

        # 2) Extract raw product fields
        _advance(report, CycleState.EXTRACTING)
        try:
            raw_items = scraper.extract_products(html, base_url)
        except ExtractionError as e:
            return _abort(report, e)
        report.listed = len(raw_items)

        # 3) Resolve image ids, one product at a time
        _advance(report, CycleState.RESOLVING)
        current: List[ProductRecord] = []
        for i, raw in enumerate(raw_items, start=1):
            try:
                image_id = images.resolve(raw.name, raw.image_url, known, session=session)
            except AssetFetchError as e:
                logger.warning("Skipping %s this cycle: %s", raw.name, e)
                report.skipped.append(raw.name)
                continue
            current.append(scraper.build_record(raw, image_id, base_url))
            logger.debug("Checked %d of %d products", i, report.listed)

        # 4) Diff against the snapshot
        _advance(report, CycleState.DIFFING)
        new_products = detector.find_new_products(current, known.values())

        # 5) Persist before notifying
        _advance(report, CycleState.PERSISTING)
        if new_products:
            cached_time = _now()
            new_products = [replace(p, cached_time=cached_time) for p in new_products]
            try:
                store.save([*known.values(), *new_products])
            except PersistenceError as e:
                return _abort(report, e)
            images.persisted(p.name for p in new_products)
        report.new = new_products

        # 6) Notify, unless this is the bootstrap run
        _advance(report, CycleState.NOTIFYING)
        if report.bootstrap:
            if new_products:
                logger.info(
                    "Cache is empty, not sending notifications on first run to avoid spamming. "
                    "Check as normal going forward."
                )
        else:
            for p in new_products:
                logger.info("New product detected: %s (%s) %s", p.name, p.price, p.page_url)
                result = notify(p)
                if result.status == notifier.SENT:
                    report.notified += 1
                elif not result.ok:
                    report.delivery_failures += 1
                    logger.warning("Notification for %s failed: %s", p.name, result.error)

        logger.info("Total products on the page: %d", report.listed)
        logger.info("Total products in the cache: %d", report.known + len(new_products))
        logger.info("New products detected: %d", len(new_products))
        if report.skipped:
            logger.info("Products skipped until next cycle: %d", len(report.skipped))

        _advance(report, CycleState.IDLE)
        return report
    finally:
        if close_session:
            session.close()


def bootstrap(store: ProductStore, images: ImageCache) -> None:
    """Startup hygiene: make sure the asset directory exists, and empty it
    when there is no known product to refer to its files."""
    images.ensure_dir()
    try:
        known = store.load()
    except PersistenceError:
        logger.exception("Could not read the product store at startup; leaving images untouched.")
        return
    if not known:
        images.clear()


def send_test_notification() -> DeliveryResult:
    sample = ProductRecord(
        name="TEST - TalonFX stuff",
        page_url=config.BASE_URL.rstrip("/")
        + "/collections/new-products/products/talonfxs-motor-controller-and-motors",
        image_url=config.BASE_URL.rstrip("/") + "/cdn/shop/files/TalonFXS_145x.png",
        price="$100",
    )
    return notifier.send_new_product(sample)


def main(argv: Optional[List[str]] = None) -> None:
    """Initialise and run the monitor."""
    parser = argparse.ArgumentParser(description="West Coast Products new-product monitor")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit (no scheduler)")
    parser.add_argument(
        "--test-notify", action="store_true", help="Send a sample notification and exit"
    )
    args = parser.parse_args(argv)

    setup_logging()
    config.validate()

    if args.test_notify:
        result = send_test_notification()
        logger.info("Test notification: %s", result.status)
        sys.exit(0 if result.ok else 1)

    store = ProductStore(config.STORE_PATH)
    images = ImageCache(config.IMAGES_DIR)
    bootstrap(store, images)

    if args.once:
        report = run_cycle(store, images, listing_url=config.LISTING_URL)
        sys.exit(0 if report.ok else 1)

    from .scheduler import run_scheduler

    logger.info(
        "Starting product monitor for %s every %d seconds.",
        config.LISTING_URL,
        config.CHECK_INTERVAL_SECONDS,
    )
    run_scheduler(
        lambda: run_cycle(store, images, listing_url=config.LISTING_URL),
        interval_seconds=config.CHECK_INTERVAL_SECONDS,
    )


if __name__ == "__main__":
    main()
