import json
import os
import tempfile
import unittest
from pathlib import Path

from wcp_monitor import notifier
from wcp_monitor.config import REQUEST_TIMEOUT
from wcp_monitor.errors import PersistenceError
from wcp_monitor.images import ImageCache
from wcp_monitor.main import CycleState, bootstrap, run_cycle
from wcp_monitor.notifier import DeliveryResult
from wcp_monitor.scraper import ProductRecord
from wcp_monitor.store import ProductStore

from tests.fakes import (
    LISTING_URL,
    SITE,
    FakeResponse,
    image_url,
    listing_session,
)


class RecordingNotifier:
    def __init__(self, status=notifier.SENT):
        self.status = status
        self.sent = []

    def __call__(self, record):
        self.sent.append(record)
        error = "boom" if self.status == notifier.FAILED else None
        return DeliveryResult(self.status, error)


class BrokenStore(ProductStore):
    def save(self, records):
        raise PersistenceError("read-only filesystem")


class CycleTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store_path = os.path.join(self._tmp.name, "product_cache.json")
        self.images_dir = os.path.join(self._tmp.name, "images")
        self.store = ProductStore(self.store_path)
        self.images = ImageCache(self.images_dir, timeout=5)
        self.notify = RecordingNotifier()

    def tearDown(self):
        self._tmp.cleanup()

    def cycle(self, session, store=None, images=None):
        return run_cycle(
            store or self.store,
            images or self.images,
            listing_url=LISTING_URL,
            base_url=SITE,
            session=session,
            notify=self.notify,
        )

    def seed(self, *names):
        self.store.save([
            ProductRecord(
                name=n,
                page_url=f"{SITE}/products/{n}",
                image_id=f"{i:032x}",
                image_url=image_url(n),
                price="$10.00",
            )
            for i, n in enumerate(names, start=1)
        ])


class TestRunCycle(CycleTestCase):
    def test_first_run_persists_everything_and_notifies_nothing(self):
        report = self.cycle(listing_session(["A", "B", "C"]))
        self.assertTrue(report.ok)
        self.assertTrue(report.bootstrap)
        self.assertEqual(list(self.store.load()), ["A", "B", "C"])
        self.assertEqual(self.notify.sent, [])
        self.assertEqual(len(os.listdir(self.images_dir)), 3)
        self.assertEqual(report.state, CycleState.IDLE)

    def test_steady_state_notifies_only_the_new_product(self):
        self.seed("A", "B")
        session = listing_session(["A", "B", "C"])
        report = self.cycle(session)

        self.assertFalse(report.bootstrap)
        self.assertEqual([r.name for r in self.notify.sent], ["C"])
        self.assertEqual(report.notified, 1)
        self.assertEqual(list(self.store.load()), ["A", "B", "C"])
        self.assertNotIn(image_url("A"), session.gets)
        self.assertNotIn(image_url("B"), session.gets)
        self.assertIn(image_url("C"), session.gets)

    def test_new_record_is_stamped_and_carries_its_image(self):
        self.seed("A")
        self.cycle(listing_session(["A", "C"]))
        stored = self.store.load()["C"]
        self.assertTrue(stored.cached_time)
        self.assertEqual(stored.image_url, image_url("C"))
        self.assertEqual(stored.page_url, f"{SITE}/collections/new-products/products/c")
        self.assertEqual(self.notify.sent[0].cached_time, stored.cached_time)
        self.assertTrue(os.path.exists(os.path.join(self.images_dir, f"{stored.image_id}.png")))

    def test_known_records_are_never_rewritten(self):
        self.seed("A")
        before = self.store.load()["A"]
        html_session = listing_session(["A", "B"])
        self.cycle(html_session)
        self.assertEqual(self.store.load()["A"], before)

    def test_image_failure_only_drops_that_product(self):
        self.seed("X")
        report = self.cycle(listing_session(["A", "B", "C"], broken_images={"C"}))

        self.assertTrue(report.ok)
        self.assertEqual(report.skipped, ["C"])
        self.assertEqual([r.name for r in self.notify.sent], ["A", "B"])
        self.assertEqual(list(self.store.load()), ["X", "A", "B"])

        report = self.cycle(listing_session(["A", "B", "C"]))
        self.assertEqual([r.name for r in report.new], ["C"])
        self.assertEqual([r.name for r in self.notify.sent], ["A", "B", "C"])

    def test_second_identical_cycle_is_a_no_op(self):
        self.seed("A")
        self.cycle(listing_session(["A", "B"]))
        session = listing_session(["A", "B"])
        report = self.cycle(session)
        self.assertEqual(report.new, [])
        self.assertEqual(session.gets, [LISTING_URL])
        self.assertEqual(len(self.notify.sent), 1)

    def test_fetch_failure_leaves_state_untouched(self):
        self.seed("A")
        before = Path(self.store_path).read_text(encoding="utf-8")
        session = listing_session([], extra_routes={LISTING_URL: FakeResponse(status_code=503)})
        report = self.cycle(session)

        self.assertFalse(report.ok)
        self.assertEqual(report.aborted_at, CycleState.FETCHING)
        self.assertIn("FetchError", report.error)
        self.assertEqual(Path(self.store_path).read_text(encoding="utf-8"), before)
        self.assertEqual(self.notify.sent, [])

    def test_unrecognised_page_is_reported_distinctly(self):
        self.seed("A")
        session = listing_session(
            [], extra_routes={LISTING_URL: FakeResponse(text="<html><body>Redesigned!</body></html>")}
        )
        report = self.cycle(session)
        self.assertEqual(report.aborted_at, CycleState.EXTRACTING)
        self.assertIn("ExtractionError", report.error)
        self.assertEqual(list(self.store.load()), ["A"])

    def test_corrupt_store_aborts_without_fetching_images(self):
        with open(self.store_path, "w", encoding="utf-8") as f:
            f.write("{oops")
        session = listing_session(["A"])
        report = self.cycle(session)
        self.assertEqual(report.aborted_at, CycleState.FETCHING)
        self.assertIn("PersistenceError", report.error)
        self.assertEqual(session.gets, [])

    def test_persistence_failure_sends_no_notifications(self):
        store = BrokenStore(self.store_path)
        self.seed("A")
        report = self.cycle(listing_session(["A", "B"]), store=store)
        self.assertEqual(report.aborted_at, CycleState.PERSISTING)
        self.assertEqual(self.notify.sent, [])
        self.assertEqual(list(self.store.load()), ["A"])

    def test_image_is_not_downloaded_again_after_persistence_failure(self):
        self.seed("A")
        store = BrokenStore(self.store_path)
        self.cycle(listing_session(["A", "B"]), store=store)
        self.assertEqual(list(self.images.pending), ["B"])
        session = listing_session(["A", "B"])
        report = self.cycle(session)
        self.assertEqual([r.name for r in report.new], ["B"])
        self.assertNotIn(image_url("B"), session.gets)
        self.assertEqual(self.images.downloads, 1)
        self.assertEqual(self.images.pending, {})

    def test_saved_products_leave_no_pending_image_ids(self):
        self.seed("A")
        report = self.cycle(listing_session(["A", "B"]))
        self.assertEqual([r.name for r in report.new], ["B"])
        self.assertEqual(self.images.pending, {})

    def test_every_request_in_a_cycle_carries_a_timeout(self):
        session = listing_session(["A", "B"])
        self.cycle(session)
        self.assertEqual(len(session.get_kwargs), 3)
        for kwargs in session.get_kwargs:
            self.assertEqual(kwargs["timeout"], 5 if kwargs.get("stream") else REQUEST_TIMEOUT)

    def test_delivery_failure_keeps_the_product_known(self):
        self.seed("A")
        self.notify = RecordingNotifier(status=notifier.FAILED)
        report = self.cycle(listing_session(["A", "B"]))
        self.assertTrue(report.ok)
        self.assertEqual(report.delivery_failures, 1)
        self.assertIn("B", self.store.load())

        report = self.cycle(listing_session(["A", "B"]))
        self.assertEqual(report.new, [])
        self.assertEqual(len(self.notify.sent), 1)

    def test_empty_listing_on_first_run_writes_nothing(self):
        report = self.cycle(listing_session([]))
        self.assertTrue(report.ok)
        self.assertEqual(report.listed, 0)
        self.assertFalse(os.path.exists(self.store_path))

    def test_store_stays_a_flat_json_array(self):
        self.cycle(listing_session(["A", "B"]))
        with open(self.store_path, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual([d["name"] for d in data], ["A", "B"])
        self.assertEqual(
            set(data[0]), {"name", "pageUrl", "imageId", "imageUrl", "price", "cachedTime"}
        )


class TestBootstrap(CycleTestCase):
    def test_empty_store_clears_images(self):
        os.makedirs(self.images_dir)
        with open(os.path.join(self.images_dir, "stale.png"), "wb") as f:
            f.write(b"x")
        bootstrap(self.store, self.images)
        self.assertEqual(os.listdir(self.images_dir), [])

    def test_known_products_keep_their_images(self):
        self.seed("A")
        os.makedirs(self.images_dir)
        with open(os.path.join(self.images_dir, f"{1:032x}.png"), "wb") as f:
            f.write(b"x")
        bootstrap(self.store, self.images)
        self.assertEqual(os.listdir(self.images_dir), [f"{1:032x}.png"])

    def test_creates_images_directory(self):
        self.seed("A")
        bootstrap(self.store, self.images)
        self.assertTrue(os.path.isdir(self.images_dir))


if __name__ == "__main__":
    unittest.main()
