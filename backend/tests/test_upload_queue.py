from __future__ import annotations

import os
import unittest
from unittest.mock import Mock, patch

from rixdu import create_app
from rixdu.extensions import db
from rixdu.integrations.storage.base import StorageError
from rixdu.models import Listing, Store, User
from rixdu.services import category_tree, upload_queue


class UploadQueueTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True, STORAGE_PROVIDER="mock", INTEGRATIONS_MODE="sandbox", IMAGE_UPLOAD_DELAY_SECONDS=0)

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri
        if cls._prev_db_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = cls._prev_db_url

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()
        store = Store(name="Homes", slug="homes", kind="property")
        db.session.add(store)
        db.session.commit()
        self.category = category_tree.create_category(
            {
                "store_id": store.id,
                "name": "Apartments",
                "is_leaf": True,
                "fields": [
                    {"name": "title", "type": "text", "required": True},
                    {"name": "gallery", "type": "image", "multiple": True},
                    {"name": "floorplan", "type": "file"},
                ],
            }
        )
        user = User(name="Agent", email="agent@rixdu.test")
        db.session.add(user)
        db.session.commit()
        self.listing = Listing(
            store_id=store.id,
            category_id=self.category.id,
            user_id=user.id,
            slug="marina-flat-1a2b",
            values={"title": "Marina flat"},
            upload_status="pending",
        )
        db.session.add(self.listing)
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _images(self, *names):
        return [upload_queue.encode_image(f"bytes-{n}".encode(), n, "image/jpeg") for n in names]

    def test_job_merges_descriptors_by_field(self):
        seen = []
        outcome = upload_queue.process_upload_job(
            self.listing.id,
            self._images("a.jpg", "b.jpg", "c.jpg", "d.jpg", "plan.pdf"),
            file_field_mapping={"0": "gallery", "1": "gallery", "2": "gallery", "3": "gallery", "4": "floorplan"},
            category_id=self.category.id,
            progress=seen.append,
        )
        self.assertEqual(outcome["uploaded"], 5)
        listing = db.session.get(Listing, self.listing.id)
        self.assertEqual(listing.upload_status, "completed")
        self.assertEqual(listing.values["title"], "Marina flat")
        self.assertEqual(len(listing.values["gallery"]), 4)
        self.assertEqual(listing.values["gallery"][0]["original_name"], "a.jpg")
        self.assertIsInstance(listing.values["floorplan"], dict)
        self.assertTrue(listing.values["floorplan"]["url"].startswith("https://assets.mock.local/"))
        self.assertEqual(seen[0], 10)
        self.assertEqual(seen[-1], 100)
        self.assertEqual(seen, sorted(seen))

    def test_unmapped_images_get_positional_names(self):
        upload_queue.process_upload_job(self.listing.id, self._images("x.jpg"), category_id=self.category.id)
        listing = db.session.get(Listing, self.listing.id)
        self.assertIn("image_0", listing.values)

    def test_single_failure_aborts_whole_job(self):
        with self.assertRaises(StorageError):
            upload_queue.process_upload_job(
                self.listing.id,
                self._images("ok.jpg", "broken[fail].jpg"),
                file_field_mapping=["gallery", "gallery"],
                category_id=self.category.id,
            )
        db.session.rollback()
        listing = db.session.get(Listing, self.listing.id)
        self.assertNotIn("gallery", listing.values)
        self.assertEqual(listing.upload_status, "pending")

    def test_invalid_base64_is_rejected(self):
        with self.assertRaises(StorageError):
            upload_queue.process_upload_job(self.listing.id, [{"base64": "***", "original_name": "x.jpg"}])

    def test_mark_upload_failed_records_error(self):
        upload_queue.mark_upload_failed(self.listing.id, "mock forced failure")
        listing = db.session.get(Listing, self.listing.id)
        self.assertEqual(listing.upload_status, "failed")
        self.assertEqual(listing.upload_error, "mock forced failure")

    def test_queue_marks_listing_pending_with_job_id(self):
        with patch("rixdu.tasks.upload_tasks.process_listing_images.apply_async") as apply_async:
            handle = upload_queue.queue_image_upload(self.listing.id, self._images("a.jpg"), {"0": "gallery"}, self.category.id)
        self.assertTrue(handle.job_id)
        self.assertEqual(apply_async.call_args.kwargs["task_id"], handle.job_id)
        self.assertEqual(apply_async.call_args.kwargs["countdown"], 0.0)
        listing = db.session.get(Listing, self.listing.id)
        self.assertEqual(listing.upload_job_id, handle.job_id)
        self.assertEqual(listing.upload_status, "pending")

    def test_worker_finishing_before_enqueue_returns_keeps_completed(self):
        def _run_now(kwargs=None, **options):
            upload_queue.process_upload_job(**kwargs)
            return Mock(id=options["task_id"])

        with patch("rixdu.tasks.upload_tasks.process_listing_images.apply_async", side_effect=_run_now):
            handle = upload_queue.queue_image_upload(self.listing.id, self._images("a.jpg"), {"0": "gallery"}, self.category.id)
        db.session.expire_all()
        listing = db.session.get(Listing, self.listing.id)
        self.assertEqual(listing.upload_status, "completed")
        self.assertEqual(listing.upload_job_id, handle.job_id)
        self.assertEqual(len(listing.values["gallery"]), 1)

    def test_field_mapping_accepts_json_and_lists(self):
        self.assertEqual(upload_queue.normalize_field_mapping('{"0": "gallery"}'), {0: "gallery"})
        self.assertEqual(upload_queue.normalize_field_mapping(["a", "", "b"]), {0: "a", 2: "b"})
        self.assertEqual(upload_queue.normalize_field_mapping("not json"), {})


if __name__ == "__main__":
    unittest.main()
