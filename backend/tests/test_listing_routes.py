from __future__ import annotations

import io
import json
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from rixdu import create_app
from rixdu.extensions import db
from rixdu.models import Application, Listing, Profile, Store, Subscription, User
from rixdu.models.subscription import UNLIMITED_LISTINGS
from rixdu.services import category_tree, profile_service
from rixdu.services.upload_queue import encode_image
from rixdu.utils.jwt_utils import create_token


class ListingRoutesTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

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

        for target in (
            "rixdu.tasks.profile_tasks.attach_listing_to_profile.apply_async",
            "rixdu.tasks.notification_tasks.send_email.delay",
        ):
            patcher = patch(target)
            patcher.start()
            self.addCleanup(patcher.stop)
        upload_patcher = patch("rixdu.tasks.upload_tasks.process_listing_images.apply_async")
        self.upload_async = upload_patcher.start()
        self.addCleanup(upload_patcher.stop)

        self.store = Store(name="Motors", slug="motors", kind="vehicles")
        db.session.add(self.store)
        db.session.commit()
        self.root = category_tree.create_category({"store_id": self.store.id, "name": "Cars"})
        self.leaf = category_tree.create_category(
            {
                "store_id": self.store.id,
                "name": "Sedans",
                "parent_id": self.root.id,
                "is_leaf": True,
                "fields": [
                    {"name": "title", "type": "text", "required": True},
                    {"name": "price", "type": "number", "required": True},
                    {"name": "photos", "type": "file", "required": True, "multiple": True},
                ],
            }
        )

        self.seller = User(name="Seller", email="seller@rixdu.test")
        db.session.add(self.seller)
        db.session.commit()
        now = datetime.utcnow()
        db.session.add(
            Subscription(
                user_id=self.seller.id,
                plan_type="premium",
                status="active",
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=29),
                payment_status="paid",
                max_listings=UNLIMITED_LISTINGS,
            )
        )
        db.session.commit()
        self.headers = {"Authorization": f"Bearer {create_token(self.seller.id)}"}

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _payload(self, **values):
        body = {"title": "Honda Civic", "price": "15000", "photos": ["https://cdn.rixdu.test/a.jpg"]}
        body.update(values)
        return {"storeId": self.store.id, "categoryId": self.leaf.id, "values": body}

    def _create(self, payload=None):
        res = self.client.post("/api/listings", json=payload or self._payload(), headers=self.headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        return res.get_json()["data"]

    def test_create_requires_auth(self):
        res = self.client.post("/api/listings", json=self._payload())
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "UNAUTHORIZED")

    def test_create_persists_values_and_path(self):
        data = self._create()
        self.assertEqual(data["values"]["price"], 15000)
        self.assertEqual(data["category_path"], [self.root.id, self.leaf.id])
        self.assertTrue(data["slug"].startswith("honda-civic-"))
        self.assertEqual(data["title"], "Honda Civic")

    def test_non_leaf_category_is_rejected_without_saving(self):
        payload = self._payload()
        payload["categoryId"] = self.root.id
        res = self.client.post("/api/listings", json=payload, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        body = res.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "VALIDATION_ERROR")
        self.assertEqual(Listing.query.count(), 0)

    def test_invalid_values_report_all_errors(self):
        res = self.client.post("/api/listings", json=self._payload(price="lots", title=""), headers=self.headers)
        self.assertEqual(res.status_code, 400)
        fields = {e["field"] for e in res.get_json()["errors"]}
        self.assertEqual(fields, {"price", "title"})
        self.assertEqual(Listing.query.count(), 0)

    def test_slug_survives_title_change(self):
        created = self._create()
        res = self.client.put(
            f"/api/listings/{created['id']}",
            json={"values": {"title": "Toyota Camry"}},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        data = res.get_json()["data"]
        self.assertEqual(data["slug"], created["slug"])
        self.assertEqual(data["values"]["title"], "Toyota Camry")
        self.assertEqual(data["values"]["price"], 15000)

    def test_other_users_cannot_edit(self):
        created = self._create()
        stranger = User(name="Stranger", email="stranger@rixdu.test")
        db.session.add(stranger)
        db.session.commit()
        res = self.client.put(
            f"/api/listings/{created['id']}",
            json={"values": {"title": "Mine now"}},
            headers={"Authorization": f"Bearer {create_token(stranger.id)}"},
        )
        self.assertEqual(res.status_code, 403)

    def test_ancestor_category_filter_finds_listing(self):
        created = self._create()
        res = self.client.get(f"/api/listings?categoryId={self.root.id}")
        self.assertEqual(res.status_code, 200)
        ids = [item["id"] for item in res.get_json()["data"]]
        self.assertIn(created["id"], ids)

        other = category_tree.create_category({"store_id": self.store.id, "name": "Bikes"})
        res = self.client.get(f"/api/listings?categoryId={other.id}")
        self.assertEqual(res.get_json()["data"], [])

    def test_value_range_filter(self):
        created = self._create()
        hit = self.client.get(f"/api/listings?categoryId={self.leaf.id}&values.price.min=10000")
        miss = self.client.get(f"/api/listings?categoryId={self.leaf.id}&values.price.max=10000")
        self.assertEqual([i["id"] for i in hit.get_json()["data"]], [created["id"]])
        self.assertEqual(miss.get_json()["data"], [])

    def test_queued_images_waive_required_file_field(self):
        payload = self._payload()
        payload["values"].pop("photos")
        payload["images"] = [encode_image(b"jpeg-bytes", "front.jpg", "image/jpeg")]
        payload["fileFieldMapping"] = {"0": "photos"}
        payload["useQueue"] = True
        res = self.client.post("/api/listings", json=payload, headers=self.headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        body = res.get_json()
        self.assertEqual(body["upload_job_id"], self.upload_async.call_args.kwargs["task_id"])
        self.assertEqual(body["data"]["upload_status"], "pending")
        kwargs = self.upload_async.call_args.kwargs
        self.assertEqual(kwargs["queue"], "imageUpload")
        self.assertEqual(kwargs["kwargs"]["file_field_mapping"], {"0": "photos"})

    def test_missing_file_without_queue_fails(self):
        payload = self._payload()
        payload["values"].pop("photos")
        res = self.client.post("/api/listings", json=payload, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual([e["field"] for e in res.get_json()["errors"]], ["photos"])

    def test_user_without_subscription_is_refused(self):
        newcomer = User(name="New", email="new@rixdu.test")
        db.session.add(newcomer)
        db.session.commit()
        res = self.client.post(
            "/api/listings",
            json=self._payload(),
            headers={"Authorization": f"Bearer {create_token(newcomer.id)}"},
        )
        self.assertEqual(res.status_code, 403)
        body = res.get_json()
        self.assertEqual(body["error"], "SUBSCRIPTION_REQUIRED")
        self.assertEqual(body["reason"], "No active subscription")

    def _use_local_storage(self) -> str:
        upload_dir = tempfile.mkdtemp(prefix="rixdu-uploads-")
        self.addCleanup(shutil.rmtree, upload_dir, True)
        previous = {key: self.app.config.get(key) for key in ("STORAGE_PROVIDER", "UPLOAD_DIR", "INTEGRATIONS_MODE")}
        self.app.config.update(STORAGE_PROVIDER="local", UPLOAD_DIR=upload_dir, INTEGRATIONS_MODE="sandbox")
        self.addCleanup(self.app.config.update, previous)
        return upload_dir

    @staticmethod
    def _stored_files(upload_dir: str) -> list[str]:
        return [os.path.join(root, name) for root, _dirs, names in os.walk(upload_dir) for name in names]

    def _multipart(self, **values):
        body = {"title": "Honda Civic", "price": "15000"}
        body.update(values)
        return {
            "storeId": str(self.store.id),
            "categoryId": "sedans",
            "values": json.dumps(body),
            "fileFieldMapping": json.dumps({"0": "photos"}),
            "photos": (io.BytesIO(b"png-bytes"), "front.png", "image/png"),
        }

    def test_multipart_inline_upload_with_category_slug(self):
        upload_dir = self._use_local_storage()
        res = self.client.post(
            "/api/listings",
            data=self._multipart(),
            content_type="multipart/form-data",
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        data = res.get_json()["data"]
        self.assertEqual(data["category_id"], self.leaf.id)
        photos = data["values"]["photos"]
        self.assertEqual(len(photos), 1)
        self.assertEqual(photos[0]["original_name"], "front.png")
        self.assertTrue(photos[0]["public_id"].startswith(f"listings/{self.leaf.id}/"))
        self.assertTrue(os.path.isfile(os.path.join(upload_dir, photos[0]["public_id"])))
        self.upload_async.assert_not_called()

    def test_rejected_multipart_leaves_no_stored_files(self):
        upload_dir = self._use_local_storage()
        res = self.client.post(
            "/api/listings",
            data=self._multipart(price="abc"),
            content_type="multipart/form-data",
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual([e["field"] for e in res.get_json()["errors"]], ["price"])
        self.assertEqual(Listing.query.count(), 0)
        self.assertEqual(self._stored_files(upload_dir), [])

    def test_refused_inline_update_leaves_no_stored_files(self):
        created = self._create()
        upload_dir = self._use_local_storage()
        stranger = User(name="Stranger", email="stranger@rixdu.test")
        db.session.add(stranger)
        db.session.commit()
        res = self.client.put(
            f"/api/listings/{created['id']}",
            data=self._multipart(),
            content_type="multipart/form-data",
            headers={"Authorization": f"Bearer {create_token(stranger.id)}"},
        )
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self._stored_files(upload_dir), [])

    def test_failed_write_discards_inline_uploads(self):
        upload_dir = self._use_local_storage()
        with patch("rixdu.services.listing_service.create_listing", side_effect=RuntimeError("db down")):
            res = self.client.post(
                "/api/listings",
                data=self._multipart(),
                content_type="multipart/form-data",
                headers=self.headers,
            )
        self.assertEqual(res.status_code, 500)
        self.assertEqual(self._stored_files(upload_dir), [])

    def test_delete_removes_listing(self):
        created = self._create()
        profile_service.attach_listing(self.seller.id, created["id"])
        applicant = User(name="Applicant", email="applicant@rixdu.test")
        db.session.add(applicant)
        db.session.commit()
        db.session.add(Application(applicant_id=applicant.id, listing_id=created["id"]))
        db.session.commit()

        res = self.client.delete(f"/api/listings/{created['id']}", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        db.session.expire_all()
        self.assertIsNone(db.session.get(Listing, created["id"]))
        profile = Profile.query.filter_by(user_id=self.seller.id).first()
        self.assertNotIn(created["id"], profile.to_dict()["ads"])
        self.assertNotIn(created["id"], profile.to_dict()["job_posts"])
        self.assertEqual(Application.query.filter_by(listing_id=created["id"]).count(), 0)


if __name__ == "__main__":
    unittest.main()
