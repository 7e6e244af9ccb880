from __future__ import annotations

import os
import unittest
import uuid

from rixdu import create_app
from rixdu.extensions import db


class RequestIdHeadersTestCase(unittest.TestCase):
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
        with cls.app.app_context():
            db.create_all()

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

    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/stores")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-Id") or "").strip()
        self.assertTrue(rid)
        uuid.UUID(rid)

    def test_echoes_request_id_when_provided(self):
        res = self.client.get("/api/health", headers={"X-Request-Id": "rid-test-123"})
        self.assertEqual(res.headers.get("X-Request-Id"), "rid-test-123")

    def test_unauthenticated_listing_post_carries_trace_id(self):
        res = self.client.post("/api/listings", json={"values": {"title": "Missing auth"}}, headers={"X-Request-Id": "rid-401"})
        self.assertEqual(res.status_code, 401)
        body = res.get_json(force=True)
        self.assertEqual(body.get("error"), "UNAUTHORIZED")
        self.assertEqual(body.get("trace_id"), "rid-401")

    def test_unknown_store_filter_is_not_found(self):
        res = self.client.get("/api/listings?storeId=nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json(force=True).get("error"), "NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
