from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from rixdu import create_app
from rixdu.extensions import db
from rixdu.models import Notification, PushToken, Store, User
from rixdu.utils.jwt_utils import create_token


class NotificationRoutesTestCase(unittest.TestCase):
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
        self.store = Store(name="Jobs", slug="jobs", kind="jobs")
        self.user = User(name="Reader", email="reader@rixdu.test")
        self.other = User(name="Other", email="other@rixdu.test")
        db.session.add_all([self.store, self.user, self.other])
        db.session.commit()
        self.headers = {"Authorization": f"Bearer {create_token(self.user.id)}"}
        for i in range(3):
            db.session.add(Notification(user_id=self.user.id, title=f"n{i}", message="m", channels={}))
        db.session.add(Notification(user_id=self.other.id, title="theirs", message="m", channels={}))
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_list_is_scoped_and_counts_unread(self):
        res = self.client.get("/api/notifications?limit=2", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(len(body["data"]), 2)
        self.assertEqual(body["unread_count"], 3)
        self.assertEqual(body["pagination"]["total"], 3)
        self.assertEqual(body["pagination"]["pages"], 2)

    def test_toggle_and_mark_all(self):
        first = Notification.query.filter_by(user_id=self.user.id).first()
        res = self.client.patch(f"/api/notifications/{first.id}/toggle", headers=self.headers)
        self.assertTrue(res.get_json()["data"]["is_read"])
        res = self.client.patch("/api/notifications/mark-all", headers=self.headers)
        self.assertEqual(res.get_json()["data"]["updated"], 2)

    def test_cannot_touch_other_users_notifications(self):
        theirs = Notification.query.filter_by(user_id=self.other.id).first()
        res = self.client.delete(f"/api/notifications/{theirs.id}", headers=self.headers)
        self.assertEqual(res.status_code, 404)

    def test_bulk_delete_requires_a_selector(self):
        res = self.client.delete("/api/notifications", json={}, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.delete("/api/notifications", json={"all": True}, headers=self.headers)
        self.assertEqual(res.get_json()["data"]["deleted"], 3)
        self.assertEqual(Notification.query.filter_by(user_id=self.other.id).count(), 1)

    def test_preferences_round_trip(self):
        res = self.client.get(f"/api/notifications/preferences?storeId={self.store.slug}", headers=self.headers)
        self.assertEqual(res.get_json()["data"]["channels"], {"email": False, "inApp": True, "push": True})
        res = self.client.put(
            "/api/notifications/preferences",
            json={"storeId": self.store.id, "channels": {"email": True, "inApp": False}},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["channels"], {"email": True, "inApp": False, "push": True})

    def test_push_token_registration_is_idempotent(self):
        first = self.client.post("/api/notifications/push-tokens/register", json={"token": "device-1"}, headers=self.headers)
        again = self.client.post("/api/notifications/push-tokens/register", json={"token": "device-1"}, headers=self.headers)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(again.status_code, 200)
        self.assertEqual(PushToken.query.filter_by(user_id=self.user.id).count(), 1)
        res = self.client.post("/api/notifications/push-tokens/unregister", json={"token": "device-1"}, headers=self.headers)
        self.assertEqual(res.get_json()["data"]["removed"], 1)

    def test_send_test_notification_uses_store_preferences(self):
        self.client.put(
            "/api/notifications/preferences",
            json={"storeId": self.store.id, "inApp": False, "email": True},
            headers=self.headers,
        )
        with patch("rixdu.tasks.notification_tasks.send_email.delay") as send_email:
            res = self.client.post("/api/notifications/test", json={"storeId": self.store.id}, headers=self.headers)
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertIsNone(data["notification"])
        self.assertTrue(data["email_queued"])
        send_email.assert_called_once()

    def test_requires_auth(self):
        res = self.client.get("/api/notifications")
        self.assertEqual(res.status_code, 401)


if __name__ == "__main__":
    unittest.main()
