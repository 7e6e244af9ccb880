from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from rixdu import create_app
from rixdu.extensions import db
from rixdu.integrations.payments.mock_provider import set_mock_intent_status
from rixdu.models import Listing, PendingPayment, PricePlan, Store, User
from rixdu.services import category_tree, payment_drafts
from rixdu.utils.jwt_utils import create_token


class PaymentFlowTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True, PAYMENTS_PROVIDER="mock", INTEGRATIONS_MODE="sandbox")
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
        patcher = patch("rixdu.tasks.profile_tasks.attach_listing_to_profile.apply_async")
        patcher.start()
        self.addCleanup(patcher.stop)

        self.store = Store(name="Classifieds", slug="classifieds", kind="classifieds")
        self.user = User(name="Poster", email="poster@rixdu.test")
        db.session.add_all([self.store, self.user])
        db.session.commit()
        self.leaf = category_tree.create_category(
            {
                "store_id": self.store.id,
                "name": "Furniture",
                "is_leaf": True,
                "fields": [
                    {"name": "title", "type": "text", "required": True},
                    {"name": "price", "type": "number"},
                ],
            }
        )
        self.plan = PricePlan(store_id=self.store.id, plan_type="featured", duration_days=14, price=49.0, currency="AED")
        db.session.add(self.plan)
        db.session.commit()
        self.headers = {"Authorization": f"Bearer {create_token(self.user.id)}"}

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _draft(self, **values):
        body = {"title": "Oak dining table", "price": 900}
        body.update(values)
        return {"planId": self.plan.id, "storeId": self.store.id, "categoryId": self.leaf.id, "values": body}

    def _open_intent(self):
        res = self.client.post("/api/payments/create-intent", json=self._draft(), headers=self.headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        return res.get_json()["data"]

    def test_confirm_creates_paid_listing_without_subscription(self):
        opened = self._open_intent()
        self.assertEqual(opened["amount"], 49.0)
        res = self.client.post("/api/payments/confirm", json={"paymentIntentId": opened["payment_intent_id"]}, headers=self.headers)
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        data = res.get_json()["data"]
        self.assertEqual(data["payment_status"], "paid")
        self.assertEqual(data["plan_type"], "featured")
        self.assertTrue(data["is_featured"])
        self.assertEqual(PendingPayment.query.count(), 0)

        again = self.client.post("/api/payments/confirm", json={"paymentIntentId": opened["payment_intent_id"]}, headers=self.headers)
        self.assertEqual(again.get_json()["data"]["id"], data["id"])
        self.assertEqual(Listing.query.count(), 1)

    def test_invalid_draft_is_rejected_before_charging(self):
        res = self.client.post("/api/payments/create-intent", json=self._draft(title=""), headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(PendingPayment.query.count(), 0)

    def test_unfinished_payment_is_refused(self):
        opened = self._open_intent()
        set_mock_intent_status(opened["payment_intent_id"], "requires_payment_method")
        res = self.client.post("/api/payments/confirm", json={"paymentIntentId": opened["payment_intent_id"]}, headers=self.headers)
        self.assertEqual(res.status_code, 402)
        self.assertEqual(res.get_json()["error"], "PAYMENT_NOT_COMPLETED")
        self.assertEqual(Listing.query.count(), 0)

    def test_expired_session_is_gone(self):
        opened = self._open_intent()
        pending = PendingPayment.query.filter_by(payment_intent_id=opened["payment_intent_id"]).first()
        pending.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()
        res = self.client.post("/api/payments/confirm", json={"paymentIntentId": opened["payment_intent_id"]}, headers=self.headers)
        self.assertEqual(res.status_code, 410)
        self.assertEqual(res.get_json()["error"], "PAYMENT_SESSION_EXPIRED")

    def test_other_user_cannot_confirm(self):
        opened = self._open_intent()
        stranger = User(name="Stranger", email="stranger@rixdu.test")
        db.session.add(stranger)
        db.session.commit()
        res = self.client.post(
            "/api/payments/confirm",
            json={"paymentIntentId": opened["payment_intent_id"]},
            headers={"Authorization": f"Bearer {create_token(stranger.id)}"},
        )
        self.assertEqual(res.status_code, 403)

    def test_purge_expired_drafts(self):
        opened = self._open_intent()
        pending = PendingPayment.query.filter_by(payment_intent_id=opened["payment_intent_id"]).first()
        pending.expires_at = datetime.utcnow() - timedelta(minutes=5)
        db.session.commit()
        self.assertEqual(payment_drafts.purge_expired(), 1)


if __name__ == "__main__":
    unittest.main()
