from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta

from rixdu import create_app
from rixdu.extensions import db
from rixdu.integrations.payments.mock_provider import set_mock_intent_status
from rixdu.models import Subscription, User
from rixdu.services import subscription_service
from rixdu.services.errors import Conflict
from rixdu.utils.jwt_utils import create_token


class SubscriptionGateTestCase(unittest.TestCase):
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
        self.user = User(name="Buyer", email="buyer@rixdu.test")
        db.session.add(self.user)
        db.session.commit()
        self.headers = {"Authorization": f"Bearer {create_token(self.user.id)}"}

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _subscription(self, **overrides):
        now = datetime.utcnow()
        fields = {
            "user_id": self.user.id,
            "plan_type": "trial",
            "status": "active",
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=6),
            "payment_status": "free",
            "listings_count": 0,
            "max_listings": 1,
        }
        fields.update(overrides)
        sub = Subscription(**fields)
        db.session.add(sub)
        db.session.commit()
        return sub

    def test_no_subscription(self):
        result = subscription_service.can_create_listing(self.user.id)
        self.assertFalse(result.can_create)
        self.assertEqual(result.reason, "No active subscription")

    def test_trial_within_and_over_limit(self):
        sub = self._subscription()
        result = subscription_service.can_create_listing(self.user.id)
        self.assertTrue(result.can_create)
        self.assertEqual(result.reason, "Trial subscription - within limit")

        subscription_service.increment_listing_count(sub.id)
        db.session.expire_all()
        result = subscription_service.can_create_listing(self.user.id)
        self.assertFalse(result.can_create)
        self.assertEqual(result.reason, "Trial listing limit reached")

    def test_expired_subscription_does_not_count(self):
        self._subscription(end_date=datetime.utcnow() - timedelta(minutes=1))
        self.assertFalse(subscription_service.can_create_listing(self.user.id).can_create)

    def test_premium_is_unlimited(self):
        self._subscription(plan_type="premium", listings_count=250, max_listings=-1, payment_status="paid")
        result = subscription_service.can_create_listing(self.user.id)
        self.assertTrue(result.can_create)
        self.assertEqual(result.reason, "Premium subscription - unlimited listings")

    def test_trial_can_only_start_once(self):
        sub = subscription_service.start_trial(self.user.id)
        self.assertEqual(sub.max_listings, 1)
        with self.assertRaises(Conflict):
            subscription_service.start_trial(self.user.id)

    def test_decrement_never_goes_negative(self):
        sub = self._subscription()
        subscription_service.decrement_listing_count(sub.id)
        db.session.expire_all()
        self.assertEqual(db.session.get(Subscription, sub.id).listings_count, 0)

    def test_expire_due_flips_lapsed_rows(self):
        lapsed = self._subscription(end_date=datetime.utcnow() - timedelta(hours=1))
        self.assertEqual(subscription_service.expire_due(), 1)
        db.session.expire_all()
        self.assertEqual(db.session.get(Subscription, lapsed.id).status, "expired")

    def test_trial_routes(self):
        res = self.client.post("/api/subscriptions/trial/start", headers=self.headers)
        self.assertEqual(res.status_code, 201)
        res = self.client.post("/api/subscriptions/trial/start", headers=self.headers)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "TRIAL_ALREADY_USED")
        res = self.client.get("/api/subscriptions/check-eligibility", headers=self.headers)
        self.assertTrue(res.get_json()["data"]["can_create"])

    def test_premium_checkout_and_confirm(self):
        trial = self._subscription()
        res = self.client.post("/api/subscriptions/premium/create", headers=self.headers)
        self.assertEqual(res.status_code, 201)
        intent_id = res.get_json()["data"]["payment_intent_id"]

        set_mock_intent_status(intent_id, "requires_payment_method")
        res = self.client.post("/api/subscriptions/premium/confirm", json={"paymentIntentId": intent_id}, headers=self.headers)
        self.assertEqual(res.status_code, 402)

        set_mock_intent_status(intent_id, "succeeded")
        res = self.client.post("/api/subscriptions/premium/confirm", json={"paymentIntentId": intent_id}, headers=self.headers)
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertEqual(data["status"], "active")
        self.assertEqual(data["max_listings"], -1)
        db.session.expire_all()
        self.assertEqual(db.session.get(Subscription, trial.id).status, "expired")

        again = self.client.post("/api/subscriptions/premium/confirm", json={"paymentIntentId": intent_id}, headers=self.headers)
        self.assertEqual(again.status_code, 200)

    def test_cancel_without_subscription_is_not_found(self):
        res = self.client.patch("/api/subscriptions/cancel", headers=self.headers)
        self.assertEqual(res.status_code, 404)


if __name__ == "__main__":
    unittest.main()
