from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from rixdu import create_app
from rixdu.extensions import db
from rixdu.integrations.push.base import MAX_TOKENS_PER_SEND, PushMessage
from rixdu.integrations.push.mock_provider import MockPushProvider
from rixdu.models import Listing, Notification, PushToken, Store, User
from rixdu.services import category_tree, notification_dispatcher
from rixdu.services.notification_dispatcher import NotificationPayload
from rixdu.services.notification_preferences import DEFAULT_CHANNELS, Channels, resolve_channels, upsert_preference
from rixdu.utils.realtime import RealtimeEmitter


class RecordingEmitter(RealtimeEmitter):
    def __init__(self):
        self.events = []

    def emit(self, room, event, payload):
        self.events.append((room, event, payload))
        return True


class NotificationDispatcherTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True, PUSH_PROVIDER="mock", INTEGRATIONS_MODE="sandbox")

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
        self.store = Store(name="Motors", slug="motors", kind="vehicles")
        db.session.add(self.store)
        self.owner = User(name="Owner", email="owner@rixdu.test")
        self.alice = User(name="Alice", email="alice@rixdu.test")
        self.bob = User(name="Bob", email="bob@rixdu.test")
        db.session.add_all([self.owner, self.alice, self.bob])
        db.session.commit()
        leaf = category_tree.create_category(
            {"store_id": self.store.id, "name": "Cars", "is_leaf": True, "fields": [{"name": "title", "type": "text"}]}
        )
        self.listing = Listing(
            store_id=self.store.id,
            category_id=leaf.id,
            user_id=self.owner.id,
            slug="honda-civic-ab12",
            values={"title": "Honda Civic", "price": 15000},
        )
        db.session.add(self.listing)
        db.session.commit()

        patcher = patch("rixdu.tasks.notification_tasks.send_email.delay")
        self.send_email = patcher.start()
        self.addCleanup(patcher.stop)
        self.emitter = RecordingEmitter()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _token(self, user, token):
        db.session.add(PushToken(user_id=user.id, token=token))
        db.session.commit()

    def test_preferences_default_and_merge(self):
        self.assertEqual(resolve_channels(self.alice.id, self.store.id), DEFAULT_CHANNELS)
        upsert_preference(self.alice.id, self.store.id, email=True)
        self.assertEqual(resolve_channels(self.alice.id, self.store.id), Channels(email=True, in_app=True, push=True))
        upsert_preference(self.alice.id, self.store.id, in_app=False)
        self.assertEqual(resolve_channels(self.alice.id, self.store.id), Channels(email=True, in_app=False, push=True))

    def test_channels_from_dict_accepts_both_spellings(self):
        self.assertFalse(Channels.from_dict({"inApp": False}).in_app)
        self.assertFalse(Channels.from_dict({"in_app": "false"}).in_app)
        self.assertEqual(Channels.from_dict({}), DEFAULT_CHANNELS)

    def test_dispatch_honors_channel_snapshot(self):
        self._token(self.alice, "device-a")
        outcome = notification_dispatcher.dispatch(
            NotificationPayload(
                user_id=self.alice.id,
                title="Hello",
                message="World",
                channels=Channels(email=True, in_app=False, push=True),
            ),
            emitter=self.emitter,
        )
        self.assertIsNone(outcome.notification)
        self.assertEqual(Notification.query.count(), 0)
        self.assertTrue(outcome.email_queued)
        self.assertEqual(self.send_email.call_args.kwargs["to"], "alice@rixdu.test")
        self.assertEqual(outcome.push_sent, 1)
        self.assertEqual(self.emitter.events, [])

    def test_in_app_dispatch_persists_and_emits(self):
        outcome = notification_dispatcher.dispatch(
            NotificationPayload(user_id=self.bob.id, title="Hi", message="There"),
            emitter=self.emitter,
        )
        self.assertIsNotNone(outcome.notification)
        self.assertFalse(outcome.email_queued)
        self.send_email.assert_not_called()
        room, event, payload = self.emitter.events[0]
        self.assertEqual(room, f"user:{self.bob.id}")
        self.assertEqual(event, "notification:new")
        self.assertEqual(payload["channels"], {"email": False, "inApp": True, "push": True})

    def test_email_failure_does_not_block_other_channels(self):
        self.send_email.side_effect = RuntimeError("broker down")
        self._token(self.bob, "device-b")
        outcome = notification_dispatcher.dispatch(
            NotificationPayload(user_id=self.bob.id, title="Hi", message="There", channels=Channels(True, True, True)),
            emitter=self.emitter,
        )
        self.assertFalse(outcome.email_queued)
        self.assertIsNotNone(outcome.notification)
        self.assertEqual(outcome.push_sent, 1)

    def test_invalid_tokens_are_removed_and_valid_kept(self):
        self._token(self.alice, "device-a")
        self._token(self.alice, "invalid-old-phone")
        self._token(self.bob, "invalid-tablet")
        delivered, removed = notification_dispatcher.send_push_to_users(
            [self.alice.id, self.bob.id], PushMessage(title="t", body="b")
        )
        self.assertEqual(delivered, 1)
        self.assertEqual(sorted(removed), ["invalid-old-phone", "invalid-tablet"])
        remaining = [row.token for row in PushToken.query.order_by(PushToken.id).all()]
        self.assertEqual(remaining, ["device-a"])

    def test_explicit_email_address_overrides_account_email(self):
        outcome = notification_dispatcher.dispatch(
            NotificationPayload(
                user_id=self.alice.id,
                title="Hello",
                message="World",
                channels=Channels(email=True, in_app=False, push=False),
                metadata={"to_email": "ops@rixdu.test"},
            ),
            emitter=self.emitter,
        )
        self.assertTrue(outcome.email_queued)
        self.assertEqual(self.send_email.call_args.kwargs["to"], "ops@rixdu.test")

    def test_push_is_chunked_and_invalid_tokens_map_to_owners(self):
        rows = [PushToken(user_id=self.alice.id, token="invalid-first-chunk")]
        rows += [PushToken(user_id=self.alice.id, token=f"alice-{i:04d}") for i in range(MAX_TOKENS_PER_SEND)]
        rows += [PushToken(user_id=self.bob.id, token=f"bob-{i:04d}") for i in range(MAX_TOKENS_PER_SEND)]
        rows += [
            PushToken(user_id=self.alice.id, token="invalid-last-a"),
            PushToken(user_id=self.bob.id, token="invalid-last-b1"),
            PushToken(user_id=self.bob.id, token="invalid-last-b2"),
        ]
        db.session.add_all(rows)
        db.session.commit()

        original = MockPushProvider.send_multicast
        with patch.object(MockPushProvider, "send_multicast", autospec=True, side_effect=original) as sender:
            delivered, removed = notification_dispatcher.send_push_to_users(
                [self.alice.id, self.bob.id], PushMessage(title="t", body="b")
            )

        sizes = sorted(len(call.args[1]) for call in sender.call_args_list)
        self.assertEqual(sizes, [4, MAX_TOKENS_PER_SEND, MAX_TOKENS_PER_SEND])
        self.assertEqual(delivered, 2 * MAX_TOKENS_PER_SEND)
        self.assertEqual(
            sorted(removed),
            ["invalid-first-chunk", "invalid-last-a", "invalid-last-b1", "invalid-last-b2"],
        )
        for user in (self.alice, self.bob):
            tokens = [row.token for row in PushToken.query.filter_by(user_id=user.id).all()]
            self.assertEqual(len(tokens), MAX_TOKENS_PER_SEND)
            self.assertFalse(any(t.startswith("invalid") for t in tokens))

    def test_fan_out_skips_owner_and_uses_each_snapshot(self):
        upsert_preference(self.owner.id, self.store.id, email=True)
        upsert_preference(self.alice.id, self.store.id, email=True, in_app=True, push=False)
        upsert_preference(self.bob.id, self.store.id, email=False, in_app=False, push=True)
        self._token(self.bob, "device-b")

        summary = notification_dispatcher.notify_store_subscribers_on_listing(
            self.store.id, self.listing, emitter=self.emitter
        )
        self.assertEqual(summary.recipients, 2)
        self.assertEqual(summary.persisted, 1)
        self.assertEqual(summary.emails_queued, 1)
        self.assertEqual(summary.push_sent, 1)
        self.assertEqual(summary.failures, 0)

        rows = Notification.query.all()
        self.assertEqual([r.user_id for r in rows], [self.alice.id])
        self.assertEqual(rows[0].type, "new_listing")
        self.assertEqual(rows[0].listing_id, self.listing.id)
        self.assertIn("Honda Civic", rows[0].title)
        self.assertEqual(self.send_email.call_args.kwargs["to"], "alice@rixdu.test")

    def test_fan_out_extra_users_use_defaults(self):
        summary = notification_dispatcher.notify_store_subscribers_on_listing(
            self.store.id, self.listing, extra_user_ids=[self.bob.id, self.owner.id], emitter=self.emitter
        )
        self.assertEqual(summary.recipients, 1)
        self.assertEqual(summary.persisted, 1)
        self.assertEqual(summary.emails_queued, 0)

    def test_fan_out_without_followers_is_a_noop(self):
        summary = notification_dispatcher.notify_store_subscribers_on_listing(self.store.id, self.listing, emitter=self.emitter)
        self.assertEqual(summary.recipients, 0)
        self.assertEqual(Notification.query.count(), 0)


if __name__ == "__main__":
    unittest.main()
