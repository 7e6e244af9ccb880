from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from flask import Flask

from rixdu.utils.observability import _before_send_scrub, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            with patch("sentry_sdk.init") as sentry_init:
                init_sentry(app)
        sentry_init.assert_not_called()

    def test_scrubber_redacts_credentials_and_webhook_signatures(self):
        event = {"request": {"headers": {"Authorization": "Bearer x", "Stripe-Signature": "t=1", "Accept": "json"}}}
        headers = _before_send_scrub(event, None)["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["Stripe-Signature"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "json")

    def test_scrubber_tolerates_events_without_request(self):
        self.assertEqual(_before_send_scrub({"message": "boom"}, None), {"message": "boom"})


if __name__ == "__main__":
    unittest.main()
