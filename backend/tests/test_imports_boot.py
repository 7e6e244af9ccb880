from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("rixdu")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_celery_factory(self):
        module = importlib.import_module("rixdu.celery_app")
        self.assertTrue(callable(getattr(module, "create_celery_app", None)))
        for name in module.TASK_MODULES:
            self.assertIsNotNone(importlib.import_module(name))

    def test_import_listing_segment(self):
        module = importlib.import_module("rixdu.segments.segment_listings")
        self.assertIsNotNone(module)


if __name__ == "__main__":
    unittest.main()
