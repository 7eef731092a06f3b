from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("uniket")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_main_app(self):
        module = importlib.import_module("main")
        app = getattr(module, "app", None)
        self.assertIsNotNone(app)

    def test_import_segments(self):
        for name in (
            "uniket.segments.segment_auth",
            "uniket.segments.segment_orders_api",
            "uniket.segments.segment_tickets",
            "uniket.segments.segment_notifications",
            "uniket.segments.segment_wallets",
            "uniket.segments.segment_bids",
            "uniket.segments.segment_pickup_points",
            "uniket.segments.segment_products",
            "uniket.segments.segment_admin",
        ):
            self.assertIsNotNone(importlib.import_module(name))


if __name__ == "__main__":
    unittest.main()
