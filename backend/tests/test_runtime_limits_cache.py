from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from uniket import create_app
from uniket.extensions import db
from uniket.models import User
from uniket.utils import cache_layer, rate_limit
from uniket.utils.jwt_utils import create_token


class RateLimitAndCacheTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri

    def setUp(self):
        rate_limit._reset_limits_for_tests()
        cache_layer._reset_cache_state_for_tests()
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()
            admin = User(name="Admin", email="admin@uniket.test", role="admin")
            admin.set_password("password123")
            db.session.add(admin)
            db.session.commit()
            self.admin_id = admin.id

    def tearDown(self):
        rate_limit._reset_limits_for_tests()

    def test_memory_window_counts_hits(self):
        with patch.dict(os.environ, {"RATE_LIMIT_REDIS_URL": "", "REDIS_URL": ""}):
            self.assertEqual(rate_limit.check_limit("k", limit=2, window_seconds=60), (True, 0))
            self.assertEqual(rate_limit.check_limit("k", limit=2, window_seconds=60), (True, 0))
            ok, retry_after = rate_limit.check_limit("k", limit=2, window_seconds=60)
        self.assertFalse(ok)
        self.assertGreaterEqual(retry_after, 1)
        self.assertEqual(rate_limit.limiter_stats()["memory_hits"], 1)

    def test_limits_are_skipped_in_tests_by_default(self):
        for _ in range(12):
            res = self.client.post("/api/auth/login", json={"email": "nobody@uniket.test", "password": "x"})
            self.assertEqual(res.status_code, 401)

    def test_auth_tier_limits_per_ip(self):
        env = {"RATE_LIMIT_IN_TESTS": "1", "RATE_LIMIT_REDIS_URL": "", "REDIS_URL": ""}
        with patch.dict(os.environ, env):
            for _ in range(10):
                res = self.client.post("/api/auth/login", json={"email": "nobody@uniket.test", "password": "x"})
                self.assertEqual(res.status_code, 401)
            res = self.client.post("/api/auth/login", json={"email": "nobody@uniket.test", "password": "x"})
        self.assertEqual(res.status_code, 429)
        self.assertEqual(res.get_json()["error"], "RATE_LIMITED")
        self.assertIn("Retry-After", res.headers)

    def test_cache_round_trip_and_prefix_delete(self):
        with patch.dict(os.environ, {"CACHE_REDIS_URL": ""}):
            key_one = cache_layer.build_cache_key("Scope Name", {"b": 2, "a": 1})
            self.assertEqual(key_one, "v1:scope_name:a=1&b=2")
            key_two = cache_layer.build_cache_key("scope_name", {"a": 10})
            cache_layer.set_json(key_one, {"x": 1})
            cache_layer.set_json(key_two, [1, 2])
            self.assertEqual(cache_layer.get_json(key_one), {"x": 1})

            cache_layer.delete_prefix("v1:scope_name:a=1&")
            self.assertIsNone(cache_layer.get_json(key_one))
            self.assertEqual(cache_layer.get_json(key_two), [1, 2])

    def test_memory_cache_sweeps_expired_entries_on_write(self):
        with patch.dict(os.environ, {"CACHE_REDIS_URL": ""}):
            cache_layer.set_json("v1:live:", {"x": 1}, ttl_seconds=300)
            with cache_layer._LOCK:
                cache_layer._MEMORY["v1:stale:a=1"] = (0.0, "{}")
                cache_layer._MEMORY["v1:stale:a=2"] = (0.0, "[]")

            cache_layer.set_json("v1:fresh:", [1], ttl_seconds=300)

            self.assertEqual(sorted(cache_layer._MEMORY), ["v1:fresh:", "v1:live:"])
            self.assertEqual(cache_layer.cache_stats()["memory_keys"], 2)

    def test_cache_can_be_disabled(self):
        with patch.dict(os.environ, {"ENABLE_CACHE": "0", "CACHE_REDIS_URL": ""}):
            cache_layer.set_json("v1:x:", {"x": 1})
            self.assertIsNone(cache_layer.get_json("v1:x:"))

    def test_admin_runtime_snapshot(self):
        res = self.client.get("/api/admin/runtime", headers={"Authorization": f"Bearer {create_token(self.admin_id)}"})
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertIn("hits", body["cache"])
        self.assertIn("memory_hits", body["rate_limit"])


if __name__ == "__main__":
    unittest.main()
