from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta

from uniket import create_app
from uniket.extensions import db
from uniket.models import AdminAlert, Bid, LoginAttempt, Notification, Order, Product, Review, User
from uniket.services.fraud import (
    Anomaly,
    FraudThresholds,
    UserFeatures,
    analyze_user_behavior,
    calculate_risk_score,
    check_product_reports,
    detect_anomalies,
    detect_multiple_accounts,
    detect_suspicious_bidding,
    detect_suspicious_logins,
    detect_suspicious_orders,
    detect_suspicious_product,
    perform_comprehensive_fraud_detection,
    product_risk_reasons,
)
from uniket.utils.jwt_utils import create_token


class RecordingSink:
    """Captures notifications instead of writing them."""

    def __init__(self):
        self.calls = []

    def best_effort_notify(self, **kwargs):
        self.calls.append(kwargs)
        return None


class RiskScoreTestCase(unittest.TestCase):
    def test_no_anomalies_scores_zero(self):
        self.assertEqual(calculate_risk_score([]), 0.0)

    def test_weights_by_severity(self):
        high = Anomaly("HIGH_VALUE_ORDER", "HIGH", 1500.0)
        medium = Anomaly("HIGH_VALUE_BID", "MEDIUM", 700.0)
        self.assertEqual(calculate_risk_score([high]), 20.0)
        self.assertAlmostEqual(calculate_risk_score([high, medium]), 100.0 / 3.0)

    def test_score_is_capped(self):
        hits = [Anomaly("HIGH_VALUE_ORDER", "HIGH", 1.0)] * 6
        self.assertEqual(calculate_risk_score(hits), 100.0)

    def test_detect_anomalies_from_features(self):
        features = UserFeatures(
            user_id=1,
            max_order_amount=1200.0,
            max_bid_amount=600.0,
            failed_logins=6,
            login_success_rate=0.25,
        )
        found = {a.type: a.severity for a in detect_anomalies(features)}
        self.assertEqual(
            found,
            {
                "HIGH_VALUE_ORDER": "HIGH",
                "HIGH_VALUE_BID": "MEDIUM",
                "MULTIPLE_FAILED_LOGINS": "HIGH",
                "LOW_LOGIN_SUCCESS": "MEDIUM",
            },
        )

    def test_boundaries_are_strict(self):
        features = UserFeatures(
            user_id=1,
            max_order_amount=1000.0,
            max_bid_amount=500.0,
            failed_logins=5,
            login_success_rate=0.5,
        )
        self.assertEqual(detect_anomalies(features), [])

    def test_product_risk_reasons(self):
        product = Product(vendor_id=1, name="Test listing", description="cheap", price=5000.0, image=None)
        self.assertEqual(
            product_risk_reasons(product),
            ["High price", "Test product", "Short description", "No image"],
        )
        clean = Product(vendor_id=1, name="Desk lamp", description="Warm white LED lamp", price=20.0, image="lamp.png")
        self.assertEqual(product_risk_reasons(clean), [])


class FraudDetectorsTestCase(unittest.TestCase):
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
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()
            admin = User(name="Admin", email="admin@uniket.test", role="admin")
            admin.set_password("password123")
            buyer = User(name="Chidi", email="chidi@uniket.test", role="customer")
            buyer.set_password("password123")
            vendor = User(name="Vee", email="vee@uniket.test", role="vendor")
            vendor.set_password("password123")
            db.session.add_all([admin, buyer, vendor])
            db.session.flush()
            product = Product(
                vendor_id=vendor.id,
                name="Desk lamp",
                description="Warm white LED lamp",
                price=20.0,
                image="lamp.png",
                enable_bidding=True,
                starting_bid=10.0,
            )
            db.session.add(product)
            db.session.commit()
            self.admin_id = admin.id
            self.buyer_id = buyer.id
            self.vendor_id = vendor.id
            self.product_id = product.id
        self.app.config["ADMIN_RECIPIENT_ID"] = self.admin_id

    def _seed_orders(self, count: int, *, total: float = 20.0, age: timedelta = timedelta(minutes=5)):
        created = datetime.utcnow() - age
        for i in range(count):
            db.session.add(
                Order(
                    customer_id=self.buyer_id,
                    product_id=self.product_id,
                    quantity=1,
                    total=total,
                    tracking_id=f"SEED{i:04d}",
                    created_at=created,
                )
            )
        db.session.commit()

    def _admin_alerts(self) -> list[Notification]:
        return Notification.query.filter_by(user_id=self.admin_id, type="FRAUD_ALERT").all()

    def test_ten_orders_in_an_hour_is_suspicious(self):
        with self.app.app_context():
            self._seed_orders(10)
            self.assertTrue(detect_suspicious_orders(self.buyer_id))
            alerts = self._admin_alerts()
            self.assertEqual(len(alerts), 1)
            self.assertEqual(alerts[0].role, "admin")
            self.assertEqual(alerts[0].to_dict()["data"]["orderCount"], 10)
            self.assertEqual(AdminAlert.query.one().severity, "MEDIUM")

    def test_nine_orders_is_not_suspicious(self):
        with self.app.app_context():
            self._seed_orders(9)
            self.assertFalse(detect_suspicious_orders(self.buyer_id))
            self.assertEqual(self._admin_alerts(), [])

    def test_old_orders_fall_outside_window(self):
        with self.app.app_context():
            self._seed_orders(12, age=timedelta(hours=2))
            self.assertFalse(detect_suspicious_orders(self.buyer_id))

    def test_thresholds_are_injectable(self):
        sink = RecordingSink()
        with self.app.app_context():
            self._seed_orders(2)
            self.assertTrue(
                detect_suspicious_orders(self.buyer_id, thresholds=FraudThresholds(max_orders_per_hour=2), sink=sink)
            )
        self.assertEqual(len(sink.calls), 1)
        self.assertEqual(sink.calls[0]["user_id"], self.admin_id)
        self.assertEqual(sink.calls[0]["type"], "FRAUD_ALERT")

    def test_failed_logins(self):
        with self.app.app_context():
            for _ in range(4):
                db.session.add(LoginAttempt(user_id=self.buyer_id, email="chidi@uniket.test", ip_address="1.1.1.1"))
            db.session.commit()
            self.assertFalse(detect_suspicious_logins(self.buyer_id, "1.1.1.1"))
            db.session.add(LoginAttempt(user_id=self.buyer_id, email="chidi@uniket.test", ip_address="1.1.1.1"))
            db.session.commit()
            self.assertTrue(detect_suspicious_logins(self.buyer_id, "1.1.1.1"))
            self.assertEqual(AdminAlert.query.one().severity, "HIGH")

    def test_multiple_accounts_from_one_ip(self):
        with self.app.app_context():
            for uid in (self.admin_id, self.buyer_id):
                db.session.add(LoginAttempt(user_id=uid, email="x", ip_address="9.9.9.9", success=True))
            db.session.commit()
            self.assertFalse(detect_multiple_accounts("9.9.9.9"))
            db.session.add(LoginAttempt(user_id=self.vendor_id, email="x", ip_address="9.9.9.9", success=True))
            db.session.commit()
            self.assertTrue(detect_multiple_accounts("9.9.9.9"))
            self.assertFalse(detect_multiple_accounts(""))

    def test_bidding_frequency(self):
        with self.app.app_context():
            for i in range(20):
                db.session.add(Bid(product_id=self.product_id, user_id=self.buyer_id, amount=11.0 + i))
            db.session.commit()
            self.assertTrue(detect_suspicious_bidding(self.buyer_id))
            self.assertFalse(detect_suspicious_bidding(self.vendor_id))

    def test_suspicious_product_alert(self):
        with self.app.app_context():
            product = Product(vendor_id=self.vendor_id, name="test item", description="x", price=2.0, image="a.png")
            db.session.add(product)
            db.session.commit()
            self.assertTrue(detect_suspicious_product(product))
            data = self._admin_alerts()[0].to_dict()["data"]
            self.assertEqual(data["reasons"], ["Test product", "Short description"])
            self.assertFalse(detect_suspicious_product(db.session.get(Product, self.product_id)))

    def test_reports_flag_product_and_notify_vendor(self):
        with self.app.app_context():
            for _ in range(2):
                db.session.add(Review(product_id=self.product_id, user_id=self.buyer_id, is_report=True))
            db.session.add(Review(product_id=self.product_id, user_id=self.buyer_id, rating=4))
            db.session.commit()
            self.assertFalse(check_product_reports(self.product_id))

            db.session.add(Review(product_id=self.product_id, user_id=self.buyer_id, is_report=True))
            db.session.commit()
            self.assertTrue(check_product_reports(self.product_id))
            self.assertTrue(db.session.get(Product, self.product_id).is_flagged)
            vendor_notes = Notification.query.filter_by(user_id=self.vendor_id, type="FLAGGED_PRODUCT").all()
            self.assertEqual(len(vendor_notes), 1)
            self.assertEqual(AdminAlert.query.one().severity, "LOW")
            self.assertFalse(check_product_reports(99999))

    def test_behavior_analysis_alerts_per_anomaly(self):
        with self.app.app_context():
            self._seed_orders(1, total=2500.0)
            result = analyze_user_behavior(self.buyer_id)
            self.assertEqual([a["type"] for a in result["anomalies"]], ["HIGH_VALUE_ORDER"])
            self.assertEqual(result["riskScore"], 20.0)
            self.assertEqual(result["features"]["total_orders"], 1)
            self.assertEqual(AdminAlert.query.one().severity, "HIGH")
            self.assertIsNone(analyze_user_behavior(99999))

    def test_comprehensive_report(self):
        with self.app.app_context():
            self._seed_orders(10)
            report = perform_comprehensive_fraud_detection(self.buyer_id, "5.5.5.5")
        self.assertTrue(report["suspiciousOrders"])
        self.assertFalse(report["suspiciousLogins"])
        self.assertFalse(report["suspiciousBidding"])
        self.assertFalse(report["multipleAccounts"])
        self.assertEqual(report["riskScore"], 0)
        self.assertTrue(report["isHighRisk"])

    def test_admin_fraud_endpoint(self):
        headers = {"Authorization": f"Bearer {create_token(self.admin_id)}"}
        res = self.client.get(f"/api/admin/fraud/users/{self.buyer_id}", headers=headers)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertFalse(body["isHighRisk"])
        self.assertEqual(body["userId"], self.buyer_id)

        self.assertEqual(self.client.get("/api/admin/fraud/users/99999", headers=headers).status_code, 404)
        buyer_headers = {"Authorization": f"Bearer {create_token(self.buyer_id)}"}
        self.assertEqual(
            self.client.get(f"/api/admin/fraud/users/{self.buyer_id}", headers=buyer_headers).status_code, 403
        )

    def test_order_placement_triggers_frequency_check(self):
        with self.app.app_context():
            self._seed_orders(9)
        res = self.client.post(
            "/api/orders",
            json={
                "items": [{"productId": self.product_id, "quantity": 1}],
                "shippingAddress": {"name": "Chidi", "phone": "0803", "email": "chidi@uniket.test"},
            },
            headers={"Authorization": f"Bearer {create_token(self.buyer_id)}"},
        )
        self.assertEqual(res.status_code, 201)
        with self.app.app_context():
            self.assertEqual(len(self._admin_alerts()), 1)


if __name__ == "__main__":
    unittest.main()
