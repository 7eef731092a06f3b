from __future__ import annotations

import os
import unittest

from uniket import create_app
from uniket.extensions import db
from uniket.models import Notification, Transaction, User, Wallet
from uniket.utils.jwt_utils import create_token

BANK = {"bankName": "Campus Bank", "accountNumber": "0123456789", "accountName": "Vee Stores"}


class WithdrawalFlowTestCase(unittest.TestCase):
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
            rows = {}
            for name, role in (("Vee", "vendor"), ("Wale", "vendor"), ("Admin", "admin"), ("Cy", "customer")):
                u = User(name=name, email=f"{name.lower()}@uniket.test", role=role)
                u.set_password("password123")
                db.session.add(u)
                rows[name] = u
            db.session.commit()
            self.vendor_id = rows["Vee"].id
            self.other_vendor_id = rows["Wale"].id
            self.admin_id = rows["Admin"].id
            self.customer_id = rows["Cy"].id

    def _headers(self, user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_token(user_id)}"}

    def _fund(self, user_id: int, amount) -> dict:
        res = self.client.post("/api/wallet/fund", json={"amount": amount, "paymentRef": "PAY-1"}, headers=self._headers(user_id))
        self.assertEqual(res.status_code, 200, res.get_json())
        return res.get_json()

    def _balance(self, user_id: int) -> float:
        with self.app.app_context():
            return float(Wallet.query.filter_by(user_id=user_id).one().balance)

    def _withdraw(self, amount, bank=BANK):
        return self.client.post(
            "/api/withdrawals",
            json={"amount": amount, "bankDetails": bank},
            headers=self._headers(self.vendor_id),
        )

    def test_wallet_created_on_first_read(self):
        res = self.client.get("/api/wallet", headers=self._headers(self.customer_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["wallet"]["balance"], 0.0)

    def test_fund_records_transaction(self):
        body = self._fund(self.customer_id, "40.5")
        self.assertEqual(body["wallet"]["balance"], 40.5)
        self.assertEqual(body["transaction"]["type"], "fund")
        self.assertEqual(body["transaction"]["status"], "COMPLETED")
        self.assertEqual(body["transaction"]["description"], {"paymentRef": "PAY-1"})

        res = self.client.get("/api/wallet/transactions?type=fund", headers=self._headers(self.customer_id))
        self.assertEqual(len(res.get_json()["items"]), 1)

    def test_fund_rejects_bad_amounts(self):
        for amount in (0, -5, "abc", None, "nan", "inf", "-inf"):
            res = self.client.post("/api/wallet/fund", json={"amount": amount}, headers=self._headers(self.customer_id))
            self.assertEqual(res.status_code, 400, amount)
        with self.app.app_context():
            self.assertEqual(Transaction.query.count(), 0)

    def test_withdrawal_rejects_non_finite_amount(self):
        self._fund(self.vendor_id, 10)
        for amount in ("nan", "inf"):
            res = self._withdraw(amount)
            self.assertEqual(res.status_code, 400, amount)
            self.assertEqual(res.get_json()["message"], "Invalid amount")
        self.assertEqual(self._balance(self.vendor_id), 10.0)

    def test_request_holds_balance(self):
        self._fund(self.vendor_id, 100)
        res = self._withdraw(30)
        self.assertEqual(res.status_code, 201)
        withdrawal = res.get_json()["withdrawal"]
        self.assertEqual(withdrawal["status"], "PENDING")
        self.assertEqual(withdrawal["description"]["bankName"], "Campus Bank")
        self.assertEqual(self._balance(self.vendor_id), 70.0)
        with self.app.app_context():
            note = Notification.query.filter_by(user_id=self.vendor_id, type="withdrawal").one()
            self.assertEqual(note.to_dict()["data"]["transactionId"], withdrawal["id"])

    def test_request_validation(self):
        self._fund(self.vendor_id, 10)
        res = self._withdraw(30)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Insufficient balance")

        res = self._withdraw(5, bank={"bankName": "Campus Bank"})
        self.assertEqual(res.get_json()["message"], "Bank details are required")
        self.assertEqual(self._balance(self.vendor_id), 10.0)

        res = self.client.post(
            "/api/withdrawals",
            json={"amount": 5, "bankDetails": BANK},
            headers=self._headers(self.customer_id),
        )
        self.assertEqual(res.status_code, 403)

    def test_approve_keeps_hold(self):
        self._fund(self.vendor_id, 50)
        wid = self._withdraw(20).get_json()["withdrawal"]["id"]
        res = self.client.put(f"/api/withdrawals/{wid}/approve", headers=self._headers(self.admin_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["withdrawal"]["status"], "APPROVED")
        self.assertEqual(self._balance(self.vendor_id), 30.0)

        res = self.client.put(f"/api/withdrawals/{wid}/approve", headers=self._headers(self.admin_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Withdrawal request is not pending")

    def test_reject_refunds(self):
        self._fund(self.vendor_id, 50)
        wid = self._withdraw(20).get_json()["withdrawal"]["id"]
        res = self.client.put(f"/api/withdrawals/{wid}/reject", json={}, headers=self._headers(self.admin_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Rejection reason is required")

        res = self.client.put(
            f"/api/withdrawals/{wid}/reject",
            json={"reason": "Account name mismatch"},
            headers=self._headers(self.admin_id),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["withdrawal"]["description"]["reason"], "Account name mismatch")
        self.assertEqual(self._balance(self.vendor_id), 50.0)

    def test_cancel_is_owner_only_and_refunds(self):
        self._fund(self.vendor_id, 50)
        wid = self._withdraw(20).get_json()["withdrawal"]["id"]
        res = self.client.put(f"/api/withdrawals/{wid}/cancel", headers=self._headers(self.other_vendor_id))
        self.assertEqual(res.status_code, 403)

        res = self.client.put(f"/api/withdrawals/{wid}/cancel", headers=self._headers(self.vendor_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["withdrawal"]["status"], "CANCELLED")
        self.assertEqual(self._balance(self.vendor_id), 50.0)

        res = self.client.put(f"/api/withdrawals/{wid}/cancel", headers=self._headers(self.vendor_id))
        self.assertEqual(res.status_code, 400)

    def test_listing_scopes(self):
        self._fund(self.vendor_id, 50)
        wid = self._withdraw(10).get_json()["withdrawal"]["id"]
        self._withdraw(5)

        mine = self.client.get("/api/withdrawals", headers=self._headers(self.vendor_id)).get_json()["items"]
        self.assertEqual(len(mine), 2)
        theirs = self.client.get("/api/withdrawals", headers=self._headers(self.other_vendor_id)).get_json()["items"]
        self.assertEqual(theirs, [])
        admin = self.client.get("/api/withdrawals?status=pending", headers=self._headers(self.admin_id)).get_json()
        self.assertEqual(len(admin["items"]), 2)

        self.assertEqual(self.client.get(f"/api/withdrawals/{wid}", headers=self._headers(self.other_vendor_id)).status_code, 403)
        self.assertEqual(self.client.get("/api/withdrawals/9999", headers=self._headers(self.admin_id)).status_code, 404)
        with self.app.app_context():
            fund_id = Transaction.query.filter_by(type="fund").first().id
        self.assertEqual(self.client.get(f"/api/withdrawals/{fund_id}", headers=self._headers(self.vendor_id)).status_code, 404)


if __name__ == "__main__":
    unittest.main()
