from __future__ import annotations

import os
import re
import unittest
from datetime import datetime, timedelta
from unittest import mock

from uniket import create_app
from uniket.errors import InvalidOperationError, ServerError, ValidationError
from uniket.extensions import db
from uniket.models import Notification, Order, Product, Ticket, TicketDetails, User
from uniket.services import ticket_service
from uniket.utils.jwt_utils import create_token


def _user(name: str, role: str) -> User:
    row = User(name=name, email=f"{name.lower()}@uniket.test", role=role)
    row.set_password("password123")
    db.session.add(row)
    db.session.flush()
    return row


def _event_product(vendor: User, *, valid_until: datetime) -> Product:
    product = Product(
        vendor_id=vendor.id,
        name="Freshers Night",
        description="Campus freshers party admission",
        price=15.0,
        image="party.png",
        quantity=100,
        is_ticket=True,
    )
    db.session.add(product)
    db.session.flush()
    db.session.add(
        TicketDetails(
            product_id=product.id,
            event_name="Freshers Night",
            event_date=datetime.utcnow() + timedelta(days=3),
            event_location="Student Union Hall",
            ticket_type="VIP",
            valid_until=valid_until,
        )
    )
    db.session.flush()
    return product


class TicketIssuanceTestCase(unittest.TestCase):
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
        self.app.config["STRICT_TICKET_REUSE_CHECK"] = False
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()
            buyer = _user("Bola", "customer")
            vendor_a = _user("Amaka", "vendor")
            vendor_b = _user("Bayo", "vendor")
            live = _event_product(vendor_b, valid_until=datetime.utcnow() + timedelta(days=5))
            past = _event_product(vendor_b, valid_until=datetime.utcnow() - timedelta(hours=1))
            plain = Product(vendor_id=vendor_b.id, name="Mug", description="Ceramic campus mug", price=4.0)
            db.session.add(plain)
            db.session.commit()
            self.buyer_id = buyer.id
            self.vendor_a_id = vendor_a.id
            self.vendor_b_id = vendor_b.id
            self.live_id = live.id
            self.past_id = past.id
            self.plain_id = plain.id

    def _headers(self, user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_token(user_id)}"}

    def _buy(self, product_id: int, quantity: int) -> dict:
        res = self.client.post(
            "/api/orders",
            json={
                "items": [{"productId": product_id, "quantity": quantity}],
                "shippingAddress": {"name": "Bola", "phone": "0802", "email": "bola@uniket.test"},
            },
            headers=self._headers(self.buyer_id),
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        return res.get_json()["order"]

    def _tickets(self, order_id: int) -> list[dict]:
        with self.app.app_context():
            return [t.to_dict() for t in Ticket.query.filter_by(order_id=order_id).order_by(Ticket.id).all()]

    def test_ticket_number_format(self):
        number = ticket_service.generate_ticket_number()
        self.assertRegex(number, r"^TKT-\d{13}-[0-9a-f]{8}$")

    def test_qr_code_is_bounded_opaque_token(self):
        code = ticket_service.generate_qr_code({"ticketNumber": "TKT-1-abcd1234", "productId": 7, "userId": 9})
        self.assertLessEqual(len(code), 150)
        self.assertTrue(code.startswith("iVBOR"))  # base64 PNG signature
        self.assertTrue(re.fullmatch(r"[0-9a-f]{16}", ticket_service.generate_qr_code()))

    def test_order_issues_one_ticket_per_unit_and_notifies_once(self):
        order = self._buy(self.live_id, 3)
        tickets = self._tickets(order["id"])
        self.assertEqual(len(tickets), 3)
        self.assertEqual(len({t["ticket_number"] for t in tickets}), 3)
        self.assertTrue(all(t["status"] == "VALID" for t in tickets))
        with self.app.app_context():
            notes = Notification.query.filter_by(user_id=self.buyer_id, type="ticket").all()
            self.assertEqual(len(notes), 1)
            self.assertEqual(notes[0].message, "Your tickets for Freshers Night have been issued.")
            self.assertEqual(notes[0].to_dict()["data"]["ticketCount"], 3)

    def test_create_tickets_rejects_non_ticket_product(self):
        with self.app.app_context():
            with self.assertRaises(InvalidOperationError):
                ticket_service.create_tickets(order_id=1, product_id=self.plain_id, user_id=self.buyer_id, quantity=1)

    def test_create_tickets_redraws_colliding_codes(self):
        order = self._buy(self.live_id, 1)
        existing = self._tickets(order["id"])[0]["qr_code"]
        draws = [existing, "QR-FRESH-1", "QR-FRESH-1", "QR-FRESH-2"]
        with self.app.app_context():
            with mock.patch.object(ticket_service, "generate_qr_code", side_effect=draws):
                issued = ticket_service.create_tickets(
                    order_id=order["id"],
                    product_id=self.live_id,
                    user_id=self.buyer_id,
                    quantity=2,
                )
            self.assertEqual([t.qr_code for t in issued], ["QR-FRESH-1", "QR-FRESH-2"])
            self.assertEqual(Ticket.query.filter_by(qr_code=existing).count(), 1)

    def test_create_tickets_gives_up_after_repeated_collisions(self):
        order = self._buy(self.live_id, 1)
        existing = self._tickets(order["id"])[0]["qr_code"]
        with self.app.app_context():
            with mock.patch.object(ticket_service, "generate_qr_code", return_value=existing):
                with self.assertRaises(ServerError):
                    ticket_service.create_tickets(
                        order_id=order["id"],
                        product_id=self.live_id,
                        user_id=self.buyer_id,
                        quantity=1,
                    )
            self.assertEqual(Ticket.query.count(), 1)

    def test_qr_code_round_trip_resolves_same_ticket(self):
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        with self.app.app_context():
            result = ticket_service.verify_ticket(ticket["qr_code"])
        self.assertTrue(result["isValid"])
        self.assertEqual(result["ticket"]["id"], ticket["id"])
        self.assertEqual(result["eventName"], "Freshers Night")
        self.assertEqual(result["ticketType"], "VIP")
        self.assertEqual(result["userName"], "Bola")

    def test_verify_endpoint_owner_vendor(self):
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        res = self.client.post("/api/tickets/verify", json={"qrCode": ticket["qr_code"]}, headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["message"], "Ticket is valid")
        self.assertTrue(body["isValid"])

    def test_foreign_vendor_cannot_verify(self):
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        res = self.client.post("/api/tickets/verify", json={"qrCode": ticket["qr_code"]}, headers=self._headers(self.vendor_a_id))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["message"], "You are not authorized to verify this ticket")
        self.assertEqual(self._tickets(order["id"])[0]["status"], "VALID")

    def test_unknown_code_is_invalid(self):
        res = self.client.post("/api/tickets/verify", json={"qrCode": "nope"}, headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Invalid ticket")

    def test_verify_after_valid_until_expires_ticket(self):
        order = self._buy(self.past_id, 1)
        ticket = self._tickets(order["id"])[0]
        res = self.client.post("/api/tickets/verify", json={"qrCode": ticket["qr_code"]}, headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Ticket has expired")
        self.assertEqual(self._tickets(order["id"])[0]["status"], "EXPIRED")

        res = self.client.post("/api/tickets/verify", json={"qrCode": ticket["qr_code"]}, headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.get_json()["message"], "Ticket is expired")

    def test_mark_used_twice_stays_used(self):
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        url = f"/api/tickets/{ticket['id']}/use"
        first = self.client.post(url, headers=self._headers(self.vendor_b_id))
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.get_json()["message"], "Ticket marked as used successfully")
        second = self.client.post(url, headers=self._headers(self.vendor_b_id))
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.get_json()["ticket"]["status"], "USED")
        self.assertIsNotNone(second.get_json()["ticket"]["used_at"])

        with self.app.app_context():
            with self.assertRaises(ValidationError) as ctx:
                ticket_service.verify_ticket(ticket["qr_code"])
            self.assertEqual(ctx.exception.message, "Ticket is used")

    def test_strict_reuse_check_rejects_second_use(self):
        self.app.config["STRICT_TICKET_REUSE_CHECK"] = True
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        url = f"/api/tickets/{ticket['id']}/use"
        self.assertEqual(self.client.post(url, headers=self._headers(self.vendor_b_id)).status_code, 200)
        self.assertEqual(self.client.post(url, headers=self._headers(self.vendor_b_id)).status_code, 400)

    def test_use_endpoint_guards(self):
        order = self._buy(self.live_id, 1)
        ticket = self._tickets(order["id"])[0]
        self.assertEqual(self.client.post("/api/tickets/99999/use", headers=self._headers(self.vendor_b_id)).status_code, 404)
        res = self.client.post(f"/api/tickets/{ticket['id']}/use", headers=self._headers(self.vendor_a_id))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self._tickets(order["id"])[0]["status"], "VALID")

    def test_event_ticket_listing(self):
        self._buy(self.live_id, 2)
        res = self.client.get(f"/api/tickets/event/{self.live_id}", headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["message"], "Tickets retrieved successfully")
        self.assertEqual(len(res.get_json()["tickets"]), 2)

        res = self.client.get(f"/api/tickets/event/{self.live_id}", headers=self._headers(self.vendor_a_id))
        self.assertEqual(res.status_code, 403)
        # Missing event ids read as not owned.
        res = self.client.get("/api/tickets/event/99999", headers=self._headers(self.vendor_b_id))
        self.assertEqual(res.status_code, 403)

        mine = self.client.get("/api/tickets/user", headers=self._headers(self.buyer_id)).get_json()["tickets"]
        self.assertEqual(len(mine), 2)
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 1)


if __name__ == "__main__":
    unittest.main()
