from uniket.models.user import User
from uniket.models.pickup_point import PickupPoint
from uniket.models.product import Product, TicketDetails
from uniket.models.order import Order, OrderTracking, OrderRating
from uniket.models.ticket import Ticket
from uniket.models.notification import Notification, AdminAlert
from uniket.models.bid import Bid
from uniket.models.wallet import Wallet, Transaction
from uniket.models.login_attempt import LoginAttempt
from uniket.models.review import Review

__all__ = [
    "User",
    "PickupPoint",
    "Product",
    "TicketDetails",
    "Order",
    "OrderTracking",
    "OrderRating",
    "Ticket",
    "Notification",
    "AdminAlert",
    "Bid",
    "Wallet",
    "Transaction",
    "LoginAttempt",
    "Review",
]
