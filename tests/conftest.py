"""Shared pytest fixtures for coursepay tests."""

import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "test")

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coursepay.data.database import Base
from coursepay.data.models import (
    BundleModel,
    CourseModel,
    PromoCodeModel,
    PurchaseItemModel,
    PurchaseModel,
    UserModel,
)
from coursepay.services.cart_service import CartService
from coursepay.services.payment_status import normalize_payment_result, verify_signature
from coursepay.services.purchase_service import PurchaseService

WEBHOOK_SECRET = "whsec_test"

SESSION_OK = {
    "success": True,
    "order_id": "9001",
    "payment_token": "pk_test",
    "iframe_url": "https://accept.paymob.com/api/acceptance/iframes/42?payment_token=pk_test",
}


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Hex HMAC-SHA256 of a raw body, as Paymob sends it."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def success_payload(merchant_order_id: str, transaction_id: int = 555) -> dict:
    return {
        "type": "TRANSACTION",
        "obj": {
            "id": transaction_id,
            "success": True,
            "pending": False,
            "amount_cents": 5000,
            "order": {"id": 9001, "merchant_order_id": merchant_order_id, "paid_amount_cents": 5000},
            "data": {"message": "Approved"},
        },
    }


def declined_payload(merchant_order_id: str) -> dict:
    return {
        "type": "TRANSACTION",
        "obj": {
            "id": 556,
            "success": False,
            "pending": False,
            "order": {"id": 9001, "merchant_order_id": merchant_order_id},
            "data": {"message": "DECLINED"},
        },
    }


class FakeNotifier:
    def __init__(self):
        self.calls = []
        self.broker_up = True

    def send_purchase_invoice_notification(self, user_id, purchase_id):
        if not self.broker_up:
            return False
        self.calls.append((user_id, purchase_id))
        return True


class FakeGateway:
    """
    Stands in for PaymobClient.

    status: dict returned by query_transaction_status, an exception to raise,
    or a callable taking the merchant order id.
    """

    def __init__(self, session_result=None, status=None):
        self.session_result = session_result or SESSION_OK
        self.status = status
        self.sessions = []
        self.queries = []
        self.webhook_secret = WEBHOOK_SECRET

    def create_payment_session(self, order_data, billing, payment_method="card"):
        self.sessions.append({"order_data": order_data, "billing": billing, "method": payment_method})
        return dict(self.session_result)

    def query_transaction_status(self, merchant_order_id, paymob_order_id=None, transaction_id=None):
        self.queries.append(merchant_order_id)
        if isinstance(self.status, Exception):
            raise self.status
        if callable(self.status):
            return self.status(merchant_order_id)
        return self.status

    def verify_webhook_signature(self, raw_body, signature):
        return verify_signature(raw_body, signature, self.webhook_secret)

    @staticmethod
    def process_webhook_payload(payload, query_params=None):
        return normalize_payment_result(payload, query_params)


class FakeLock:
    def __init__(self, held=False):
        self.held = held
        self.acquired = []
        self.released = []

    def acquire(self, name, owner, ttl):
        if self.held:
            return False
        self.held = True
        self.acquired.append((name, ttl))
        return True

    def release(self, name, owner):
        self.held = False
        self.released.append(name)
        return True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    """Two users, five courses (one draft) and a bundle of courses 4 and 5."""
    db.add_all(
        [
            UserModel(id=1, name="Sara Ahmed", email="sara@example.com", phone="01000000001"),
            UserModel(id=2, name="Omar Ali", email="omar@example.com", phone="01000000002"),
        ]
    )
    courses = [
        CourseModel(id=1, title="Algebra Basics", price=Decimal("50.00"), status="published"),
        CourseModel(
            id=2,
            title="Physics I",
            price=Decimal("100.00"),
            discount_percent=Decimal("20"),
            status="published",
        ),
        CourseModel(id=3, title="Chemistry Draft", price=Decimal("40.00"), status="draft"),
        CourseModel(id=4, title="Biology A", price=Decimal("60.00"), status="published"),
        CourseModel(id=5, title="Biology B", price=Decimal("70.00"), status="published"),
    ]
    db.add_all(courses)
    db.flush()

    bundle = BundleModel(id=1, title="Biology Pack", price=Decimal("110.00"), status="published")
    bundle.courses = [courses[3], courses[4]]
    db.add(bundle)
    db.commit()

    return {"courses": {c.id: c for c in courses}, "bundle": bundle}


@pytest.fixture
def billing():
    return {
        "first_name": "Sara",
        "last_name": "Ahmed",
        "email": "sara@example.com",
        "phone": "01000000001",
        "address": "12 Nile St",
        "city": "Cairo",
        "state": "Cairo",
        "zip_code": "11511",
        "country": "EG",
    }


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def carts(db):
    return CartService(db)


@pytest.fixture
def service(db, gateway, notifier):
    return PurchaseService(db, gateway=gateway, notifier=notifier)


@pytest.fixture
def make_promo(db):
    def _make(code="SAVE10", **fields):
        now = datetime.now(timezone.utc)
        values = {
            "name": code,
            "discount_type": "percentage",
            "discount_value": Decimal("10"),
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        }
        values.update(fields)
        promo = PromoCodeModel(code=code, **values)
        db.add(promo)
        db.commit()
        return promo

    return _make


@pytest.fixture
def make_purchase(db):
    """Pending purchase inserted directly, for tests that skip checkout."""
    counter = {"n": 0}

    def _make(user_id=1, created_at=None, items=((1, "course", Decimal("50.00")),), **fields):
        counter["n"] += 1
        n = counter["n"]
        total = sum((price for _, _, price in items), Decimal("0.00"))
        values = {
            "user_id": user_id,
            "order_number": f"ORD-20260101-TEST{n:04d}",
            "subtotal": total,
            "total": total,
            "original_amount": total,
            "payment_intent_id": f"intent-{n}",
            "billing_address": {},
            "created_at": created_at or datetime.now(timezone.utc),
        }
        values.update(fields)
        purchase = PurchaseModel(
            **values,
            items=[
                PurchaseItemModel(item_id=item_id, item_type=item_type, title=f"{item_type} {item_id}", price=price)
                for item_id, item_type, price in items
            ],
        )
        db.add(purchase)
        db.commit()
        return purchase

    return _make
