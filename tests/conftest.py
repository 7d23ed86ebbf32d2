"""Pytest fixtures for storefront tests."""

import os

# module-level engine in storefront.db.session must not touch the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.pool import StaticPool

from storefront.config import AppConfig
from storefront.db.session import make_session_factory
from storefront.errors import UpstreamError
from storefront.models import Base, FlashSale, Order, Product, Promotion, Referral, User
from storefront.services import OrderService, PaymentService, PromotionService, ReferralService
from storefront.utils.validators import OrderLine, OrderRequest


NOW = datetime(2026, 3, 10, 12, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePaymentClient:
    """Stands in for PaymentProviderClient; records every call."""

    def __init__(self):
        self.created = []
        self.verified = []
        self.transactions = {}
        self.fail_create = False
        self.fail_verify = False
        # runs once, inside the next create call, before it returns
        self.during_create = None

    def create_payment_link(self, payload):
        self.created.append(payload)
        hook, self.during_create = self.during_create, None
        if hook is not None:
            hook()
        if self.fail_create:
            raise UpstreamError("Payment provider rejected the request")
        return f"https://checkout.example/pay/{payload['tx_ref']}"

    def verify_transaction(self, transaction_id):
        self.verified.append(transaction_id)
        if self.fail_verify:
            raise UpstreamError("Payment provider timed out")
        return self.transactions[transaction_id]


class InterleavedSession:
    """Wraps a session and runs ``before_execute`` ahead of its first ``execute``.

    Lets a test apply a competing write between a service's read and its
    conditional update.
    """

    def __init__(self, session, before_execute):
        self._session = session
        self._before_execute = before_execute

    def __getattr__(self, name):
        return getattr(self._session, name)

    def execute(self, statement, *args, **kwargs):
        hook, self._before_execute = self._before_execute, None
        if hook is not None:
            hook(self._session)
        return self._session.execute(statement, *args, **kwargs)


def claim_referrals(referrer_id, count):
    """Hook for InterleavedSession: mark ``count`` of the referrer's COMPLETED rows REWARDED."""

    def claim(session):
        ids = [
            row.id
            for row in session.query(Referral.id)
            .filter(Referral.referrer_id == referrer_id, Referral.status == "COMPLETED")
            .order_by(Referral.id)
            .limit(count)
        ]
        session.query(Referral).filter(Referral.id.in_(ids)).update(
            {"status": "REWARDED"}, synchronize_session=False
        )

    return claim


class Seed:
    """Inserts rows directly, bypassing the services under test."""

    def __init__(self, session_factory):
        self._sf = session_factory

    def _add(self, row):
        with self._sf() as s:
            s.add(row)
        return row

    def product(self, **kw):
        values = dict(
            id=str(uuid4()),
            name="Mango",
            price=Decimal("1000.00"),
            discount_price=None,
            stock=5,
            min_order=1,
            is_available=True,
        )
        values.update(kw)
        return self._add(Product(**values))

    def flash_sale(self, product, sale_price, start=None, end=None, is_active=True, created_at=None):
        return self._add(
            FlashSale(
                id=str(uuid4()),
                product_id=product.id,
                sale_price=Decimal(sale_price),
                original_price=product.price,
                start_time=start or NOW - timedelta(hours=1),
                end_time=end or NOW + timedelta(hours=1),
                is_active=is_active,
                created_at=created_at or NOW - timedelta(days=1),
            )
        )

    def ramadan_promotion(self, min_order_amount="20000", start=None, end=None, is_active=True, created_at=None):
        return self._add(
            Promotion(
                id=str(uuid4()),
                type="RAMADAN_DELIVERY",
                title="Ramadan delivery",
                discount_percent=100,
                min_order_amount=Decimal(min_order_amount),
                start_date=start or NOW - timedelta(days=1),
                end_date=end or NOW + timedelta(days=1),
                is_active=is_active,
                created_at=created_at or NOW - timedelta(days=2),
            )
        )

    def user(self, user_id=None, referral_code=None):
        return self._add(User(id=user_id or str(uuid4()), referral_code=referral_code))

    def referral(self, referrer_id, status="COMPLETED", referred_user_id=None, created_at=None):
        return self._add(
            Referral(
                referrer_id=referrer_id,
                referred_user_id=referred_user_id or str(uuid4()),
                status=status,
                created_at=created_at or NOW - timedelta(days=3),
            )
        )

    def get(self, model, pk):
        with self._sf() as s:
            row = s.get(model, pk)
            if row is not None:
                s.expunge(row)
            return row

    def stock(self, product_id) -> int:
        return self.get(Product, product_id).stock

    def order(self, order_id) -> Order:
        return self.get(Order, order_id)

    def referral_statuses(self, referrer_id):
        with self._sf() as s:
            return sorted(r.status for r in s.query(Referral).filter(Referral.referrer_id == referrer_id))


@pytest.fixture
def session_factory():
    factory = make_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(factory.engine)
    yield factory
    factory.engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def seed(session_factory):
    return Seed(session_factory)


@pytest.fixture
def promotions(session_factory, clock):
    return PromotionService(session_factory=session_factory, clock=clock)


@pytest.fixture
def referrals(session_factory, clock):
    return ReferralService(session_factory=session_factory, clock=clock)


@pytest.fixture
def orders(session_factory, clock, promotions, referrals):
    return OrderService(
        promotions,
        referrals,
        base_delivery_fee=Decimal("2000.00"),
        whatsapp_phone="2348000000000",
        frontend_url="https://shop.example",
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def webhook_secret():
    return "whsec-test"


@pytest.fixture
def payments(session_factory, clock, payment_client, webhook_secret):
    return PaymentService(
        payment_client,
        webhook_secret=webhook_secret,
        currency="NGN",
        redirect_url="https://shop.example/payment/complete",
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def app_config(webhook_secret):
    return AppConfig(
        database_url="sqlite://",
        secret_key="test-secret",
        log_level="WARNING",
        store_base_url="http://localhost:5000",
        frontend_url="https://shop.example",
        currency="NGN",
        base_delivery_fee=Decimal("2000.00"),
        whatsapp_phone="2348000000000",
        payment_api_base="https://payments.example/v3",
        payment_secret_key="sk-test",
        payment_webhook_secret=webhook_secret,
        payment_timeout_seconds=5.0,
        payment_redirect_url="https://shop.example/payment/complete",
        admin_username="admin",
        admin_password="s3cret",
    )


def make_request(*lines, address="12 Allen Avenue, Ikeja", notes=None) -> OrderRequest:
    """Build an OrderRequest from ``(product, quantity)`` pairs."""
    return OrderRequest(
        items=[OrderLine(product_id=p.id if hasattr(p, "id") else p, quantity=q) for p, q in lines],
        customer_name="Ada Obi",
        customer_email="ada@example.com",
        customer_phone="+2348012345678",
        delivery_address=address,
        notes=notes,
    )
