"""
Shared fixtures: in-memory database, seed helpers and test doubles.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("ENABLE_LLM_MESSAGES", "false")
os.environ.setdefault("WEBHOOK_VALIDATE_SIGNATURE", "false")

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import salescoach.models  # noqa: F401
from salescoach.connectors.whatsapp import BaseMessagingProvider, SendResult, WebhookEvent
from salescoach.models.base import Base, enable_sqlite_savepoints
from salescoach.models.tenant import Tenant, Store, Seller
from salescoach.models.sales import Sale, Goal
from salescoach.services.import_service import compute_data_hash
from salescoach.services.training_service import TrainingStatusTracker


# ────────────────────────────────────────────
# DATABASE
# ────────────────────────────────────────────


@pytest.fixture
def engine():
    engine = enable_sqlite_savepoints(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ────────────────────────────────────────────
# TEST DOUBLES
# ────────────────────────────────────────────


class FakeProvider(BaseMessagingProvider):
    """Records sends. `fail_for` addresses get an error result, `raise_for` addresses raise."""

    provider_name = "fake"

    def __init__(self, fail_for=(), raise_for=()):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.sent = []

    @property
    def sender_address(self) -> str:
        return "+10000000000"

    async def send(self, to_address, body, tenant_id):
        if to_address in self.raise_for:
            raise RuntimeError("connection reset")
        if to_address in self.fail_for:
            return SendResult(success=False, error_message="provider timeout")
        self.sent.append((to_address, body))
        return SendResult(success=True, external_id=f"ext-{len(self.sent)}")

    def validate_webhook(self, signature, payload, url=None):
        return True

    def parse_webhook(self, payload):
        return [WebhookEvent(**e) for e in payload.get("events", [])]


class FakeLLM:
    def __init__(self, answer=None, raises=False):
        self.enabled = True
        self.answer = answer
        self.raises = raises
        self.prompts = []

    def generate(self, prompt, context=None):
        self.prompts.append((prompt, context))
        if self.raises:
            raise RuntimeError("LLM down")
        return self.answer


@pytest.fixture
def provider():
    return FakeProvider()


# ────────────────────────────────────────────
# SEED HELPERS
# ────────────────────────────────────────────


def make_tenant(db, code="acme", review_required=None, send_on_approve=None):
    tenant = Tenant(code=code, name=code.title(), review_required=review_required, send_on_approve=send_on_approve)
    db.add(tenant)
    db.commit()
    return tenant


def make_seller(db, tenant, code, name=None, phone=None, store=None, status="active"):
    seller = Seller(
        tenant_id=tenant.id,
        store_id=store.id if store else None,
        code=code,
        name=name or f"Seller {code}",
        phone_e164=phone,
        status=status,
    )
    db.add(seller)
    db.commit()
    return seller


def make_store(db, tenant, name="Downtown"):
    store = Store(tenant_id=tenant.id, name=name)
    db.add(store)
    db.commit()
    return store


def add_sale(db, tenant, seller, value, day=None, store=None):
    sale = Sale(
        tenant_id=tenant.id,
        store_id=store.id if store else seller.store_id,
        seller_id=seller.id,
        sale_date=day or date.today(),
        total_value=Decimal(str(value)),
    )
    db.add(sale)
    db.commit()
    return sale


def add_goal(db, tenant, target, seller=None, store=None, month=None):
    goal = Goal(
        tenant_id=tenant.id,
        seller_id=seller.id if seller else None,
        store_id=store.id if store else None,
        month=(month or date.today()).replace(day=1),
        target_value=Decimal(str(target)),
    )
    db.add(goal)
    db.commit()
    return goal


def record_import(db, tenant, marker="v1"):
    tracker = TrainingStatusTracker(db)
    tracker.record_import(tenant.id, compute_data_hash([{"marker": marker}], [], []))
    db.commit()
    return tracker
