"""
Tests for the review queue state machine.
"""
import asyncio

import pytest

from salescoach.models.messaging import (
    ALLOWED_TRANSITIONS,
    DeliveryLogEntry,
    Moment,
    ReviewItem,
    ReviewStatus,
    can_transition,
)
from salescoach.services.delivery_service import DeliveryOrchestrator
from salescoach.services.message_template_service import DraftMessage
from salescoach.services.review_service import ReviewService, review_to_dict
from salescoach.utils.errors import ConfigurationError

from conftest import FakeProvider, make_tenant

PHONE = "+5511900000001"


def _run(coro):
    return asyncio.run(coro)


def draft(text="Good morning, Ana!", moment=Moment.MORNING, phone=PHONE):
    return DraftMessage(
        seller_id="seller-1",
        recipient_name="Ana",
        recipient_address=phone,
        body_text=text,
        moment=moment,
    )


def snapshot(item):
    return (item.status, item.edited_text, item.reviewed_at, item.reviewed_by, item.sent_at, item.error_message)


# ────────────────────────────────────────────
# TRANSITION TABLE
# ────────────────────────────────────────────


class TestTransitionTable:

    def test_terminal_states(self):
        for status in (ReviewStatus.SENT, ReviewStatus.REJECTED, ReviewStatus.FAILED):
            assert ALLOWED_TRANSITIONS[status] == set()

    def test_can_transition(self):
        assert can_transition("pending", "approved")
        assert can_transition("approved", "sent")
        assert not can_transition("approved", "rejected")
        assert not can_transition("sent", "failed")
        assert not can_transition("bogus", "sent")


# ────────────────────────────────────────────
# QUEUE
# ────────────────────────────────────────────


class TestQueue:

    def test_create_review_is_pending(self, db):
        tenant = make_tenant(db)
        item = ReviewService(db).create_review(tenant.id, draft())
        assert item.status == ReviewStatus.PENDING.value
        assert item.moment == "morning"
        assert item.effective_text == "Good morning, Ana!"
        assert review_to_dict(item)["recipient_address"] == PHONE

    def test_create_review_invalid_moment(self, db):
        tenant = make_tenant(db)
        with pytest.raises(ConfigurationError):
            ReviewService(db).create_review(tenant.id, draft(moment="brunch"))

    def test_list_filters(self, db):
        tenant = make_tenant(db)
        other = make_tenant(db, code="other")
        service = ReviewService(db)
        first = service.create_review(tenant.id, draft())
        service.create_review(tenant.id, draft(moment=Moment.EVENING))
        service.create_review(other.id, draft())
        service.reject(first.id, "manager")

        assert len(service.list_reviews(tenant.id)) == 2
        assert len(service.list_reviews(tenant.id, status="PENDING")) == 1
        assert len(service.list_reviews(tenant.id, moment="evening")) == 1
        assert [r.moment for r in service.get_pending_reviews(tenant.id)] == ["evening"]


# ────────────────────────────────────────────
# TRANSITIONS
# ────────────────────────────────────────────


class TestTransitions:

    def test_approve_without_send_on_approve(self, db):
        tenant = make_tenant(db, send_on_approve=False)
        provider = FakeProvider()
        service = ReviewService(db, DeliveryOrchestrator(db, provider, delay_ms=0))
        item = service.create_review(tenant.id, draft())

        assert _run(service.approve_and_send(item.id, "manager")) is True
        db.refresh(item)
        assert item.status == ReviewStatus.APPROVED.value
        assert item.reviewed_by == "manager"
        assert provider.sent == []

    def test_approve_sends_on_approve(self, db):
        tenant = make_tenant(db, send_on_approve=True)
        provider = FakeProvider()
        service = ReviewService(db, DeliveryOrchestrator(db, provider, delay_ms=0))
        item = service.create_review(tenant.id, draft())

        assert _run(service.approve_and_send(item.id, "manager")) is True
        db.refresh(item)
        assert item.status == ReviewStatus.SENT.value
        assert item.external_id == "ext-1"
        assert item.sent_at is not None
        assert provider.sent == [(PHONE, "Good morning, Ana!")]

    def test_approve_with_failed_delivery(self, db):
        tenant = make_tenant(db, send_on_approve=True)
        provider = FakeProvider(fail_for=[PHONE])
        service = ReviewService(db, DeliveryOrchestrator(db, provider, delay_ms=0))
        item = service.create_review(tenant.id, draft())

        assert _run(service.approve_and_send(item.id, "manager")) is False
        db.refresh(item)
        assert item.status == ReviewStatus.FAILED.value
        assert item.error_message == "provider timeout"

    def test_edit_and_approve_sends_edited_text(self, db):
        tenant = make_tenant(db, send_on_approve=True)
        provider = FakeProvider()
        service = ReviewService(db, DeliveryOrchestrator(db, provider, delay_ms=0))
        item = service.create_review(tenant.id, draft("original"))

        assert _run(service.edit_and_approve(item.id, "  edited text  ", "manager")) is True
        db.refresh(item)
        assert item.draft_text == "original"
        assert item.edited_text == "edited text"
        assert provider.sent == [(PHONE, "edited text")]
        entry = db.query(DeliveryLogEntry).one()
        assert entry.body_text == "edited text"
        assert entry.review_item_id == item.id

    def test_edit_with_empty_text_is_refused(self, db):
        tenant = make_tenant(db)
        service = ReviewService(db)
        item = service.create_review(tenant.id, draft())
        before = snapshot(item)

        assert _run(service.edit_and_approve(item.id, "   ", "manager")) is False
        db.refresh(item)
        assert snapshot(item) == before

    def test_reject_records_reason(self, db):
        tenant = make_tenant(db)
        service = ReviewService(db)
        item = service.create_review(tenant.id, draft())

        assert service.reject(item.id, "manager", "tone is off") is True
        db.refresh(item)
        assert item.status == ReviewStatus.REJECTED.value
        assert item.error_message == "tone is off"

    def test_invalid_transitions_change_nothing(self, db):
        tenant = make_tenant(db, send_on_approve=False)
        service = ReviewService(db)
        rejected = service.create_review(tenant.id, draft())
        service.reject(rejected.id, "manager")
        approved = service.create_review(tenant.id, draft())
        _run(service.approve_and_send(approved.id, "manager"))

        for item in (rejected, approved):
            db.refresh(item)
            before = snapshot(item)
            assert _run(service.approve_and_send(item.id, "someone")) is False
            assert _run(service.edit_and_approve(item.id, "new", "someone")) is False
            assert service.reject(item.id, "someone") is False
            db.refresh(item)
            assert snapshot(item) == before

    def test_unknown_id(self, db):
        service = ReviewService(db)
        assert _run(service.approve_and_send("missing", "manager")) is False
        assert service.reject("missing", "manager") is False
        assert service.retry_failed("missing", "manager") is None


class TestRetryFailed:

    def test_retry_creates_pending_copy(self, db):
        tenant = make_tenant(db, send_on_approve=True)
        service = ReviewService(db, DeliveryOrchestrator(db, FakeProvider(fail_for=[PHONE]), delay_ms=0))
        item = service.create_review(tenant.id, draft("original"))
        _run(service.edit_and_approve(item.id, "edited", "manager"))

        copy = service.retry_failed(item.id, "manager")

        assert copy is not None and copy.id != item.id
        assert copy.status == ReviewStatus.PENDING.value
        assert copy.draft_text == "edited"
        db.refresh(item)
        assert item.status == ReviewStatus.FAILED.value
        assert db.query(ReviewItem).count() == 2

    def test_retry_refused_for_non_failed(self, db):
        tenant = make_tenant(db)
        service = ReviewService(db)
        item = service.create_review(tenant.id, draft())
        assert service.retry_failed(item.id, "manager") is None
