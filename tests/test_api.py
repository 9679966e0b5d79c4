"""
HTTP tests through FastAPI's TestClient.

The app's database dependency is pointed at the test session and the
messaging provider at a recording double. Lifespan events are not run, so
the scheduler stays off.
"""
from datetime import date

import pytest
from apscheduler.triggers.cron import CronTrigger
from fastapi.testclient import TestClient

from salescoach import scheduler as sched
from salescoach.api.deps import get_optional_provider, get_provider
from salescoach.connectors.whatsapp import MetaWhatsAppConnector, SendResult, TwilioWhatsAppConnector
from salescoach.main import app
from salescoach.models.base import get_db
from salescoach.models.messaging import ReviewItem, ReviewStatus

from conftest import FakeProvider, make_tenant, make_seller, add_sale, add_goal


class RecordingMeta(MetaWhatsAppConnector):
    """Meta connector with webhook parsing intact and sending recorded"""

    def __init__(self):
        super().__init__("token", "1234567890", app_secret="app-secret")
        self.sent = []

    async def send(self, to_address, body, tenant_id):
        self.sent.append((to_address, body))
        return SendResult(success=True, external_id=f"wamid.out{len(self.sent)}")


class RecordingTwilio(TwilioWhatsAppConnector):
    """Twilio connector with form parsing intact and sending recorded"""

    def __init__(self):
        super().__init__("AC123", "secret-token", "whatsapp:+14155238886")
        self.sent = []

    async def send(self, to_address, body, tenant_id):
        self.sent.append((to_address, body))
        return SendResult(success=True, external_id=f"SM-out{len(self.sent)}")


@pytest.fixture
def client(db, provider):
    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_optional_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()


def seed(db, **tenant_kwargs):
    tenant = make_tenant(db, **tenant_kwargs)
    ana = make_seller(db, tenant, "S1", name="Ana", phone="+5511900000001")
    add_sale(db, tenant, ana, 100)
    add_sale(db, tenant, ana, 200)
    add_goal(db, tenant, 1000, seller=ana)
    return tenant, ana


# ────────────────────────────────────────────
# BASICS
# ────────────────────────────────────────────


class TestBasics:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"

    def test_pause_and_resume_job(self, client):
        sched.scheduler.add_job(sched.run_stale_sweep, trigger=CronTrigger.from_crontab("0 3 * * *"), id="sweep")
        try:
            assert client.post("/scheduler/jobs/sweep/pause").json()["paused"] is True
            jobs = client.get("/scheduler/jobs").json()["jobs"]
            assert [j["next_run"] for j in jobs if j["id"] == "sweep"] == [None]

            assert client.post("/scheduler/jobs/sweep/resume").json()["paused"] is False
            jobs = client.get("/scheduler/jobs").json()["jobs"]
            assert [j["next_run"] is not None for j in jobs if j["id"] == "sweep"] == [True]

            assert client.post("/scheduler/jobs/missing/pause").status_code == 404
            assert client.post("/scheduler/jobs/missing/resume").status_code == 404
        finally:
            sched.scheduler.remove_all_jobs()

    def test_create_tenant_seeds_schedules(self, client):
        response = client.post("/tenants", json={"code": "acme", "name": "Acme", "review_required": True})
        assert response.status_code == 200
        tenant_id = response.json()["id"]

        schedules = client.get(f"/tenants/{tenant_id}/schedules").json()
        assert schedules["count"] == 3

        duplicate = client.post("/tenants", json={"code": "acme", "name": "Again"})
        assert duplicate.status_code == 409

    def test_unknown_tenant_is_404(self, client):
        assert client.get("/tenants/missing/training/check").status_code == 404

    def test_update_schedule(self, client, db):
        tenant = make_tenant(db)
        ok = client.put(f"/tenants/{tenant.id}/schedules/morning", json={"cron_expression": "15 8 * * *"})
        assert ok.status_code == 200
        assert ok.json()["cron_expression"] == "15 8 * * *"

        bad = client.put(f"/tenants/{tenant.id}/schedules/morning", json={"cron_expression": "nope"})
        assert bad.status_code == 400
        assert client.put(f"/tenants/{tenant.id}/schedules/brunch", json={}).status_code == 400


# ────────────────────────────────────────────
# IMPORT, TRAINING, INSIGHTS
# ────────────────────────────────────────────


class TestTrainingFlow:

    def test_import_train_and_read_insights(self, client, db):
        tenant = make_tenant(db)
        base = f"/tenants/{tenant.id}"
        today = date.today().isoformat()

        assert client.get(f"{base}/training/check").json()["state"] == "no_data"
        assert client.get(f"{base}/training/status").status_code == 404
        assert client.get(f"{base}/insights").status_code == 404

        imported = client.post(f"{base}/data/import", json={
            "sellers": [{"code": "S1", "name": "Ana", "phone": "+5511900000001"}],
            "sales": [{"date": today, "seller_code": "S1", "total_value": 300}],
            "goals": [{"month": today, "seller_code": "S1", "target_value": 1000}],
        })
        assert imported.status_code == 200
        assert imported.json()["training_needed"] is True

        trained = client.post(f"{base}/training/train", json={}).json()
        assert trained["success"] is True
        assert trained["sellers_processed"] == 1
        assert trained["insights_generated"] == 2

        skipped = client.post(f"{base}/training/train", json={}).json()
        assert skipped["skipped"] is True

        forced = client.post(f"{base}/training/retrain").json()
        assert forced["skipped"] is False

        status = client.get(f"{base}/training/status").json()
        assert status["training_needed"] is False
        assert status["status"] == "Up to date"

        insights = client.get(f"{base}/insights")
        assert insights.status_code == 200
        assert insights.json()["data"]["seller_id"] is None

        assert client.post(f"{base}/training/stale").json()["training_needed"] is True
        assert client.get(f"{base}/training/check").json()["training_needed"] is True

    def test_live_insights(self, client, db):
        tenant, ana = seed(db)
        data = client.get(f"/tenants/{tenant.id}/insights/live", params={"seller_id": ana.id}).json()["data"]
        assert data["total_sales"] == 300.0
        assert data["goal_gap"] == 700.0
        assert data["goal_progress"] == 30.0


# ────────────────────────────────────────────
# MESSAGES AND REVIEWS
# ────────────────────────────────────────────


class TestMessagesAndReviews:

    def test_generate_then_approve(self, client, db, provider):
        tenant, ana = seed(db, review_required=True, send_on_approve=True)
        base = f"/tenants/{tenant.id}"

        generated = client.post(f"{base}/messages/generate", params={"moment": "morning"}).json()
        assert generated["messages_queued"] == 1
        assert "delivery" not in generated

        reviews = client.get(f"{base}/reviews", params={"status": "pending"}).json()
        assert reviews["count"] == 1
        review_id = reviews["reviews"][0]["id"]

        approved = client.post(f"{base}/reviews/{review_id}/approve", json={"reviewer": "manager"}).json()
        assert approved["success"] is True
        assert approved["review"]["status"] == "sent"
        assert len(provider.sent) == 1

        again = client.post(f"{base}/reviews/{review_id}/approve", json={"reviewer": "manager"})
        assert again.status_code == 409

        logs = client.get(f"{base}/messages/logs").json()
        assert logs["count"] == 1

    def test_generate_invalid_moment(self, client, db):
        tenant, ana = seed(db)
        response = client.post(f"/tenants/{tenant.id}/messages/generate", params={"moment": "night"})
        assert response.status_code == 400

    def test_auto_approved_generation_delivers(self, client, db, provider):
        tenant, ana = seed(db, review_required=False)
        response = client.post(f"/tenants/{tenant.id}/messages/generate", params={"moment": "evening"}).json()
        assert response["auto_approved"] is True
        assert response["delivery"]["messages_sent"] == 1
        assert provider.sent[0][0] == "+5511900000001"

    def test_edit_reject_and_other_tenant(self, client, db):
        tenant, ana = seed(db, send_on_approve=False)
        other = make_tenant(db, code="other")
        items = []
        for text in ("first", "second"):
            item = ReviewItem(
                tenant_id=tenant.id, moment="midday", recipient_address="+5511900000001",
                recipient_name="Ana", draft_text=text, status=ReviewStatus.PENDING.value,
            )
            db.add(item)
            db.commit()
            items.append(item.id)
        base = f"/tenants/{tenant.id}/reviews"

        assert client.post(f"{base}/{items[0]}/edit", json={"text": "  "}).status_code == 400
        edited = client.post(f"{base}/{items[0]}/edit", json={"text": "better"}).json()
        assert edited["review"]["status"] == "approved"
        assert edited["review"]["edited_text"] == "better"

        rejected = client.post(f"{base}/{items[1]}/reject", json={"reason": "duplicate"}).json()
        assert rejected["review"]["status"] == "rejected"
        assert client.post(f"{base}/{items[1]}/reject", json={}).status_code == 409
        assert client.post(f"{base}/{items[1]}/retry", json={}).status_code == 409

        assert client.get(f"/tenants/{other.id}/reviews/{items[0]}").status_code == 404

    def test_send_approved(self, client, db, provider):
        tenant, ana = seed(db)
        db.add(ReviewItem(
            tenant_id=tenant.id, moment="morning", recipient_address="+5511900000001",
            recipient_name="Ana", draft_text="hello", status=ReviewStatus.APPROVED.value,
        ))
        db.commit()

        result = client.post(f"/tenants/{tenant.id}/messages/send-approved").json()
        assert result["messages_sent"] == 1
        assert client.post(f"/tenants/{tenant.id}/messages/send-approved").json()["messages_sent"] == 0


# ────────────────────────────────────────────
# WEBHOOK
# ────────────────────────────────────────────


class TestWebhook:

    def test_verification_handshake(self, client, monkeypatch):
        from salescoach.api import webhook

        monkeypatch.setattr(webhook.settings, "meta_verify_token", "verify-me")
        ok = client.get("/webhook/whatsapp", params={
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "42",
        })
        assert ok.status_code == 200
        assert ok.text == "42"

        denied = client.get("/webhook/whatsapp", params={
            "hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "42",
        })
        assert denied.status_code == 403

    def test_inbound_message_and_status(self, client, db):
        tenant, ana = seed(db)
        meta = RecordingMeta()
        app.dependency_overrides[get_provider] = lambda: meta

        payload = {"entry": [{"changes": [{"value": {
            "messages": [{"from": "5511900000001", "id": "wamid.in1", "type": "text", "text": {"body": "my goal?"}}],
        }}]}]}
        response = client.post(f"/webhook/whatsapp/{tenant.id}", json=payload)
        assert response.status_code == 200
        assert response.json()["messages"] == 1
        assert meta.sent[0][0] == "+5511900000001"
        assert "30.0% of your goal" in meta.sent[0][1]

        status = {"entry": [{"changes": [{"value": {
            "statuses": [{"id": "wamid.out1", "status": "delivered"}],
        }}]}]}
        response = client.post(f"/webhook/whatsapp/{tenant.id}", json=status)
        assert response.json()["status_updates"] == 1

        conversation = client.get(f"/tenants/{tenant.id}/messages/conversation/5511900000001").json()
        assert [m["direction"] for m in conversation["messages"]] == ["inbound", "outbound"]
        assert conversation["messages"][1]["status"] == "delivered"

    def test_signature_enforced_when_enabled(self, client, db, monkeypatch):
        from salescoach.api import webhook

        tenant, ana = seed(db)
        app.dependency_overrides[get_provider] = lambda: RecordingMeta()
        monkeypatch.setattr(webhook.settings, "webhook_validate_signature", True)

        response = client.post(
            f"/webhook/whatsapp/{tenant.id}", json={"entry": []}, headers={"X-Hub-Signature-256": "sha256=bad"}
        )
        assert response.status_code == 403

    def test_form_body_with_invalid_utf8(self, client, db):
        tenant, ana = seed(db)
        twilio = RecordingTwilio()
        app.dependency_overrides[get_provider] = lambda: twilio

        response = client.post(
            f"/webhook/whatsapp/{tenant.id}",
            content=b"MessageSid=SM1&From=whatsapp%3A%2B5511900000001&Body=my+goal+\xff\xfe",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 200
        assert response.json()["messages"] == 1
        assert twilio.sent[0][0] == "+5511900000001"
        assert "30.0% of your goal" in twilio.sent[0][1]
