from __future__ import annotations

import dataclasses

import pytest

from conftest import bearer

from undercovered.auth.crud import get_user_by_id
from undercovered.billing import stripe_billing
from undercovered.billing.stripe_billing import handle_stripe_event, process_stripe_webhook
from undercovered.db import connect
from undercovered.errors import NotConfigured


def event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def user_row(cfg, user_id):
    with connect(cfg.DB_DSN) as conn:
        return dict(get_user_by_id(conn, user_id))


def test_plans_catalogue_is_public(client):
    r = client.get("/api/payment/plans")
    assert r.status_code == 200
    plans = {p["id"]: p for p in r.json()["data"]["plans"]}
    assert set(plans) == {"basic", "premium", "enterprise"}
    assert plans["enterprise"]["limits"]["media_uploads"] == -1
    assert plans["basic"]["prices"]["monthly"]["amount"] == 999


def test_subscription_summary_without_stripe(client, alice):
    r = client.get("/api/payment/subscription", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    sub = r.json()["data"]["subscription"]
    assert sub["plan"] == "free"
    assert sub["status"] == "inactive"


def test_cancel_without_subscription(client, alice):
    r = client.post("/api/payment/cancel-subscription", headers=bearer(alice["access_token"]))
    assert r.status_code == 400
    assert r.json()["message"] == "No active subscription found"


def test_webhook_unconfigured_is_501(client):
    r = client.post("/api/payment/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})
    assert r.status_code == 501
    assert r.json()["success"] is False


def test_webhook_requires_secret(cfg):
    keyed = dataclasses.replace(cfg, STRIPE_SECRET_KEY="sk_test_123")
    with pytest.raises(NotConfigured):
        process_stripe_webhook(keyed, payload_bytes=b"{}", signature="t=1,v1=abc")


def test_subscription_events_update_user(client, cfg, alice):
    uid = alice["user"]["user_id"]
    created = event(
        "evt_1",
        "customer.subscription.updated",
        {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "current_period_end": 1767225600,
            "cancel_at_period_end": False,
            "metadata": {"user_id": str(uid), "plan": "premium"},
        },
    )
    assert handle_stripe_event(cfg, created) == ("evt_1", True)
    row = user_row(cfg, uid)
    assert row["subscription_plan"] == "premium"
    assert row["subscription_status"] == "active"
    assert row["stripe_customer_id"] == "cus_1"
    assert row["current_period_end"] == "2026-01-01T00:00:00Z"

    # Replays are ignored.
    assert handle_stripe_event(cfg, created) == ("evt_1", False)

    failed = event("evt_2", "invoice.payment_failed", {"customer": "cus_1"})
    handle_stripe_event(cfg, failed)
    assert user_row(cfg, uid)["subscription_status"] == "past_due"

    deleted = event("evt_3", "customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"})
    handle_stripe_event(cfg, deleted)
    row = user_row(cfg, uid)
    assert row["subscription_plan"] == "free"
    assert row["subscription_status"] == "cancelled"
    assert row["stripe_subscription_id"] is None


def test_payment_events_record_history(client, cfg, alice):
    uid = alice["user"]["user_id"]
    ok_evt = event(
        "evt_10",
        "payment_intent.succeeded",
        {"id": "pi_1", "amount": 1999, "currency": "usd", "metadata": {"user_id": uid, "plan": "premium"}},
    )
    bad_evt = event(
        "evt_11",
        "payment_intent.payment_failed",
        {"id": "pi_2", "amount": 999, "metadata": {"user_id": uid}, "last_payment_error": {"message": "card declined"}},
    )
    handle_stripe_event(cfg, ok_evt)
    handle_stripe_event(cfg, bad_evt)

    r = client.get("/api/payment/history", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    payments = r.json()["data"]["payments"]
    assert {p["stripe_payment_intent_id"]: p["status"] for p in payments} == {"pi_1": "succeeded", "pi_2": "failed"}

    me = client.get("/api/auth/me", headers=bearer(alice["access_token"])).json()["data"]["user"]
    assert me["subscription"]["plan"] == "premium"
    assert me["is_premium"] is True

    stats = client.get("/api/user/stats", headers=bearer(alice["access_token"])).json()["data"]["stats"]
    assert stats["payments"] == {"total_payments": 2, "total_amount": 1999, "successful_payments": 1}


def test_unknown_event_type_is_recorded_once(client, cfg):
    assert handle_stripe_event(cfg, event("evt_21", "charge.refunded", {})) == ("evt_21", True)
    assert handle_stripe_event(cfg, event("evt_21", "charge.refunded", {})) == ("evt_21", False)


def test_failing_handler_leaves_event_unrecorded(client, cfg, alice, monkeypatch):
    def boom(conn, obj):
        raise RuntimeError("handler failed")

    monkeypatch.setitem(stripe_billing._HANDLERS, "invoice.payment_failed", boom)
    with pytest.raises(RuntimeError):
        handle_stripe_event(cfg, event("evt_30", "invoice.payment_failed", {"customer": "cus_x"}))

    with connect(cfg.DB_DSN) as conn:
        assert conn.execute("SELECT 1 FROM stripe_events WHERE event_id='evt_30'").fetchone() is None

    monkeypatch.undo()
    assert handle_stripe_event(cfg, event("evt_30", "invoice.payment_failed", {"customer": "cus_x"})) == ("evt_30", True)
