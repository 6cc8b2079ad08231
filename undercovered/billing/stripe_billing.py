from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from undercovered.auth.crud import get_user_by_id, get_user_by_stripe_customer_id, update_user_subscription
from undercovered.config import Config
from undercovered.db import connect, insert_returning_id
from undercovered.errors import NotConfigured, UpstreamFailure, ValidationError
from undercovered.util.time import iso_in, utcnow_iso


def _debug(msg: str) -> None:
    print(f"[billing] {msg}")


def _ts_to_iso(ts: int | float | None) -> Optional[str]:
    if ts is None:
        return None
    try:
        dt = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    # Keep the project convention: ISO-8601 with trailing Z
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _get_stripe(cfg: Config):
    try:
        import stripe  # type: ignore
    except ImportError as e:
        raise NotConfigured("Stripe is not installed on this server") from e

    if not cfg.STRIPE_SECRET_KEY:
        raise NotConfigured("Stripe is not configured")

    stripe.api_key = cfg.STRIPE_SECRET_KEY
    return stripe


def is_configured(cfg: Config) -> bool:
    return bool(cfg.STRIPE_SECRET_KEY)


def _subscription_status(raw: Optional[str]) -> str:
    s = (raw or "").strip().lower()
    if s in ("active", "trialing"):
        return "active"
    if s in ("past_due", "unpaid"):
        return "past_due"
    if s in ("canceled", "cancelled"):
        return "cancelled"
    return "inactive"


def _metadata_user_id(obj: Dict[str, Any]) -> Optional[int]:
    meta = obj.get("metadata") or {}
    raw = meta.get("user_id") or meta.get("userId")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _resolve_user(conn: Any, obj: Dict[str, Any]) -> Optional[Any]:
    """Map a Stripe object to a user by metadata user id, then by customer id."""
    user_id = _metadata_user_id(obj)
    if user_id is not None:
        row = get_user_by_id(conn, user_id)
        if row is not None:
            return row
    customer_id = obj.get("customer")
    if customer_id:
        return get_user_by_stripe_customer_id(conn, str(customer_id))
    return None


# -----------------------------
# Webhooks
# -----------------------------


def verify_webhook_event(cfg: Config, *, payload_bytes: bytes, signature: str | None) -> Dict[str, Any]:
    """Check the Stripe-Signature header and return the event as a plain dict."""
    stripe = _get_stripe(cfg)
    if not cfg.STRIPE_WEBHOOK_SECRET:
        raise NotConfigured("Stripe webhook secret is not configured")
    if not signature:
        raise ValidationError("Webhook Error: missing Stripe-Signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload_bytes.decode("utf-8"),
            signature,
            cfg.STRIPE_WEBHOOK_SECRET,
        )
    except stripe.SignatureVerificationError as e:
        _debug(f"Webhook signature verification failed: {e}")
        raise ValidationError(f"Webhook Error: {e}")

    try:
        return json.loads(payload_bytes)
    except ValueError as e:
        raise ValidationError(f"Webhook Error: {e}")


def process_stripe_webhook(cfg: Config, *, payload_bytes: bytes, signature: str | None) -> Tuple[str, bool]:
    """Verify + process a Stripe webhook.

    Returns: (event_id, processed)
    """
    event = verify_webhook_event(cfg, payload_bytes=payload_bytes, signature=signature)
    return handle_stripe_event(cfg, event)


def handle_stripe_event(cfg: Config, event: Dict[str, Any]) -> Tuple[str, bool]:
    """Apply one verified event. Each event id is applied at most once.

    The idempotency row and the handler's writes share a transaction, so a failing
    handler leaves no record and Stripe's retry re-processes the event.
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}

    with connect(cfg.DB_DSN) as conn:
        existing = conn.execute("SELECT 1 FROM stripe_events WHERE event_id=?", (event_id,)).fetchone()
        if existing is not None:
            return event_id, False
        conn.execute(
            "INSERT INTO stripe_events (event_id, event_type, received_at) VALUES (?,?,?)",
            (event_id, event_type, utcnow_iso()),
        )

        handler = _HANDLERS.get(event_type)
        if handler is None:
            _debug(f"Unhandled event type {event_type}")
        else:
            handler(conn, obj)

    return event_id, True


def _upsert_payment(
    conn: Any,
    obj: Dict[str, Any],
    *,
    status: str,
    failure_reason: Optional[str] = None,
) -> Optional[int]:
    intent_id = obj.get("id")
    if not intent_id:
        return None
    user = _resolve_user(conn, obj)
    user_id = int(user["user_id"]) if user is not None else None
    now = utcnow_iso()

    existing = conn.execute(
        "SELECT payment_id FROM payments WHERE stripe_payment_intent_id=?",
        (str(intent_id),),
    ).fetchone()
    if existing is not None:
        conn.execute(
            "UPDATE payments SET status=?, failure_reason=?, updated_at=? WHERE payment_id=?",
            (status, failure_reason, now, int(existing["payment_id"])),
        )
        return user_id

    insert_returning_id(
        conn,
        """
        INSERT INTO payments (
            user_id, stripe_payment_intent_id, amount, currency, status, description,
            failure_reason, created_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            str(intent_id),
            int(obj.get("amount") or 0),
            str(obj.get("currency") or "usd"),
            status,
            obj.get("description"),
            failure_reason,
            now,
            now,
        ),
        "payment_id",
    )
    return user_id


def _handle_payment_succeeded(conn: Any, obj: Dict[str, Any]) -> None:
    user_id = _upsert_payment(conn, obj, status="succeeded")
    meta = obj.get("metadata") or {}
    plan = meta.get("plan")
    if user_id is None or not plan:
        return
    days = 365 if meta.get("billing_cycle", meta.get("billingCycle")) == "yearly" else 30
    update_user_subscription(
        conn,
        user_id=user_id,
        plan=str(plan),
        subscription_status="active",
        current_period_end=iso_in(days=days),
    )


def _handle_payment_failed(conn: Any, obj: Dict[str, Any]) -> None:
    err = obj.get("last_payment_error") or {}
    _upsert_payment(conn, obj, status="failed", failure_reason=err.get("message"))


def _handle_subscription_changed(conn: Any, obj: Dict[str, Any]) -> None:
    user = _resolve_user(conn, obj)
    if user is None:
        _debug(f"subscription {obj.get('id')}: could not map to user")
        return
    plan = (obj.get("metadata") or {}).get("plan")
    update_user_subscription(
        conn,
        user_id=int(user["user_id"]),
        plan=str(plan) if plan else None,
        subscription_status=_subscription_status(obj.get("status")),
        stripe_customer_id=str(obj["customer"]) if obj.get("customer") else None,
        stripe_subscription_id=str(obj["id"]) if obj.get("id") else None,
        current_period_end=_ts_to_iso(obj.get("current_period_end")),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
    )


def _handle_subscription_deleted(conn: Any, obj: Dict[str, Any]) -> None:
    user = _resolve_user(conn, obj)
    if user is None:
        return
    update_user_subscription(
        conn,
        user_id=int(user["user_id"]),
        plan="free",
        subscription_status="cancelled",
        cancel_at_period_end=False,
        clear_subscription=True,
    )


def _invoice_period_end(invoice: Dict[str, Any]) -> Optional[str]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines and isinstance(lines, list):
        return _ts_to_iso((lines[0].get("period") or {}).get("end"))
    return None


def _handle_invoice_succeeded(conn: Any, obj: Dict[str, Any]) -> None:
    customer_id = obj.get("customer")
    if not customer_id or not obj.get("subscription"):
        return
    user = get_user_by_stripe_customer_id(conn, str(customer_id))
    if user is None:
        return
    update_user_subscription(
        conn,
        user_id=int(user["user_id"]),
        subscription_status="active",
        current_period_end=_invoice_period_end(obj),
    )


def _handle_invoice_failed(conn: Any, obj: Dict[str, Any]) -> None:
    customer_id = obj.get("customer")
    if not customer_id:
        return
    user = get_user_by_stripe_customer_id(conn, str(customer_id))
    if user is None:
        return
    update_user_subscription(conn, user_id=int(user["user_id"]), subscription_status="past_due")


_HANDLERS = {
    "payment_intent.succeeded": _handle_payment_succeeded,
    "payment_intent.payment_failed": _handle_payment_failed,
    "customer.subscription.created": _handle_subscription_changed,
    "customer.subscription.updated": _handle_subscription_changed,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.payment_succeeded": _handle_invoice_succeeded,
    "invoice.payment_failed": _handle_invoice_failed,
}


# -----------------------------
# Subscription management
# -----------------------------


def subscription_summary(cfg: Config, user: Dict[str, Any]) -> Dict[str, Any]:
    """Local subscription state, enriched from Stripe when it is reachable."""
    sub = dict(user.get("subscription") or {})
    out: Dict[str, Any] = {
        "plan": sub.get("plan") or "free",
        "status": sub.get("status") or "inactive",
        "current_period_end": sub.get("current_period_end"),
        "cancel_at_period_end": bool(sub.get("cancel_at_period_end")),
    }

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, int(user["user_id"]))
    subscription_id = row["stripe_subscription_id"] if row is not None else None
    if not subscription_id or not is_configured(cfg):
        return out

    stripe = _get_stripe(cfg)
    try:
        remote = stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        _debug(f"Failed to get Stripe subscription {subscription_id}: {e}")
        return out
    out["stripe_status"] = remote["status"]
    out["next_payment"] = _ts_to_iso(remote["current_period_end"])
    out["cancel_at_period_end"] = bool(remote["cancel_at_period_end"])
    return out


def cancel_subscription(cfg: Config, *, user_id: int) -> Dict[str, Any]:
    """Ask Stripe to cancel at period end and mirror the flag locally."""
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, user_id)
    subscription_id = row["stripe_subscription_id"] if row is not None else None
    if not subscription_id:
        raise ValidationError("No active subscription found")

    stripe = _get_stripe(cfg)
    try:
        stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
    except stripe.StripeError as e:
        _debug(f"Cancel subscription failed for user_id={user_id}: {e}")
        raise UpstreamFailure("Failed to cancel subscription")

    with connect(cfg.DB_DSN) as conn:
        update_user_subscription(conn, user_id=user_id, cancel_at_period_end=True)
        row = get_user_by_id(conn, user_id)
    return {"cancel_at_period_end": True, "current_period_end": row["current_period_end"] if row is not None else None}


def list_payments(conn: Any, *, user_id: int, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[list, int]:
    where = "WHERE user_id=?"
    params: list = [int(user_id)]
    if status:
        where += " AND status=?"
        params.append(status)
    total = conn.execute(f"SELECT COUNT(*) AS n FROM payments {where}", params).fetchone()["n"]
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    rows = conn.execute(
        f"SELECT * FROM payments {where} ORDER BY created_at DESC, payment_id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [dict(r) for r in rows], int(total)
