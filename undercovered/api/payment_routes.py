from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from undercovered.auth.deps import AuthContext, get_auth_context, get_cfg
from undercovered.billing import stripe_billing
from undercovered.config import Config
from undercovered.db import connect
from undercovered.plans import catalogue_with_limits

from .common import ok, pagination


router = APIRouter()


@router.get("/plans")
def plans(cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    return ok({"plans": catalogue_with_limits(cfg.PLAN_LIMITS)})


@router.get("/subscription")
def subscription(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    return ok({"subscription": stripe_billing.subscription_summary(cfg, ctx.user)})


@router.get("/history")
def history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items, total = stripe_billing.list_payments(conn, user_id=ctx.user_id, status=status, page=page, limit=limit)
    return ok({"payments": items, "pagination": pagination(page, limit, total)})


@router.post("/cancel-subscription")
def cancel_subscription(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    out = stripe_billing.cancel_subscription(cfg, user_id=ctx.user_id)
    return ok(out, "Subscription will be cancelled at the end of the current period")


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Stripe webhook endpoint.

    Configure this in Stripe as https://YOUR_DOMAIN/api/payment/webhook.
    The raw body is needed for signature verification.
    """
    payload_bytes = await request.body()
    event_id, processed = stripe_billing.process_stripe_webhook(
        cfg, payload_bytes=payload_bytes, signature=stripe_signature
    )
    return {"success": True, "received": True, "event_id": event_id, "processed": processed}
