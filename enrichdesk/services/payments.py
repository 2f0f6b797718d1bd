"""Stripe checkout and webhook: verified, idempotent credit purchase."""

import json

import stripe
from beanie import PydanticObjectId
from bson.errors import InvalidId

from enrichdesk.core.audit import log_event
from enrichdesk.core.config import get_settings
from enrichdesk.core.exceptions import BadRequestError, SignatureVerificationError
from enrichdesk.core.logging import get_logger
from enrichdesk.models.credit_transaction import CreditTransaction, TransactionKind
from enrichdesk.models.user import User
from enrichdesk.services import ledger, packs

log = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


async def create_checkout(user: User, pack_code: str, origin: str | None = None) -> dict:
    """Create a Stripe Checkout session for one pack; metadata carries what the webhook needs."""
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise BadRequestError("Payments not configured")
    pack = await packs.get_active_pack(pack_code)
    base = (origin or settings.public_site_url).rstrip("/")
    metadata = {"pack_id": pack.code, "credits": str(pack.credits), "user_id": str(user.id)}
    session = stripe.checkout.Session.create(
        api_key=settings.stripe_secret_key,
        mode="payment",
        customer_email=user.email,
        line_items=[
            {
                "price_data": {
                    "currency": settings.stripe_currency,
                    "product_data": {"name": pack.name, "description": f"{pack.credits} credits"},
                    "unit_amount": pack.price_cents,
                },
                "quantity": 1,
            }
        ],
        success_url=f"{base}/app?payment=success",
        cancel_url=f"{base}/pricing?payment=cancel",
        invoice_creation={"enabled": True, "invoice_data": {"metadata": {"pack_id": pack.code, "credits": str(pack.credits)}}},
        metadata=metadata,
    )
    log.info("checkout_created", user_id=str(user.id), pack_id=pack.code, session_id=session["id"])
    return {"url": session["url"], "session_id": session["id"]}


async def complete_purchase(
    owner_id: PydanticObjectId,
    pack_id: str | None,
    credits: int,
    idempotency_key: str,
    reference_id: str | None = None,
) -> tuple[CreditTransaction, bool]:
    """Grant purchased credits once per idempotency key. Creates the account if needed."""
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise BadRequestError("Purchased credits must be a positive integer", details={"credits": credits})
    if not idempotency_key:
        raise BadRequestError("Missing idempotency key for purchase")
    account = await ledger.get_or_create_account(owner_id)
    entry, applied = await ledger.apply_delta(
        account.id,
        credits,
        TransactionKind.PURCHASE,
        f"Credit pack purchase - {credits} credits",
        related_pack_id=pack_id,
        idempotency_key=idempotency_key,
        reference_id=reference_id,
    )
    if applied:
        await log_event(
            None,
            "payment_completed",
            "credit_account",
            str(account.id),
            {"owner_id": str(owner_id), "pack_id": pack_id, "credits": credits, "reference_id": reference_id},
        )
    return entry, applied


def _parse_owner_id(raw: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(raw)
    except (InvalidId, TypeError, ValueError):
        raise BadRequestError("Invalid user_id in session metadata") from None


def _parse_credits(raw: str) -> int:
    try:
        credits = int(str(raw).strip())
    except ValueError:
        raise BadRequestError("Invalid credits in session metadata", details={"credits": raw}) from None
    if credits <= 0:
        raise BadRequestError("Invalid credits in session metadata", details={"credits": raw})
    return credits


def _verify_event(payload: bytes, signature: str | None, secret: str, tolerance: int) -> dict:
    """Check the Stripe-Signature header with the SDK, then read the body as plain dicts."""
    if not signature:
        raise SignatureVerificationError("Missing signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        log.warning("webhook_signature_rejected", reason=str(e))
        raise SignatureVerificationError("Invalid webhook signature") from None
    except ValueError:
        raise BadRequestError("Malformed webhook payload") from None
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise BadRequestError("Malformed webhook payload")
    return event


async def handle_webhook(payload: bytes, signature: str | None) -> dict:
    """Verify signature, then apply `checkout.session.completed` once per payment."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    event = _verify_event(
        payload,
        signature,
        settings.stripe_webhook_secret,
        settings.stripe_webhook_tolerance_seconds,
    )

    event_id = event.get("id")
    event_type = event.get("type")
    if event_type != CHECKOUT_COMPLETED:
        log.info("webhook_ignored", event_id=event_id, event_type=event_type)
        return {"received": True, "processed": False}

    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    user_id, credits_raw, pack_id = metadata.get("user_id"), metadata.get("credits"), metadata.get("pack_id")
    if not user_id or not credits_raw:
        log.warning("webhook_missing_metadata", event_id=event_id, session_id=session.get("id"))
        return {"received": True, "processed": False}

    owner_id = _parse_owner_id(user_id)
    credits = _parse_credits(credits_raw)
    payment_intent = session.get("payment_intent")
    idempotency_key = payment_intent or session.get("id") or event_id
    if not idempotency_key:
        raise BadRequestError("Webhook event has no payment reference")

    entry, applied = await complete_purchase(
        owner_id,
        pack_id,
        credits,
        idempotency_key=idempotency_key,
        reference_id=payment_intent or session.get("id"),
    )
    log.info(
        "payment_processed" if applied else "payment_replayed",
        event_id=event_id,
        owner_id=str(owner_id),
        credits=credits,
        transaction_id=str(entry.id),
    )
    return {"received": True, "processed": applied, "transaction_id": str(entry.id)}
