from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from enrichdesk.deps import get_current_user
from enrichdesk.models.user import User
from enrichdesk.services import payments as payments_service

router = APIRouter()


class CheckoutRequest(BaseModel):
    pack_id: str


@router.post("/checkout")
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: User = Depends(get_current_user),
):
    """Create a Stripe Checkout session for a credit pack; frontend redirects to `url`."""
    return await payments_service.create_checkout(user, body.pack_id, origin=request.headers.get("origin"))


@router.post("/webhook")
async def stripe_webhook(request: Request, stripe_signature: str | None = Header(None, alias="Stripe-Signature")):
    """Stripe webhook: checkout.session.completed -> apply credits (idempotent)."""
    body = await request.body()
    return await payments_service.handle_webhook(body, stripe_signature)
