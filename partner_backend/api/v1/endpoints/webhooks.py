"""
Stripe webhook receiver.

Only ``checkout.session.completed`` is acted on: the customer email is handed
to the side-effect queue, which provisions (or reuses) a Tapfiliate affiliate.
"""
import stripe
from fastapi import APIRouter, Header, HTTPException, Request, status

import partner_backend.config as config
from partner_backend.api.deps import enqueue_task
from partner_backend.jobs.tasks import CheckoutAffiliateTask
from partner_backend.models.schemas import ResponseBase
from partner_backend.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _checkout_details(session_obj) -> tuple[str | None, str | None, str | None]:
    details = session_obj.get("customer_details") or {}
    email = details.get("email") or session_obj.get("customer_email")
    return email, details.get("name"), session_obj.get("id")


@router.post("/stripe", response_model=ResponseBase, summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature")
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    secret = config.STRIPE_WEBHOOK_SECRET
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured", request_id=request_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook not configured")
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, secret)
    except ValueError:
        logger.warning("Invalid Stripe webhook payload", request_id=request_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature", request_id=request_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    event_type = event["type"]
    if event_type != "checkout.session.completed":
        logger.debug("Ignoring Stripe event", event_type=event_type, request_id=request_id)
        return ResponseBase(message="ignored", data={"event_type": event_type})

    email, name, checkout_session_id = _checkout_details(event["data"]["object"])
    if not email:
        logger.warning("Checkout session has no customer email", checkout_session_id=checkout_session_id, request_id=request_id)
        return ResponseBase(message="ignored", data={"event_type": event_type})

    enqueue_task(
        request,
        CheckoutAffiliateTask(email=email, name=name, checkout_session_id=checkout_session_id, correlation_id=request_id),
        priority="high",
    )
    logger.info("Checkout affiliate task queued", checkout_session_id=checkout_session_id, request_id=request_id)
    return ResponseBase(message="queued", data={"event_type": event_type})
