"""Stripe webhook reconciliation.

The only path through which payment events mutate Order and AccessGrant
state. Events are authenticated before any field is read.
"""
import json
import logging

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from delish.config import Settings
from delish.email_service import send_unlock_email
from delish.helpers import normalize_email
from delish.models import MapList, Order, SessionToken
from delish.orders import DuplicateOrder, record_purchase, refund_order
from delish.tokens import TokenService

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHARGE_REFUNDED = "charge.refunded"


class InvalidSignature(Exception):
    pass


class InvalidPayload(Exception):
    pass


def verify_event(payload: bytes, sig_header: str | None, secret: str) -> dict:
    """Check the Stripe-Signature header against the raw body and return the event as a dict."""
    if not sig_header:
        raise InvalidSignature("missing signature header")

    try:
        stripe.Webhook.construct_event(payload, sig_header, secret)
    except ValueError as exc:
        raise InvalidPayload(str(exc)) from exc
    except stripe.SignatureVerificationError as exc:
        raise InvalidSignature(str(exc)) from exc

    # Handlers read plain dicts, not StripeObjects.
    event = json.loads(payload)
    if not isinstance(event.get("type"), str):
        raise InvalidPayload("not a stripe event")
    return event


def handle_event(db: Session, event: dict, settings: Settings, tokens: TokenService) -> None:
    event_type = event["type"]
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        handle_checkout_completed(db, obj, settings, tokens)
    elif event_type == CHARGE_REFUNDED:
        handle_charge_refunded(db, obj)
    else:
        logger.info("webhook_event_ignored", extra={"event_id": event.get("id"), "event_type": event_type})


def handle_checkout_completed(
    db: Session, checkout: dict, settings: Settings, tokens: TokenService
) -> Order | None:
    session_id = checkout.get("id")
    metadata = checkout.get("metadata") or {}
    list_id = metadata.get("list_id")
    owner_id = metadata.get("owner_id")

    if not session_id or not list_id or not owner_id:
        logger.error("checkout_missing_metadata", extra={"session_id": session_id})
        return None

    map_list = db.get(MapList, list_id)
    if not map_list:
        logger.error("checkout_list_not_found", extra={"session_id": session_id, "list_id": list_id})
        return None

    buyer_email = (checkout.get("customer_details") or {}).get("email") or checkout.get("customer_email")
    if not buyer_email:
        logger.error("checkout_missing_email", extra={"session_id": session_id, "list_id": list_id})
        return None

    try:
        order, _ = record_purchase(
            db,
            map_list=map_list,
            buyer_email=normalize_email(buyer_email),
            amount_cents=checkout.get("amount_total") or 0,
            currency=checkout.get("currency") or map_list.currency,
            session_id=session_id,
            payment_id=checkout.get("payment_intent"),
        )
        issued = tokens.issue(order.id, map_list.id, order.buyer_email)
        db.add(SessionToken(id=issued.jti, order_id=order.id, expires_at=issued.expires_at))
        db.commit()
    except (DuplicateOrder, IntegrityError):
        db.rollback()
        logger.info("checkout_already_processed", extra={"session_id": session_id})
        return None

    # Order stays on send failure; buyers recover via /access/resend.
    unlock_url = f"{settings.app_url}/unlock/{issued.token}"
    if not send_unlock_email(settings, order.buyer_email, unlock_url, map_list.title):
        logger.warning("unlock_email_failed", extra={"order_id": order.id})

    return order


def handle_charge_refunded(db: Session, charge: dict) -> Order | None:
    payment_id = charge.get("payment_intent")
    if not payment_id:
        logger.error("refund_missing_payment_intent", extra={"event_id": charge.get("id")})
        return None

    order = db.query(Order).filter_by(stripe_payment_id=payment_id).first()
    if not order:
        logger.warning("refund_order_not_found", extra={"payment_id": payment_id})
        return None

    refund_order(db, order)
    db.commit()
    return order
