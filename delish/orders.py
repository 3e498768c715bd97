"""Order lifecycle: PAID on confirmed checkout, PAID -> REFUNDED on refund.

There is no PENDING state; an Order row only exists once Stripe has confirmed
payment.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from delish.models import ORDER_PAID, ORDER_REFUNDED, AccessGrant, MapList, Order

logger = logging.getLogger(__name__)


class DuplicateOrder(Exception):
    """The checkout session already produced an Order."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id


def record_purchase(
    db: Session,
    *,
    map_list: MapList,
    buyer_email: str,
    amount_cents: int,
    currency: str,
    session_id: str,
    payment_id: str | None,
) -> tuple[Order, AccessGrant]:
    """
    Create a PAID Order and its AccessGrant inside the caller's transaction.

    Raises DuplicateOrder when the session id is already recorded, whether found
    by the pre-check or by the unique constraint on a concurrent insert. The
    session is rolled back in the latter case.
    """
    existing = db.query(Order).filter_by(stripe_session_id=session_id).first()
    if existing:
        raise DuplicateOrder(session_id)

    order = Order(
        buyer_email=buyer_email,
        list_id=map_list.id,
        amount_cents=amount_cents,
        currency=currency,
        stripe_session_id=session_id,
        stripe_payment_id=payment_id,
        status=ORDER_PAID,
    )
    db.add(order)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateOrder(session_id)

    grant = AccessGrant(
        order_id=order.id,
        list_id=map_list.id,
        buyer_email=buyer_email,
        revoked=False,
    )
    db.add(grant)
    db.flush()

    logger.info(
        "order_paid",
        extra={"order_id": order.id, "list_id": map_list.id, "session_id": session_id},
    )
    return order, grant


def refund_order(db: Session, order: Order) -> bool:
    """Move a PAID order to REFUNDED and revoke its grants. Returns False if already refunded."""
    if order.status == ORDER_REFUNDED:
        logger.info("order_already_refunded", extra={"order_id": order.id})
        return False

    order.status = ORDER_REFUNDED
    revoked = (
        db.query(AccessGrant)
        .filter(AccessGrant.order_id == order.id)
        .update({AccessGrant.revoked: True}, synchronize_session="fetch")
    )
    db.flush()

    logger.info("order_refunded", extra={"order_id": order.id, "list_id": order.list_id})
    logger.debug("access_grants_revoked count=%s", revoked, extra={"order_id": order.id})
    return True


def find_paid_orders(db: Session, email: str, list_id: str) -> list[Order]:
    """PAID orders for email/list that still hold at least one non-revoked grant."""
    return (
        db.query(Order)
        .join(AccessGrant, AccessGrant.order_id == Order.id)
        .filter(
            Order.buyer_email == email,
            Order.list_id == list_id,
            Order.status == ORDER_PAID,
            AccessGrant.buyer_email == email,
            AccessGrant.revoked.is_(False),
        )
        .distinct()
        .all()
    )
