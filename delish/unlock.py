"""Resolve bearer links to paid content.

Unlock tokens pass two independent gates in sequence: the stateless signature
check in :class:`delish.tokens.TokenService`, then the persisted SessionToken,
Order and AccessGrant. Denial reasons are for logs only.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from delish.models import ORDER_PAID, AccessGrant, MapList, Order, SessionToken, utcnow
from delish.tokens import TokenService

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    INVALID_TOKEN = "invalid_token"
    ALREADY_USED_OR_UNKNOWN = "already_used_or_unknown"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    ORDER_NOT_FOUND = "order_not_found"
    NOT_PAID = "not_paid"
    NO_ACCESS_GRANT = "no_access_grant"
    REVOKED = "revoked"


@dataclass
class UnlockResult:
    order: Order | None = None
    map_list: MapList | None = None
    grant: AccessGrant | None = None
    reason: DenialReason | None = None

    @property
    def granted(self) -> bool:
        return self.reason is None


def _deny(reason: DenialReason, **extra) -> UnlockResult:
    logger.info("unlock_denied", extra={"reason": reason.value, **extra})
    return UnlockResult(reason=reason)


def consume_session_token(db: Session, jti: str) -> bool:
    """Delete the single-use record if it is still there. True only for the caller that deleted it."""
    deleted = (
        db.query(SessionToken)
        .filter(SessionToken.id == jti)
        .delete(synchronize_session=False)
    )
    return deleted == 1


def resolve_unlock(db: Session, tokens: TokenService, token: str, now: datetime | None = None) -> UnlockResult:
    now = now or utcnow()

    claims = tokens.verify(token)
    if claims is None:
        return _deny(DenialReason.INVALID_TOKEN)

    record = db.get(SessionToken, claims.jti)
    if record is None or record.order_id != claims.order_id:
        return _deny(DenialReason.ALREADY_USED_OR_UNKNOWN, jti=claims.jti)

    # The persisted expiry is authoritative, not the claim.
    if now > record.expires_at:
        return _deny(DenialReason.EXPIRED, jti=claims.jti)

    order = db.get(Order, claims.order_id)
    if order is None:
        return _deny(DenialReason.ORDER_NOT_FOUND, jti=claims.jti, order_id=claims.order_id)
    if order.status != ORDER_PAID:
        return _deny(DenialReason.NOT_PAID, jti=claims.jti, order_id=order.id)

    grant = (
        db.query(AccessGrant)
        .filter_by(order_id=order.id, buyer_email=claims.email)
        .first()
    )
    if grant is None:
        return _deny(DenialReason.NO_ACCESS_GRANT, jti=claims.jti, order_id=order.id)
    if grant.revoked:
        return _deny(DenialReason.REVOKED, jti=claims.jti, order_id=order.id)

    if not consume_session_token(db, claims.jti):
        db.rollback()
        return _deny(DenialReason.ALREADY_USED_OR_UNKNOWN, jti=claims.jti, order_id=order.id)

    grant.last_access_at = now
    db.commit()

    logger.info("unlock_granted", extra={"order_id": order.id, "list_id": order.list_id})
    return UnlockResult(order=order, map_list=order.list, grant=grant)


def resolve_access_link(db: Session, tokens: TokenService, token: str, now: datetime | None = None) -> UnlockResult:
    """
    Resolve a reusable access link from the resend flow.

    The link is not single-use, but every visit re-checks that the email still
    holds a PAID order with a non-revoked grant for the list.
    """
    now = now or utcnow()

    claims = tokens.verify_access_link(token)
    if claims is None:
        return _deny(DenialReason.INVALID_TOKEN)

    map_list = db.get(MapList, claims.list_id)
    if map_list is None:
        return _deny(DenialReason.NOT_FOUND, list_id=claims.list_id)

    grants = (
        db.query(AccessGrant)
        .join(Order, AccessGrant.order_id == Order.id)
        .filter(
            AccessGrant.list_id == map_list.id,
            AccessGrant.buyer_email == claims.email,
            Order.status == ORDER_PAID,
        )
        .order_by(Order.created_at.desc())
        .all()
    )
    if not grants:
        return _deny(DenialReason.NO_ACCESS_GRANT, list_id=map_list.id)

    active = [g for g in grants if not g.revoked]
    if not active:
        return _deny(DenialReason.REVOKED, list_id=map_list.id)

    for grant in active:
        grant.last_access_at = now
    db.commit()

    grant = active[0]
    logger.info("access_link_granted", extra={"order_id": grant.order_id, "list_id": map_list.id})
    return UnlockResult(order=grant.order, map_list=map_list, grant=grant)
