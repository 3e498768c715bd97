import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import func
from sqlalchemy.orm import Session

from delish.auth import get_current_user
from delish.config import Settings, get_settings
from delish.database import get_db
from delish.earnings import creator_analytics, creator_earnings
from delish.email_service import send_access_link_email
from delish.helpers import format_price, generate_slug, is_valid_google_maps_list_url, normalize_email
from delish.models import ORDER_PAID, MapList, Order, User
from delish.orders import find_paid_orders
from delish.stripe_service import (
    create_account_link,
    create_checkout_session,
    create_connect_account,
    retrieve_checkout_session,
)
from delish.tokens import TokenService, get_token_service
from delish.unlock import UnlockResult, resolve_access_link, resolve_unlock

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_LINK = "This link is no longer valid"


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _check_maps_url(value):
    if value is not None and not is_valid_google_maps_list_url(value):
        raise ValueError("Must be a valid Google Maps list URL")
    return value


class CreateListRequest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    maps_list_url: str
    price_cents: int = Field(ge=200, le=19900)
    currency: str = "usd"
    cover_image_url: str | None = None
    hosted_mirror: bool = False

    @field_validator("description", "cover_image_url", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    @field_validator("maps_list_url")
    @classmethod
    def maps_url(cls, value):
        return _check_maps_url(value)


class UpdateListRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    maps_list_url: str | None = None
    price_cents: int | None = Field(default=None, ge=200, le=19900)
    currency: str | None = None
    cover_image_url: str | None = None
    hosted_mirror: bool | None = None

    @field_validator("description", "cover_image_url", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    @field_validator("maps_list_url")
    @classmethod
    def maps_url(cls, value):
        return _check_maps_url(value)


class CheckoutRequest(BaseModel):
    list_id: str
    buyer_email: EmailStr


class ResendAccessRequest(BaseModel):
    email: EmailStr
    list_slug: str = Field(min_length=1)


def _list_to_dict(map_list: MapList, paid_orders: int | None = None) -> dict:
    data = {
        "id": map_list.id,
        "slug": map_list.slug,
        "title": map_list.title,
        "description": map_list.description,
        "maps_list_url": map_list.maps_list_url,
        "price_cents": map_list.price_cents,
        "currency": map_list.currency,
        "cover_image_url": map_list.cover_image_url,
        "hosted_mirror": map_list.hosted_mirror,
        "published": map_list.published,
        "created_at": map_list.created_at.isoformat(),
        "updated_at": map_list.updated_at.isoformat(),
    }
    if paid_orders is not None:
        data["paid_orders"] = paid_orders
    return data


def _unlocked_content(result: UnlockResult) -> dict:
    map_list, order = result.map_list, result.order
    return {
        "list": {
            "id": map_list.id,
            "slug": map_list.slug,
            "title": map_list.title,
            "description": map_list.description,
            "maps_list_url": map_list.maps_list_url,
            "hosted_mirror": map_list.hosted_mirror,
            "owner_name": map_list.owner.name if map_list.owner else None,
            "updated_at": map_list.updated_at.isoformat(),
        },
        "order": {
            "id": order.id,
            "buyer_email": order.buyer_email,
            "amount_cents": order.amount_cents,
            "currency": order.currency,
            "price": format_price(order.amount_cents, order.currency),
            "purchased_at": order.created_at.isoformat(),
        },
    }


def _get_own_list(db: Session, list_id: str, user: User) -> MapList:
    map_list = db.query(MapList).filter_by(id=list_id, owner_id=user.id).first()
    if not map_list:
        raise HTTPException(status_code=404, detail="List not found")
    return map_list


def _unique_slug(db: Session, title: str) -> str:
    base = generate_slug(title)
    slug, counter = base, 1
    while db.query(MapList).filter_by(slug=slug).first():
        slug = f"{base}-{counter}"
        counter += 1
    return slug


# --- creator routes ---

@router.post("/lists")
def create_list(
    request: CreateListRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    map_list = MapList(
        owner_id=user.id,
        slug=_unique_slug(db, request.title),
        **request.model_dump(),
    )
    db.add(map_list)
    db.commit()
    db.refresh(map_list)
    logger.info("list_created", extra={"list_id": map_list.id})
    return _list_to_dict(map_list)


@router.get("/lists")
def list_lists(
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(MapList).filter(MapList.owner_id == user.id)
    if status == "published":
        query = query.filter(MapList.published.is_(True))
    elif status == "draft":
        query = query.filter(MapList.published.is_(False))
    lists = query.order_by(MapList.created_at.desc()).all()

    counts = dict(
        db.query(Order.list_id, func.count(Order.id))
        .filter(Order.status == ORDER_PAID, Order.list_id.in_([m.id for m in lists]))
        .group_by(Order.list_id)
        .all()
    )
    return [_list_to_dict(m, paid_orders=counts.get(m.id, 0)) for m in lists]


@router.get("/lists/{list_id}")
def get_list(list_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    map_list = _get_own_list(db, list_id, user)
    paid = db.query(Order).filter_by(list_id=map_list.id, status=ORDER_PAID).count()
    return _list_to_dict(map_list, paid_orders=paid)


@router.patch("/lists/{list_id}")
def update_list(
    list_id: str,
    request: UpdateListRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    map_list = _get_own_list(db, list_id, user)
    for field, value in request.model_dump(exclude_unset=True).items():
        if value is None and field in ("title", "maps_list_url", "price_cents", "currency", "hosted_mirror"):
            raise HTTPException(status_code=422, detail=f"{field} cannot be null")
        setattr(map_list, field, value)
    db.commit()
    db.refresh(map_list)
    return _list_to_dict(map_list)


@router.delete("/lists/{list_id}")
def delete_list(list_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    map_list = _get_own_list(db, list_id, user)
    if db.query(Order).filter_by(list_id=map_list.id).first():
        raise HTTPException(status_code=409, detail="List has orders and cannot be deleted")
    db.delete(map_list)
    db.commit()
    return {"success": True}


@router.post("/lists/{list_id}/publish")
def publish_list(list_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    map_list = _get_own_list(db, list_id, user)
    if not user.stripe_account:
        raise HTTPException(
            status_code=400,
            detail="Stripe account not connected. Please connect your Stripe account first.",
        )
    map_list.published = True
    db.commit()
    db.refresh(map_list)
    logger.info("list_published", extra={"list_id": map_list.id})
    return _list_to_dict(map_list)


@router.post("/stripe/connect")
def connect_stripe(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if user.stripe_account:
        raise HTTPException(status_code=400, detail="Stripe account already connected")

    try:
        account = create_connect_account(settings, user.email)
        user.stripe_account = account.id
        db.commit()
        link = create_account_link(settings, account.id)
    except stripe.StripeError:
        logger.exception("stripe_connect_failed")
        raise HTTPException(status_code=502, detail="Failed to create Stripe account")

    return {"url": link.url}


@router.get("/dashboard/earnings")
def earnings(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return creator_earnings(db, user.id, settings.platform_fee_percent)


@router.get("/dashboard/analytics")
def analytics(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return creator_analytics(db, user.id)


# --- public routes ---

@router.get("/l/{slug}")
def public_list(slug: str, db: Session = Depends(get_db)):
    map_list = db.query(MapList).filter_by(slug=slug, published=True).first()
    if not map_list:
        raise HTTPException(status_code=404, detail="List not found")
    return {
        "id": map_list.id,
        "slug": map_list.slug,
        "title": map_list.title,
        "description": map_list.description,
        "cover_image_url": map_list.cover_image_url,
        "price_cents": map_list.price_cents,
        "currency": map_list.currency,
        "price": format_price(map_list.price_cents, map_list.currency),
    }


@router.post("/checkout")
def create_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    map_list = db.query(MapList).filter_by(id=request.list_id, published=True).first()
    if not map_list:
        raise HTTPException(status_code=404, detail="List not found or not published")
    if not map_list.owner.stripe_account:
        raise HTTPException(status_code=400, detail="Creator has not connected Stripe account")

    try:
        session = create_checkout_session(
            settings, map_list, map_list.owner.stripe_account, normalize_email(request.buyer_email)
        )
    except stripe.StripeError:
        logger.exception("checkout_session_failed", extra={"list_id": map_list.id})
        raise HTTPException(status_code=502, detail="Failed to create checkout session")

    return {"url": session.url}


@router.get("/checkout/session")
def checkout_status(
    session_id: str | None = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not session_id:
        raise HTTPException(status_code=400, detail="Session ID required")

    try:
        session = retrieve_checkout_session(settings, session_id)
    except stripe.StripeError:
        logger.exception("checkout_session_lookup_failed", extra={"session_id": session_id})
        raise HTTPException(status_code=502, detail="Failed to fetch checkout session")

    if session.payment_status != "paid":
        raise HTTPException(status_code=400, detail="Invalid or unpaid session")

    # The webhook may not have landed yet; the unlock link only ever travels by email.
    order = db.query(Order).filter_by(stripe_session_id=session_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    return {
        "session_id": session_id,
        "list_title": order.list.title,
        "buyer_email": order.buyer_email,
        "status": order.status,
    }


@router.get("/unlock/{token}")
def unlock(
    token: str,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    result = resolve_unlock(db, tokens, token)
    if not result.granted:
        raise HTTPException(status_code=404, detail=INVALID_LINK)
    return _unlocked_content(result)


@router.post("/access/resend")
def resend_access(
    request: ResendAccessRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
):
    map_list = db.query(MapList).filter_by(slug=request.list_slug).first()
    if not map_list:
        raise HTTPException(status_code=404, detail="List not found")

    email = normalize_email(request.email)
    if not find_paid_orders(db, email, map_list.id):
        raise HTTPException(status_code=404, detail="No purchases found for this email")

    issued = tokens.issue_access_link(email, map_list.id)
    if not send_access_link_email(settings, email, f"{settings.app_url}/access/{issued.token}"):
        raise HTTPException(status_code=502, detail="Failed to send email")

    return {"success": True}


@router.get("/access/{token}")
def access(
    token: str,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    result = resolve_access_link(db, tokens, token)
    if not result.granted:
        raise HTTPException(status_code=404, detail=INVALID_LINK)
    return _unlocked_content(result)
