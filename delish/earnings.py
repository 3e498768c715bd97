"""Creator-facing sales figures. Only PAID orders count; refunds drop out."""
from collections import defaultdict

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from delish.helpers import format_price
from delish.models import ORDER_PAID, MapList, Order
from delish.stripe_service import calculate_platform_fee

RECENT_ORDERS = 10
REVENUE_MONTHS = 6


def _paid_orders(db: Session, owner_id: str):
    return (
        db.query(Order)
        .join(MapList, MapList.id == Order.list_id)
        .filter(MapList.owner_id == owner_id, Order.status == ORDER_PAID)
    )


def creator_earnings(db: Session, owner_id: str, fee_percent: int) -> dict:
    total_sales, revenue = (
        _paid_orders(db, owner_id)
        .with_entities(func.count(Order.id), func.coalesce(func.sum(Order.amount_cents), 0))
        .one()
    )
    # The fee is taken per charge at checkout, so it is summed per order.
    platform_fee = sum(
        calculate_platform_fee(amount, fee_percent)
        for (amount,) in _paid_orders(db, owner_id).with_entities(Order.amount_cents)
    )
    recent = (
        _paid_orders(db, owner_id)
        .options(joinedload(Order.list))
        .order_by(Order.created_at.desc())
        .limit(RECENT_ORDERS)
        .all()
    )
    return {
        "total_sales": total_sales,
        "revenue_cents": revenue,
        "platform_fee_cents": platform_fee,
        "net_revenue_cents": revenue - platform_fee,
        "net_revenue": format_price(revenue - platform_fee),
        "recent_orders": [
            {
                "id": order.id,
                "list_title": order.list.title,
                "buyer_email": order.buyer_email,
                "amount_cents": order.amount_cents,
                "currency": order.currency,
                "created_at": order.created_at.isoformat(),
            }
            for order in recent
        ],
    }


def creator_analytics(db: Session, owner_id: str) -> dict:
    lists = (
        db.query(MapList)
        .filter(MapList.owner_id == owner_id)
        .order_by(MapList.created_at.desc())
        .all()
    )
    per_list = {
        list_id: (count, revenue)
        for list_id, count, revenue in _paid_orders(db, owner_id)
        .with_entities(Order.list_id, func.count(Order.id), func.sum(Order.amount_cents))
        .group_by(Order.list_id)
    }

    monthly = defaultdict(int)
    for created_at, amount in _paid_orders(db, owner_id).with_entities(Order.created_at, Order.amount_cents):
        monthly[created_at.strftime("%Y-%m")] += amount
    months = sorted(monthly)[-REVENUE_MONTHS:]

    return {
        "total_sales": sum(count for count, _ in per_list.values()),
        "revenue_cents": sum(revenue for _, revenue in per_list.values()),
        "lists": [
            {
                "id": m.id,
                "title": m.title,
                "published": m.published,
                "sales": per_list.get(m.id, (0, 0))[0],
                "revenue_cents": per_list.get(m.id, (0, 0))[1],
            }
            for m in lists
        ],
        "monthly_revenue": [{"month": month, "revenue_cents": monthly[month]} for month in months],
    }
