import pytest
from sqlalchemy.orm import Query

from delish.models import AccessGrant, Order
from delish.orders import DuplicateOrder, find_paid_orders, record_purchase, refund_order


def _record(db, map_list, session_id="S1", email="a@example.com", payment_id="pi_1"):
    order, grant = record_purchase(
        db,
        map_list=map_list,
        buyer_email=email,
        amount_cents=500,
        currency="usd",
        session_id=session_id,
        payment_id=payment_id,
    )
    db.commit()
    return order, grant


def test_record_purchase_creates_paid_order_and_grant(db, make_list):
    map_list = make_list()

    order, grant = _record(db, map_list)

    assert order.status == "PAID"
    assert order.amount_cents == 500
    assert order.stripe_session_id == "S1"
    assert grant.order_id == order.id
    assert grant.list_id == map_list.id
    assert grant.buyer_email == "a@example.com"
    assert grant.revoked is False
    assert db.query(AccessGrant).count() == 1


def test_same_session_is_recorded_once(db, make_list):
    map_list = make_list()
    _record(db, map_list)

    with pytest.raises(DuplicateOrder):
        _record(db, map_list)

    assert db.query(Order).count() == 1
    assert db.query(AccessGrant).count() == 1


def test_unique_constraint_catches_duplicate_missed_by_lookup(db, make_list, mocker):
    map_list = make_list()
    _record(db, map_list)
    mocker.patch.object(Query, "first", return_value=None)

    with pytest.raises(DuplicateOrder) as exc:
        _record(db, map_list, email="b@example.com", payment_id="pi_2")

    assert exc.value.session_id == "S1"
    assert db.query(Order).count() == 1
    assert db.query(AccessGrant).count() == 1
    assert db.query(Order).one().buyer_email == "a@example.com"


def test_refund_revokes_only_that_orders_grants(db, make_list):
    map_list = make_list()
    refunded, _ = _record(db, map_list, session_id="S1", payment_id="pi_1")
    kept, _ = _record(db, map_list, session_id="S2", payment_id="pi_2", email="b@example.com")

    assert refund_order(db, refunded) is True
    db.commit()
    db.expire_all()

    assert db.get(Order, refunded.id).status == "REFUNDED"
    assert db.get(Order, kept.id).status == "PAID"
    grants = {g.order_id: g.revoked for g in db.query(AccessGrant).all()}
    assert grants == {refunded.id: True, kept.id: False}


def test_refunding_twice_is_a_noop(db, make_list):
    order, _ = _record(db, make_list())
    refund_order(db, order)
    db.commit()

    assert refund_order(db, order) is False
    assert order.status == "REFUNDED"


def test_find_paid_orders_skips_refunded_and_other_buyers(db, make_list):
    map_list = make_list()
    paid, _ = _record(db, map_list, session_id="S1", payment_id="pi_1")
    refunded, _ = _record(db, map_list, session_id="S2", payment_id="pi_2")
    _record(db, map_list, session_id="S3", payment_id="pi_3", email="b@example.com")
    refund_order(db, refunded)
    db.commit()

    orders = find_paid_orders(db, "a@example.com", map_list.id)

    assert [o.id for o in orders] == [paid.id]
