from datetime import timedelta

from delish.models import AccessGrant, SessionToken
from delish.orders import refund_order
from delish.unlock import DenialReason, resolve_access_link, resolve_unlock


def test_first_unlock_succeeds_and_consumes_token(db, tokens, purchase):
    order, grant, issued = purchase()

    result = resolve_unlock(db, tokens, issued.token)

    assert result.granted
    assert result.order.id == order.id
    assert result.map_list.id == "L1"
    db.expire_all()
    assert db.get(SessionToken, issued.jti) is None
    assert db.get(AccessGrant, grant.id).last_access_at is not None


def test_replayed_token_is_refused(db, tokens, purchase):
    _, _, issued = purchase()
    assert resolve_unlock(db, tokens, issued.token).granted

    result = resolve_unlock(db, tokens, issued.token)

    assert not result.granted
    assert result.reason == DenialReason.ALREADY_USED_OR_UNKNOWN


def test_only_one_of_many_redemptions_wins(db, tokens, purchase):
    _, _, issued = purchase()

    results = [resolve_unlock(db, tokens, issued.token) for _ in range(5)]

    assert sum(r.granted for r in results) == 1
    assert {r.reason for r in results if not r.granted} == {DenialReason.ALREADY_USED_OR_UNKNOWN}


def test_losing_the_delete_race_is_refused(db, tokens, purchase, mocker):
    _, grant, issued = purchase()
    mocker.patch("delish.unlock.consume_session_token", return_value=False)

    result = resolve_unlock(db, tokens, issued.token)

    assert result.reason == DenialReason.ALREADY_USED_OR_UNKNOWN
    db.expire_all()
    assert db.get(AccessGrant, grant.id).last_access_at is None


def test_persisted_expiry_wins_over_valid_token(db, tokens, purchase):
    _, _, issued = purchase()

    result = resolve_unlock(db, tokens, issued.token, now=issued.expires_at + timedelta(seconds=1))

    assert result.reason == DenialReason.EXPIRED
    db.expire_all()
    assert db.get(SessionToken, issued.jti) is not None


def test_shortened_persisted_record_expires_token(db, tokens, purchase):
    _, _, issued = purchase()
    record = db.get(SessionToken, issued.jti)
    record.expires_at = record.expires_at - timedelta(minutes=20)
    db.commit()

    assert resolve_unlock(db, tokens, issued.token).reason == DenialReason.EXPIRED


def test_revoked_grant_blocks_valid_token(db, tokens, purchase):
    _, grant, issued = purchase()
    grant.revoked = True
    db.commit()

    result = resolve_unlock(db, tokens, issued.token)

    assert result.reason == DenialReason.REVOKED
    db.expire_all()
    assert db.get(SessionToken, issued.jti) is not None


def test_refunded_order_is_not_paid(db, tokens, purchase):
    order, _, issued = purchase()
    refund_order(db, order)
    db.commit()

    assert resolve_unlock(db, tokens, issued.token).reason == DenialReason.NOT_PAID


def test_tampered_token_is_invalid_regardless_of_state(db, tokens, purchase):
    _, _, issued = purchase()
    header, payload, signature = issued.token.split(".")
    chars = list(signature)
    chars[10] = "x" if chars[10] != "x" else "y"

    result = resolve_unlock(db, tokens, ".".join([header, payload, "".join(chars)]))

    assert result.reason == DenialReason.INVALID_TOKEN


def test_unknown_jti_is_refused(db, tokens, purchase):
    order, _, _ = purchase()
    stray = tokens.issue(order.id, "L1", "a@example.com")

    assert resolve_unlock(db, tokens, stray.token).reason == DenialReason.ALREADY_USED_OR_UNKNOWN


def test_missing_order_is_reported(db, tokens, purchase):
    purchase()
    issued = tokens.issue("gone", "L1", "a@example.com")
    db.add(SessionToken(id=issued.jti, order_id="gone", expires_at=issued.expires_at))
    db.commit()

    result = resolve_unlock(db, tokens, issued.token)

    assert result.reason == DenialReason.ORDER_NOT_FOUND


def test_grant_for_other_email_is_missing(db, tokens, purchase):
    order, _, _ = purchase()
    issued = tokens.issue(order.id, "L1", "someone-else@example.com")
    db.add(SessionToken(id=issued.jti, order_id=order.id, expires_at=issued.expires_at))
    db.commit()

    assert resolve_unlock(db, tokens, issued.token).reason == DenialReason.NO_ACCESS_GRANT


def test_access_link_is_reusable(db, tokens, purchase):
    order, grant, _ = purchase()
    link = tokens.issue_access_link("a@example.com", "L1")

    first = resolve_access_link(db, tokens, link.token)
    second = resolve_access_link(db, tokens, link.token)

    assert first.granted and second.granted
    assert second.order.id == order.id
    db.expire_all()
    assert db.get(AccessGrant, grant.id).last_access_at is not None


def test_access_link_respects_revocation(db, tokens, purchase):
    _, grant, _ = purchase()
    grant.revoked = True
    db.commit()
    link = tokens.issue_access_link("a@example.com", "L1")

    assert resolve_access_link(db, tokens, link.token).reason == DenialReason.REVOKED


def test_access_link_after_refund_has_no_grant(db, tokens, purchase):
    order, _, _ = purchase()
    refund_order(db, order)
    db.commit()
    link = tokens.issue_access_link("a@example.com", "L1")

    assert resolve_access_link(db, tokens, link.token).reason == DenialReason.NO_ACCESS_GRANT


def test_access_link_for_unknown_list(db, tokens, purchase):
    purchase()
    link = tokens.issue_access_link("a@example.com", "nope")

    assert resolve_access_link(db, tokens, link.token).reason == DenialReason.NOT_FOUND
