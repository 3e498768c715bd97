"""Signed bearer tokens for the unlock and access-link flows.

Verification here is purely cryptographic: signature, expiry and token type
are checked from the token's own claims. Single-use and revocation live in
the database and are enforced by :mod:`delish.unlock`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import Depends
from jose import JWTError, jwt

from delish.config import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
UNLOCK_TYPE = "unlock"
ACCESS_TYPE = "access"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class UnlockClaims:
    jti: str
    order_id: str
    list_id: str
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    email: str
    list_id: str
    expires_at: datetime


def _from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


class TokenService:
    def __init__(
        self,
        secret: str,
        unlock_ttl: timedelta = timedelta(minutes=10),
        access_ttl: timedelta = timedelta(hours=1),
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self.unlock_ttl = unlock_ttl
        self.access_ttl = access_ttl

    def _sign(self, claims: dict, ttl: timedelta) -> tuple[str, int]:
        now = datetime.now(timezone.utc)
        exp = int((now + ttl).timestamp())
        to_encode = dict(claims, iat=int(now.timestamp()), exp=exp)
        return jwt.encode(to_encode, self._secret, algorithm=ALGORITHM), exp

    def _decode(self, token: str, token_type: str) -> dict | None:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.info("token_rejected", extra={"reason": type(exc).__name__})
            return None
        except (AttributeError, TypeError, ValueError):
            logger.info("token_rejected", extra={"reason": "malformed"})
            return None

        if payload.get("typ") != token_type:
            logger.info("token_rejected", extra={"reason": "wrong_type"})
            return None
        return payload

    def issue(self, order_id: str, list_id: str, email: str) -> IssuedToken:
        """Mint a single-use unlock token. The caller persists the matching SessionToken."""
        jti = uuid4().hex
        token, exp = self._sign(
            {
                "jti": jti,
                "order_id": order_id,
                "list_id": list_id,
                "email": email,
                "typ": UNLOCK_TYPE,
            },
            self.unlock_ttl,
        )
        return IssuedToken(token=token, jti=jti, expires_at=_from_timestamp(exp))

    def verify(self, token: str) -> UnlockClaims | None:
        payload = self._decode(token, UNLOCK_TYPE)
        if payload is None:
            return None
        try:
            return UnlockClaims(
                jti=str(payload["jti"]),
                order_id=str(payload["order_id"]),
                list_id=str(payload["list_id"]),
                email=str(payload["email"]),
                expires_at=_from_timestamp(int(payload["exp"])),
            )
        except (KeyError, TypeError, ValueError):
            logger.info("token_rejected", extra={"reason": "missing_claims"})
            return None

    def issue_access_link(self, email: str, list_id: str) -> IssuedToken:
        """Mint a reusable access-link token for the resend flow."""
        token, exp = self._sign(
            {"email": email, "list_id": list_id, "typ": ACCESS_TYPE},
            self.access_ttl,
        )
        return IssuedToken(token=token, jti="", expires_at=_from_timestamp(exp))

    def verify_access_link(self, token: str) -> AccessClaims | None:
        payload = self._decode(token, ACCESS_TYPE)
        if payload is None:
            return None
        try:
            return AccessClaims(
                email=str(payload["email"]),
                list_id=str(payload["list_id"]),
                expires_at=_from_timestamp(int(payload["exp"])),
            )
        except (KeyError, TypeError, ValueError):
            logger.info("token_rejected", extra={"reason": "missing_claims"})
            return None


def get_token_service(settings: Settings = Depends(get_settings)) -> TokenService:
    return TokenService(
        settings.jwt_secret,
        unlock_ttl=timedelta(minutes=settings.unlock_token_minutes),
        access_ttl=timedelta(minutes=settings.access_link_minutes),
    )
