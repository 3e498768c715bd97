from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from delish.config import Settings, get_settings
from delish.database import get_db
from delish.models import User


def verify_token(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Validate the identity provider's bearer JWT and return its claims."""
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        claims = jwt.decode(token, settings.auth_jwt_secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims


def get_current_user(claims: dict = Depends(verify_token), db: Session = Depends(get_db)) -> User:
    user = db.get(User, claims["sub"])
    if user is None:
        user = User(id=claims["sub"], email=claims.get("email"), name=claims.get("name"))
        db.add(user)
        db.commit()
    return user
