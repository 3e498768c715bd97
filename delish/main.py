import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from delish.config import Settings, get_settings
from delish.database import Base, engine, get_db
from delish.logging_config import configure_logging
from delish.routes import router
from delish.tokens import TokenService, get_token_service
from delish.webhooks import InvalidPayload, InvalidSignature, handle_event, verify_event

configure_logging(get_settings())
logger = logging.getLogger(__name__)

app = FastAPI(title="Delish Storefront")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
):
    payload = await request.body()

    try:
        event = verify_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except InvalidPayload:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except InvalidSignature:
        logger.warning("webhook_invalid_signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    await run_in_threadpool(handle_event, db, event, settings, tokens)
    return {"received": True}
