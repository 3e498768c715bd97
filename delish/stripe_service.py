import stripe

from delish.config import Settings
from delish.models import MapList


def calculate_platform_fee(price_cents: int, percent: int) -> int:
    return price_cents * percent // 100


def create_checkout_session(settings: Settings, map_list: MapList, destination: str, buyer_email: str):
    product_data = {"name": map_list.title}
    if map_list.description:
        product_data["description"] = map_list.description
    if map_list.cover_image_url:
        product_data["images"] = [map_list.cover_image_url]

    return stripe.checkout.Session.create(
        mode="payment",
        customer_email=buyer_email,
        line_items=[
            {
                "price_data": {
                    "currency": map_list.currency,
                    "unit_amount": map_list.price_cents,
                    "product_data": product_data,
                },
                "quantity": 1,
            }
        ],
        success_url=f"{settings.app_url}/post-checkout?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.app_url}/l/{map_list.slug}",
        metadata={"list_id": map_list.id, "owner_id": map_list.owner_id},
        payment_intent_data={
            "application_fee_amount": calculate_platform_fee(
                map_list.price_cents, settings.platform_fee_percent
            ),
            "transfer_data": {"destination": destination},
        },
        api_key=settings.stripe_secret_key,
    )


def retrieve_checkout_session(settings: Settings, session_id: str):
    return stripe.checkout.Session.retrieve(session_id, api_key=settings.stripe_secret_key)


def create_connect_account(settings: Settings, email: str | None):
    return stripe.Account.create(
        type="express",
        country="US",
        email=email,
        capabilities={
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        api_key=settings.stripe_secret_key,
    )


def create_account_link(settings: Settings, account_id: str):
    return stripe.AccountLink.create(
        account=account_id,
        refresh_url=f"{settings.app_url}/dashboard/earnings?refresh=true",
        return_url=f"{settings.app_url}/dashboard/earnings?success=true",
        type="account_onboarding",
        api_key=settings.stripe_secret_key,
    )
