import re
from urllib.parse import urlparse

CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£", "cad": "CA$", "aud": "A$"}


def generate_slug(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9 -]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "list"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def format_price(cents: int, currency: str = "usd") -> str:
    amount = f"{cents / 100:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(currency.lower())
    if symbol:
        return f"{symbol}{amount}"
    return f"{amount} {currency.upper()}"


def is_valid_google_maps_list_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    return "google.com" in (parsed.hostname or "") and "/maps/" in parsed.path
