import re
from decimal import Decimal, InvalidOperation


def normalize_ean(value: object | None) -> str | None:
    if value is None:
        return None
    clean = re.sub(r"\s+", "", str(value))
    return clean or None


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    clean = value.strip().lower()
    clean = re.sub(r"\s+", " ", clean)
    return clean


def normalize_price(value: object | None) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
