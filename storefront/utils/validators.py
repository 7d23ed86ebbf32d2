import re
from dataclasses import dataclass
from typing import Any, List, Optional

from ..errors import InvalidInput


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class OrderLine:
    product_id: str
    quantity: int


@dataclass
class OrderRequest:
    items: List[OrderLine]
    customer_name: str
    customer_email: str
    customer_phone: str
    delivery_address: str
    notes: Optional[str] = None


def ensure_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInput(f"{field} must be an integer >= 1")
    return value


def _required_str(payload: dict, key: str, max_len: int) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{key} is required")
    value = value.strip()
    if len(value) > max_len:
        raise InvalidInput(f"{key} must be at most {max_len} characters")
    return value


def parse_order_request(payload: Any) -> OrderRequest:
    """Validate the checkout body; never reads prices from the client."""
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInput("Order must contain at least one item")

    items: List[OrderLine] = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise InvalidInput(f"items[{idx}] must be an object")
        product_id = raw.get("productId")
        if not isinstance(product_id, str) or not product_id.strip():
            raise InvalidInput(f"items[{idx}].productId is required")
        quantity = ensure_positive_int(raw.get("quantity"), f"items[{idx}].quantity")
        items.append(OrderLine(product_id=product_id.strip(), quantity=quantity))

    email = _required_str(payload, "customerEmail", 255)
    if not EMAIL_RE.match(email):
        raise InvalidInput("customerEmail must be a valid email address")

    notes = payload.get("notes")
    if notes is not None:
        if not isinstance(notes, str):
            raise InvalidInput("notes must be a string")
        if len(notes) > 500:
            raise InvalidInput("notes must be at most 500 characters")
        notes = notes.strip() or None

    return OrderRequest(
        items=items,
        customer_name=_required_str(payload, "customerName", 100),
        customer_email=email,
        customer_phone=_required_str(payload, "customerPhone", 32),
        delivery_address=_required_str(payload, "deliveryAddress", 500),
        notes=notes,
    )
