from typing import Any, Dict, Optional

from .money import money_str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_product_dto(row: Any, effective_price=None) -> Dict:
    price = getattr(row, "price", None)
    return {
        "id": getattr(row, "id", None),
        "name": getattr(row, "name", None),
        "slug": getattr(row, "slug", None),
        "description": getattr(row, "description", None),
        "unit": getattr(row, "unit", None),
        "price": money_str(price),
        "discountPrice": money_str(getattr(row, "discount_price", None)),
        "effectivePrice": money_str(effective_price if effective_price is not None else price),
        "stock": getattr(row, "stock", 0) or 0,
        "minOrder": getattr(row, "min_order", 1) or 1,
        "isAvailable": bool(getattr(row, "is_available", True)),
    }


def to_flash_sale_dto(row: Any) -> Dict:
    product = getattr(row, "product", None)
    return {
        "id": row.id,
        "productId": row.product_id,
        "productName": getattr(product, "name", None),
        "salePrice": money_str(row.sale_price),
        "originalPrice": money_str(row.original_price),
        "bannerText": row.banner_text,
        "startTime": _iso(row.start_time),
        "endTime": _iso(row.end_time),
        "isActive": bool(row.is_active),
    }


def to_promotion_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "type": row.type,
        "title": row.title,
        "description": row.description,
        "discountPercent": row.discount_percent,
        "minOrderAmount": money_str(row.min_order_amount),
        "startDate": _iso(row.start_date),
        "endDate": _iso(row.end_date),
        "isActive": bool(row.is_active),
    }


def to_order_item_dto(item: Any) -> Dict:
    product = getattr(item, "product", None)
    return {
        "productId": item.product_id,
        "name": getattr(product, "name", None),
        "quantity": item.quantity,
        "priceAtTime": money_str(item.price_at_time),
    }


def to_order_dto(order: Any, redact: bool = False) -> Dict:
    items = [to_order_item_dto(it) for it in (order.items or [])]
    if redact:
        # receipt view for anyone holding the id: no contact details
        return {
            "id": order.id,
            "totalAmount": money_str(order.total_amount),
            "status": order.status,
            "createdAt": _iso(order.created_at),
            "items": items,
            "isRedacted": True,
        }
    return {
        "id": order.id,
        "userId": order.user_id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "deliveryAddress": order.delivery_address,
        "notes": order.notes,
        "items": items,
        "subtotal": money_str(order.subtotal),
        "discountAmount": money_str(order.discount_amount),
        "deliveryFee": money_str(order.delivery_fee),
        "deliveryDiscount": money_str(order.delivery_discount),
        "deliveryZone": order.delivery_zone,
        "totalAmount": money_str(order.total_amount),
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentRef": order.payment_ref,
        "createdAt": _iso(order.created_at),
        "paidAt": _iso(order.paid_at),
        "deliveredAt": _iso(order.delivered_at),
    }
