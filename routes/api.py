"""Storefront API: catalog, promotions, checkout, payment and referrals."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

from storefront.errors import InvalidInput
from storefront.utils.dto import to_flash_sale_dto, to_order_dto, to_promotion_dto
from storefront.utils.identity import user_id_from_authorization
from storefront.utils.money import money_str, to_money
from storefront.utils.validators import parse_order_request


api_bp = Blueprint("storefront_api", __name__, url_prefix="/api")

MONEY_FIELDS = ("subtotal", "discountAmount", "deliveryFee", "deliveryDiscount", "totalAmount")


def _components() -> Dict[str, Any]:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STOREFRONT_CONFIG"]


def _current_user_id() -> Optional[str]:
    return user_id_from_authorization(request.headers.get("Authorization"), _config().secret_key)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    return payload


@api_bp.get("/products")
def list_products():
    catalog = _components()["catalog"]
    result = catalog.list_products(
        query=request.args.get("q") or None,
        page=request.args.get("page", 1),
        page_size=request.args.get("page_size", 20),
    )
    return jsonify(result)


@api_bp.get("/products/<product_id>")
def get_product(product_id: str):
    return jsonify(_components()["catalog"].get_product(product_id))


@api_bp.get("/promotions/flash-sales")
def active_flash_sales():
    sales = _components()["promotions"].get_active_flash_sales()
    return jsonify({"flashSales": [to_flash_sale_dto(s) for s in sales]})


@api_bp.get("/promotions/active")
def active_promotions():
    promos = _components()["promotions"].get_active_promotions()
    return jsonify({"promotions": [to_promotion_dto(p) for p in promos]})


@api_bp.post("/delivery/quote")
def delivery_quote():
    payload = _json_body()
    address = payload.get("deliveryAddress")
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("deliveryAddress is required")
    try:
        subtotal = to_money(payload.get("subtotal"))
    except (ArithmeticError, ValueError):
        raise InvalidInput("subtotal must be a decimal amount")
    fee = _config().base_delivery_fee
    result = _components()["promotions"].calculate_delivery_discount(subtotal, fee, address)
    return jsonify(
        {
            "deliveryZone": result["zone"],
            "baseDeliveryFee": money_str(fee),
            "deliveryDiscount": money_str(result["discount_amount"]),
            "deliveryFee": money_str(fee - result["discount_amount"]),
        }
    )


@api_bp.post("/orders")
def create_order():
    order_request = parse_order_request(request.get_json(silent=True))
    result = _components()["orders"].create_order(_current_user_id(), order_request)
    _components()["catalog"].invalidate_cache()
    body = dict(result)
    for key in MONEY_FIELDS:
        body[key] = money_str(body[key])
    return jsonify(body), 201


@api_bp.get("/orders/mine")
def my_orders():
    user_id = _current_user_id()
    if not user_id:
        return jsonify({"error": "Authentication required"}), 401
    orders = _components()["orders"].get_user_orders(user_id)
    return jsonify({"orders": [to_order_dto(o) for o in orders]})


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    order = _components()["orders"].get_order(order_id)
    user_id = _current_user_id()
    is_owner = bool(user_id) and order.user_id == user_id
    return jsonify(to_order_dto(order, redact=not is_owner))


@api_bp.post("/orders/<order_id>/payment")
def initiate_payment(order_id: str):
    payload = request.get_json(silent=True) or {}
    redirect_url = payload.get("redirectUrl") if isinstance(payload, dict) else None
    result = _components()["payments"].initiate_payment(order_id, redirect_url=redirect_url)
    return jsonify(result)


@api_bp.post("/referrals/apply")
def apply_referral():
    user_id = _current_user_id()
    if not user_id:
        return jsonify({"error": "Authentication required"}), 401
    code = _json_body().get("code")
    if not isinstance(code, str):
        raise InvalidInput("code is required")
    return jsonify(_components()["referrals"].apply_referral_code(user_id, code))


@api_bp.get("/referrals/me")
def referral_stats():
    user_id = _current_user_id()
    if not user_id:
        return jsonify({"error": "Authentication required"}), 401
    return jsonify(_components()["referrals"].get_stats(user_id))
