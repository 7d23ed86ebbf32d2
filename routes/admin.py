"""Admin back-office API: order lifecycle, flash sales and promotions."""

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request, session

from storefront.errors import InvalidInput, Unauthorized
from storefront.utils.dto import to_flash_sale_dto, to_order_dto, to_promotion_dto
from storefront.utils.pagination import normalize_paging


admin_bp = Blueprint("storefront_admin", __name__, url_prefix="/admin")

SESSION_KEY = "storefront_admin"


def _components() -> dict:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STOREFRONT_CONFIG"]


def _is_authenticated() -> bool:
    return bool(session.get(SESSION_KEY))


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    return payload


@admin_bp.before_request
def guard_private_routes():
    if request.endpoint and request.endpoint.startswith("storefront_admin."):
        public = {"storefront_admin.login"}
        if request.endpoint not in public and not _is_authenticated():
            return jsonify({"error": "Admin login required"}), 401
    return None


@admin_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    username = str(payload.get("username", "")).strip()
    password = str(payload.get("password", "")).strip()
    cfg = _config()
    user_ok = hmac.compare_digest(username.encode(), cfg.admin_username.encode())
    pass_ok = hmac.compare_digest(password.encode(), cfg.admin_password.encode())
    if not (user_ok and pass_ok):
        raise Unauthorized("Invalid username or password")
    session[SESSION_KEY] = username
    return jsonify({"status": "ok"})


@admin_bp.post("/logout")
def logout():
    session.pop(SESSION_KEY, None)
    return jsonify({"status": "ok"})


# -- orders ------------------------------------------------------------------


@admin_bp.get("/orders")
def list_orders():
    page, page_size = normalize_paging(request.args.get("page", 1), request.args.get("page_size", 20))
    result = _components()["orders"].list_orders(
        status=request.args.get("status") or None, page=page, page_size=page_size
    )
    result["items"] = [to_order_dto(o) for o in result["items"]]
    return jsonify(result)


@admin_bp.patch("/orders/<order_id>/status")
def update_order_status(order_id: str):
    status = _payload().get("status")
    if not isinstance(status, str):
        raise InvalidInput("status is required")
    result = _components()["orders"].update_order_status(order_id, status.strip().upper())
    if result["changed"] and result["status"] == "CANCELLED":
        _components()["catalog"].invalidate_cache()
    return jsonify(result)


# -- flash sales -------------------------------------------------------------


@admin_bp.get("/flash-sales")
def list_flash_sales():
    sales = _components()["promotions"].get_all_flash_sales()
    return jsonify({"flashSales": [to_flash_sale_dto(s) for s in sales]})


@admin_bp.post("/flash-sales")
def create_flash_sale():
    payload = _payload()
    sale = _components()["promotions"].create_flash_sale(
        product_id=str(payload.get("productId") or ""),
        sale_price=payload.get("salePrice"),
        start_time=payload.get("startTime"),
        end_time=payload.get("endTime"),
        banner_text=payload.get("bannerText"),
        created_by=session.get(SESSION_KEY),
    )
    _components()["catalog"].invalidate_cache()
    return jsonify(to_flash_sale_dto(sale)), 201


@admin_bp.patch("/flash-sales/<flash_sale_id>")
def update_flash_sale(flash_sale_id: str):
    sale = _components()["promotions"].update_flash_sale(flash_sale_id, _payload())
    _components()["catalog"].invalidate_cache()
    return jsonify(to_flash_sale_dto(sale))


@admin_bp.delete("/flash-sales/<flash_sale_id>")
def delete_flash_sale(flash_sale_id: str):
    _components()["promotions"].delete_flash_sale(flash_sale_id)
    _components()["catalog"].invalidate_cache()
    return jsonify({"success": True})


# -- promotions --------------------------------------------------------------


@admin_bp.get("/promotions")
def list_promotions():
    promos = _components()["promotions"].get_all_promotions()
    return jsonify({"promotions": [to_promotion_dto(p) for p in promos]})


@admin_bp.post("/promotions")
def create_promotion():
    payload = _payload()
    promo = _components()["promotions"].create_promotion(
        type=str(payload.get("type") or ""),
        title=payload.get("title"),
        description=payload.get("description"),
        discount_percent=payload.get("discountPercent"),
        min_order_amount=payload.get("minOrderAmount"),
        start_date=payload.get("startDate"),
        end_date=payload.get("endDate"),
        created_by=session.get(SESSION_KEY),
    )
    return jsonify(to_promotion_dto(promo)), 201


@admin_bp.patch("/promotions/<promotion_id>")
def update_promotion(promotion_id: str):
    promo = _components()["promotions"].update_promotion(promotion_id, _payload())
    return jsonify(to_promotion_dto(promo))


@admin_bp.delete("/promotions/<promotion_id>")
def delete_promotion(promotion_id: str):
    _components()["promotions"].delete_promotion(promotion_id)
    return jsonify({"success": True})
