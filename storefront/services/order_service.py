import secrets
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..db.session import get_session
from ..errors import Conflict, InsufficientStock, InvalidInput, NotFound
from ..models.order import ORDER_CANCELLED, ORDER_FLOW, ORDER_STATUSES, TERMINAL_STATUSES, Order, OrderItem
from ..models.product import Product
from ..utils.money import ZERO, percent_of, to_money
from ..utils.validators import OrderRequest
from .logging import log_event
from .promotion_service import PromotionService
from .referral_service import ReferralService


ORDER_ID_PREFIX = "SELA"
ORDER_ID_ATTEMPTS = 3
REFERRAL_COMPLETE_ATTEMPTS = 3


def generate_order_id() -> str:
    """``SELA-XXXX-XXXX-XXXX`` from 48 random bits."""
    hex_id = secrets.token_hex(6).upper()
    return f"{ORDER_ID_PREFIX}-{hex_id[0:4]}-{hex_id[4:8]}-{hex_id[8:12]}"


class OrderService:
    """Order pricing, creation and lifecycle backed by DB.

    Prices always come from the catalog; the request only names products and
    quantities. Order header, items, stock decrements and the referral reward
    claim commit in one transaction.
    """

    def __init__(
        self,
        promotions: PromotionService,
        referrals: ReferralService,
        *,
        base_delivery_fee: Decimal = Decimal("2000.00"),
        whatsapp_phone: str = "",
        frontend_url: str = "",
        session_factory=get_session,
        clock=datetime.utcnow,
        id_factory=generate_order_id,
    ):
        self._promotions = promotions
        self._referrals = referrals
        self._base_delivery_fee = to_money(base_delivery_fee)
        self._whatsapp_phone = whatsapp_phone
        self._frontend_url = frontend_url.rstrip("/")
        self._session_factory = session_factory
        self._clock = clock
        self._id_factory = id_factory

    # -- creation ----------------------------------------------------------

    def create_order(self, user_id: Optional[str], request: OrderRequest) -> Dict:
        if not request.items:
            raise InvalidInput("Order must contain at least one item")
        for attempt in range(1, ORDER_ID_ATTEMPTS + 1):
            order_id = self._id_factory()
            try:
                result = self._create_once(order_id, user_id, request)
                break
            except IntegrityError as exc:
                if not self._order_id_taken(order_id):
                    raise
                log_event("warning", "order.id_collision", order_id=order_id, attempt=attempt, error=str(exc.orig))
                if attempt == ORDER_ID_ATTEMPTS:
                    raise Conflict("Could not allocate an order id, please retry")

        if user_id:
            self._complete_referral(user_id, order_id)
        log_event(
            "info",
            "order.created",
            order_id=order_id,
            user_id=user_id,
            items=len(request.items),
            subtotal=result["subtotal"],
            total=result["totalAmount"],
        )
        return result

    def _create_once(self, order_id: str, user_id: Optional[str], request: OrderRequest) -> Dict:
        with self._session_factory() as session:
            lines = self._price_lines(session, request)
            subtotal = to_money(sum((unit * qty for _, qty, unit in lines), ZERO))

            discount = ZERO
            referral_code = None
            if user_id:
                reward = self._referrals.check_referral_reward(user_id, session=session)
                if reward["eligible"] and self._referrals.consume_reward(user_id, session=session):
                    discount = percent_of(subtotal, reward["discount_percent"])
                    referral_code = "REWARD_APPLIED"
                    log_event("info", "order.referral_discount", order_id=order_id, percent=reward["discount_percent"], amount=discount)

            delivery = self._promotions.calculate_delivery_discount(
                subtotal, self._base_delivery_fee, request.delivery_address, session=session
            )
            delivery_discount = to_money(delivery["discount_amount"])
            delivery_fee = to_money(self._base_delivery_fee - delivery_discount)
            total = to_money(subtotal - discount + delivery_fee)

            order = Order(
                id=order_id,
                user_id=user_id,
                customer_name=request.customer_name,
                customer_email=request.customer_email,
                customer_phone=request.customer_phone,
                delivery_address=request.delivery_address,
                notes=request.notes,
                subtotal=subtotal,
                total_amount=total,
                discount_amount=discount,
                delivery_fee=delivery_fee,
                delivery_discount=delivery_discount,
                delivery_zone=delivery["zone"],
                referral_code=referral_code,
                status="PENDING",
                payment_status="PENDING",
            )
            session.add(order)
            # surface an id collision here rather than at commit
            session.flush()
            for product, qty, unit in lines:
                session.add(OrderItem(order_id=order_id, product_id=product.id, quantity=qty, price_at_time=unit))
            for product, qty, _ in lines:
                self._decrement_stock(session, product.id, qty)
            session.flush()

            return {
                "success": True,
                "orderId": order_id,
                "subtotal": subtotal,
                "discountAmount": discount,
                "deliveryFee": delivery_fee,
                "deliveryDiscount": delivery_discount,
                "deliveryZone": delivery["zone"],
                "totalAmount": total,
                "whatsappUrl": self.generate_whatsapp_link(order_id, lines, total, request.delivery_address),
            }

    def _order_id_taken(self, order_id: str) -> bool:
        with self._session_factory() as session:
            return session.query(Order.id).filter(Order.id == order_id).first() is not None

    def _price_lines(self, session, request: OrderRequest) -> List:
        """Validate every line before anything is written; first failure wins."""
        lines = []
        for line in request.items:
            product = session.get(Product, line.product_id)
            if product is None:
                raise NotFound(f"Product not found: {line.product_id}")
            if not product.is_available:
                raise InvalidInput(f"Product not available: {product.name}")
            if product.stock < line.quantity:
                raise InvalidInput(f"Insufficient stock for {product.name}. Available: {product.stock}")
            if line.quantity < product.min_order:
                raise InvalidInput(f"Minimum order for {product.name} is {product.min_order}")
            lines.append((product, line.quantity, self._unit_price(session, product)))
        return lines

    def _unit_price(self, session, product: Product) -> Decimal:
        flash = self._promotions.get_flash_sale_price(product.id, session=session)
        if flash is not None:
            return to_money(flash)
        if product.discount_price is not None:
            return to_money(product.discount_price)
        return to_money(product.price)

    @staticmethod
    def _decrement_stock(session, product_id: str, quantity: int) -> None:
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientStock(product_id, quantity)

    def _complete_referral(self, user_id: str, order_id: str) -> None:
        for attempt in range(1, REFERRAL_COMPLETE_ATTEMPTS + 1):
            try:
                self._referrals.complete_referral(user_id, order_id)
                return
            except OperationalError as exc:
                log_event("warning", "referral.complete_retry", user_id=user_id, order_id=order_id, attempt=attempt, error=str(exc.orig))
        log_event("error", "referral.complete_failed", user_id=user_id, order_id=order_id)

    def generate_whatsapp_link(self, order_id: str, lines: List, total: Decimal, address: str) -> str:
        items_list = "\n".join(f"- {product.name} x{qty} @ N{unit}" for product, qty, unit in lines)
        message = (
            "Hello SelebrityAboki Fruit!\n\n"
            "I just placed an order:\n\n"
            f"Order ID: *{order_id}*\n"
            f"{items_list}\n\n"
            f"Total: *N{total}*\n\n"
            f"Delivery Address: {address}\n\n"
            "Please confirm my order.\n"
            f"Receipt: {self._frontend_url}/receipt/{order_id}"
        )
        return f"https://wa.me/{self._whatsapp_phone}?text={quote(message, safe='')}"

    # -- queries -----------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found")
            return order

    def get_user_orders(self, user_id: str) -> List[Order]:
        with self._session_factory() as session:
            return (
                session.query(Order)
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .all()
            )

    def list_orders(self, *, status: Optional[str] = None, page: int = 1, page_size: int = 20) -> Dict:
        with self._session_factory() as session:
            q = session.query(Order)
            if status:
                q = q.filter(Order.status == status)
            total = q.count()
            rows = q.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
            return {"items": rows, "page": page, "page_size": page_size, "total": total}

    # -- lifecycle ---------------------------------------------------------

    def update_order_status(self, order_id: str, status: str) -> Dict:
        if status not in ORDER_STATUSES:
            raise InvalidInput(f"status must be one of {', '.join(ORDER_STATUSES)}")
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found")
            current = order.status
            if current == status:
                return {"success": True, "status": status, "changed": False}
            self._check_transition(current, status)

            values = {"status": status}
            if status == "DELIVERED":
                values["delivered_at"] = self._clock()
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise Conflict("Order status changed concurrently, please retry")
            if status == ORDER_CANCELLED:
                # the guarded status write above makes this run once per order
                for item in order.items:
                    session.execute(
                        update(Product)
                        .where(Product.id == item.product_id)
                        .values(stock=Product.stock + item.quantity)
                        .execution_options(synchronize_session=False)
                    )
        log_event("info", "order.status_changed", order_id=order_id, old_status=current, new_status=status)
        return {"success": True, "status": status, "changed": True}

    @staticmethod
    def _check_transition(current: str, target: str) -> None:
        if current in TERMINAL_STATUSES:
            raise Conflict(f"Order is already {current}")
        if target == ORDER_CANCELLED:
            return
        if ORDER_FLOW.index(target) < ORDER_FLOW.index(current):
            raise Conflict(f"Cannot move order from {current} back to {target}")
