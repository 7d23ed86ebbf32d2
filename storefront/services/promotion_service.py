from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
from uuid import uuid4

from ..db.session import get_session, use_session
from ..errors import InvalidInput, NotFound
from ..models.flash_sale import FlashSale
from ..models.product import Product
from ..models.promotion import PROMOTION_TYPES, Promotion
from ..utils.money import ZERO, percent_of, to_money
from .logging import log_event


# Areas close enough to the shop for free delivery during the promotion
ZONE_1_AREAS = (
    "iyana technical",
    "ogidi",
    "oja oba",
    "okolowo",
    "iyana technical ogidi",
)

ZONE_1_FREE = "ZONE_1_FREE"
ZONE_2_HALF = "ZONE_2_HALF"
ZONE_3_FULL = "ZONE_3_FULL"

ZONE_DISCOUNT_PERCENT = {ZONE_1_FREE: 100, ZONE_2_HALF: 50, ZONE_3_FULL: 0}

RAMADAN_DELIVERY = "RAMADAN_DELIVERY"


def _parse_time(value, field: str) -> datetime:
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field} is required")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInput(f"{field} must be an ISO-8601 timestamp")
    return _to_naive_utc(parsed)


def _to_naive_utc(value: datetime) -> datetime:
    offset = value.utcoffset()
    return (value - offset).replace(tzinfo=None) if offset is not None else value


def _parse_amount(value, field: str) -> Decimal:
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInput(f"{field} must be a decimal amount")
    if amount < 0:
        raise InvalidInput(f"{field} must be >= 0")
    return amount


def determine_delivery_zone(address: str) -> str:
    """Zone 1 for addresses near the shop, zone 2 for everything else."""
    normalized = (address or "").lower().strip()
    for area in ZONE_1_AREAS:
        if area in normalized:
            return ZONE_1_FREE
    return ZONE_2_HALF


class PromotionService:
    """Flash sales and delivery promotions.

    Price and eligibility decisions are made here from stored rows only; the
    checkout client never supplies an amount.
    """

    def __init__(self, session_factory=get_session, clock=datetime.utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # -- flash sales -------------------------------------------------------

    def get_flash_sale_price(self, product_id: str, *, session=None) -> Optional[Decimal]:
        """Sale price of the active flash sale for ``product_id``, if any.

        Overlapping sales resolve to the lowest sale price, then the earliest
        created sale.
        """
        now = self._clock()
        with use_session(self._session_factory, session) as s:
            sale = (
                s.query(FlashSale)
                .filter(
                    FlashSale.product_id == product_id,
                    FlashSale.is_active.is_(True),
                    FlashSale.start_time <= now,
                    FlashSale.end_time > now,
                )
                .order_by(FlashSale.sale_price.asc(), FlashSale.created_at.asc(), FlashSale.id.asc())
                .first()
            )
            return to_money(sale.sale_price) if sale else None

    def get_active_flash_sales(self) -> List[FlashSale]:
        now = self._clock()
        with self._session_factory() as s:
            return (
                s.query(FlashSale)
                .filter(
                    FlashSale.is_active.is_(True),
                    FlashSale.start_time <= now,
                    FlashSale.end_time > now,
                )
                .order_by(FlashSale.end_time.asc())
                .all()
            )

    def get_all_flash_sales(self) -> List[FlashSale]:
        with self._session_factory() as s:
            return s.query(FlashSale).order_by(FlashSale.created_at.desc()).all()

    def create_flash_sale(
        self,
        *,
        product_id: str,
        sale_price,
        start_time,
        end_time,
        banner_text: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> FlashSale:
        price = _parse_amount(sale_price, "salePrice")
        start = _parse_time(start_time, "startTime")
        end = _parse_time(end_time, "endTime")
        if end <= start:
            raise InvalidInput("End time must be after start time")
        with self._session_factory() as s:
            product = s.get(Product, product_id)
            if product is None:
                raise NotFound("Product not found")
            if price >= to_money(product.price):
                raise InvalidInput("Sale price must be less than the original price")
            sale = FlashSale(
                id=str(uuid4()),
                product=product,
                sale_price=price,
                original_price=to_money(product.price),
                banner_text=banner_text or "Flash Sale!",
                start_time=start,
                end_time=end,
                is_active=True,
                created_by=created_by,
            )
            s.add(sale)
            s.flush()
            log_event("info", "flash_sale.created", flash_sale_id=sale.id, product_id=product_id, sale_price=price)
            return sale

    def update_flash_sale(self, flash_sale_id: str, changes: Dict) -> FlashSale:
        with self._session_factory() as s:
            sale = s.get(FlashSale, flash_sale_id)
            if sale is None:
                raise NotFound("Flash sale not found")
            if "salePrice" in changes:
                price = _parse_amount(changes["salePrice"], "salePrice")
                if price >= to_money(sale.product.price):
                    raise InvalidInput("Sale price must be less than the original price")
                sale.sale_price = price
            if "bannerText" in changes:
                sale.banner_text = str(changes["bannerText"] or "Flash Sale!")
            if changes.get("startTime"):
                sale.start_time = _parse_time(changes["startTime"], "startTime")
            if changes.get("endTime"):
                sale.end_time = _parse_time(changes["endTime"], "endTime")
            if "isActive" in changes:
                sale.is_active = bool(changes["isActive"])
            if sale.end_time <= sale.start_time:
                raise InvalidInput("End time must be after start time")
            s.flush()
            return sale

    def delete_flash_sale(self, flash_sale_id: str) -> None:
        with self._session_factory() as s:
            sale = s.get(FlashSale, flash_sale_id)
            if sale is None:
                raise NotFound("Flash sale not found")
            s.delete(sale)

    # -- promotions --------------------------------------------------------

    def get_active_promotions(self) -> List[Promotion]:
        now = self._clock()
        with self._session_factory() as s:
            return (
                s.query(Promotion)
                .filter(Promotion.is_active.is_(True), Promotion.start_date <= now, Promotion.end_date > now)
                .order_by(Promotion.end_date.asc())
                .all()
            )

    def get_all_promotions(self) -> List[Promotion]:
        with self._session_factory() as s:
            return s.query(Promotion).order_by(Promotion.created_at.desc()).all()

    def create_promotion(
        self,
        *,
        type: str,
        title: str,
        discount_percent,
        start_date,
        end_date,
        min_order_amount=None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Promotion:
        if type not in PROMOTION_TYPES:
            raise InvalidInput(f"type must be one of {', '.join(PROMOTION_TYPES)}")
        if not title or not str(title).strip():
            raise InvalidInput("title is required")
        percent = self._parse_percent(discount_percent)
        start = _parse_time(start_date, "startDate")
        end = _parse_time(end_date, "endDate")
        if end <= start:
            raise InvalidInput("End date must be after start date")
        with self._session_factory() as s:
            promo = Promotion(
                id=str(uuid4()),
                type=type,
                title=str(title).strip(),
                description=description,
                discount_percent=percent,
                min_order_amount=_parse_amount(min_order_amount or 0, "minOrderAmount"),
                start_date=start,
                end_date=end,
                is_active=True,
                created_by=created_by,
            )
            s.add(promo)
            s.flush()
            log_event("info", "promotion.created", promotion_id=promo.id, type=type, discount_percent=percent)
            return promo

    def update_promotion(self, promotion_id: str, changes: Dict) -> Promotion:
        with self._session_factory() as s:
            promo = s.get(Promotion, promotion_id)
            if promo is None:
                raise NotFound("Promotion not found")
            if "title" in changes:
                promo.title = str(changes["title"] or promo.title)
            if "description" in changes:
                promo.description = changes["description"]
            if "discountPercent" in changes:
                promo.discount_percent = self._parse_percent(changes["discountPercent"])
            if "minOrderAmount" in changes:
                promo.min_order_amount = _parse_amount(changes["minOrderAmount"], "minOrderAmount")
            if "isActive" in changes:
                promo.is_active = bool(changes["isActive"])
            if changes.get("startDate"):
                promo.start_date = _parse_time(changes["startDate"], "startDate")
            if changes.get("endDate"):
                promo.end_date = _parse_time(changes["endDate"], "endDate")
            if promo.end_date <= promo.start_date:
                raise InvalidInput("End date must be after start date")
            s.flush()
            return promo

    def delete_promotion(self, promotion_id: str) -> None:
        with self._session_factory() as s:
            promo = s.get(Promotion, promotion_id)
            if promo is None:
                raise NotFound("Promotion not found")
            s.delete(promo)

    @staticmethod
    def _parse_percent(value) -> int:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise InvalidInput("Discount must be a whole number between 0 and 100")
        try:
            percent = int(value)
        except (TypeError, ValueError):
            raise InvalidInput("Discount must be a whole number between 0 and 100")
        if percent < 0 or percent > 100:
            raise InvalidInput("Discount must be between 0 and 100")
        return percent

    # -- delivery ----------------------------------------------------------

    def _active_delivery_promotion(self, session) -> Optional[Promotion]:
        now = self._clock()
        return (
            session.query(Promotion)
            .filter(
                Promotion.type == RAMADAN_DELIVERY,
                Promotion.is_active.is_(True),
                Promotion.start_date <= now,
                Promotion.end_date > now,
            )
            .order_by(Promotion.min_order_amount.asc(), Promotion.created_at.desc(), Promotion.id.asc())
            .first()
        )

    def calculate_delivery_discount(self, subtotal: Decimal, delivery_fee: Decimal, address: str, *, session=None) -> Dict:
        """Return ``{zone, discount_amount, discount_percent}`` for an order."""
        fee = to_money(delivery_fee)
        with use_session(self._session_factory, session) as s:
            promo = self._active_delivery_promotion(s)
            if promo is None or to_money(subtotal) < to_money(promo.min_order_amount):
                return {"zone": ZONE_3_FULL, "discount_amount": ZERO, "discount_percent": 0}
        zone = determine_delivery_zone(address)
        percent = ZONE_DISCOUNT_PERCENT[zone]
        return {"zone": zone, "discount_amount": percent_of(fee, percent), "discount_percent": percent}
