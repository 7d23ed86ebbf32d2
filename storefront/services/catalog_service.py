from typing import Dict, Optional, Tuple
import time
from sqlalchemy import or_
from ..db.session import get_session
from ..errors import NotFound
from ..models.product import Product
from ..utils.pagination import normalize_paging
from ..utils.dto import to_product_dto
from .promotion_service import PromotionService


class CatalogService:
    """Catalog querying service.

    Responsibilities:
    - List/search available products with pagination
    - Get single product detail
    - Annotate each product with the unit price checkout would charge now

    Listings are display-only; checkout re-reads prices inside its own
    transaction.
    """

    _cache_ttl_seconds: int = 30
    _cache_max_entries: int = 256

    def __init__(self, promotions: PromotionService, session_factory=get_session, timer=time.time):
        self._promotions = promotions
        self._session_factory = session_factory
        self._timer = timer
        # bounded in-process cache: key -> (ts, result)
        self._cache: Dict[Tuple, Tuple[float, Dict]] = {}

    def _effective_price(self, session, product: Product):
        flash = self._promotions.get_flash_sale_price(product.id, session=session)
        if flash is not None:
            return flash
        if product.discount_price is not None:
            return product.discount_price
        return product.price

    def _remember(self, key: Tuple, now: float, result: Dict) -> None:
        expired = [k for k, (ts, _) in self._cache.items() if now - ts > self._cache_ttl_seconds]
        for k in expired:
            del self._cache[k]
        while len(self._cache) >= self._cache_max_entries:
            oldest = min(self._cache, key=lambda k: self._cache[k][0])
            del self._cache[oldest]
        self._cache[key] = (now, result)

    def list_products(self, *, query: Optional[str] = None, page: int = 1, page_size: int = 20) -> Dict:
        """Return dict: { items: [ProductDTO], page, page_size, total }"""
        p, ps = normalize_paging(page, page_size)
        cache_key = ((query or "").strip().lower(), p, ps)
        now = self._timer()
        cached = self._cache.get(cache_key)
        if cached and now - cached[0] <= self._cache_ttl_seconds:
            return cached[1]

        with self._session_factory() as session:
            q = session.query(Product).filter(Product.is_available.is_(True))
            if cache_key[0]:
                like = f"%{cache_key[0]}%"
                q = q.filter(
                    or_(
                        Product.name.ilike(like),
                        Product.description.ilike(like),
                        Product.slug.ilike(like),
                    )
                )
            total = q.count()
            rows = q.order_by(Product.name.asc(), Product.id.asc()).offset((p - 1) * ps).limit(ps).all()
            items = [to_product_dto(r, self._effective_price(session, r)) for r in rows]
            result = {"items": items, "page": p, "page_size": ps, "total": total}
            self._remember(cache_key, now, result)
            return result

    def get_product(self, product_id: str) -> dict:
        """Return ProductDTO for given product id."""
        with self._session_factory() as session:
            r = (
                session.query(Product)
                .filter(Product.id == product_id, Product.is_available.is_(True))
                .first()
            )
            if r is None:
                raise NotFound("Product not found")
            return to_product_dto(r, self._effective_price(session, r))

    def invalidate_cache(self) -> None:
        """Clear all cached listings; called after any price- or stock-affecting change."""
        self._cache.clear()
