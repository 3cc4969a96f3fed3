"""
Catalog Service

Read-only access to products. Search filters arrive as plain data and are
translated into SQLAlchemy expressions, so every caller-supplied value is a
bound parameter.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Iterable, Optional

from sqlalchemy import or_

from src.infra.db import db
from src.models.product import Product
from src.services.errors import ProductNotFound, ValidationError

SORT_ORDERS = {
    'recent': Product.created_at.desc(),
    'price_asc': Product.price.asc(),
    'price_desc': Product.price.desc(),
    'title': Product.title.asc(),
}

MAX_PER_PAGE = 100


class CatalogService:

    def get_product(self, product_id: str, published_only: bool = True) -> Product:
        """Look up a product or raise ProductNotFound."""
        product = db.session.get(Product, product_id) if product_id else None
        if product is None or (published_only and not product.is_published):
            raise ProductNotFound(product_id)
        return product

    def find_product(self, product_id: str) -> Optional[Product]:
        if not product_id:
            return None
        return db.session.get(Product, product_id)

    def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """Fetch several products at once, keyed by id. Missing ids are simply absent."""
        ids = list({pid for pid in product_ids if pid})
        if not ids:
            return {}
        products = Product.query.filter(Product.id.in_(ids)).all()
        return {p.id: p for p in products}

    def build_query(self, filters: Dict[str, Any]):
        """Translate a filter dict into a Product query."""
        query = Product.query.filter(Product.is_published.is_(True))

        text = (filters.get('q') or '').strip()
        if text:
            pattern = f"%{text}%"
            query = query.filter(or_(Product.title.ilike(pattern), Product.slug.ilike(pattern)))

        category = filters.get('category')
        if category:
            query = query.filter(Product.category == category)

        freebie = filters.get('freebie')
        if freebie is not None:
            query = query.filter(Product.freebie.is_(bool(freebie)))

        min_price = _decimal(filters.get('min_price'), 'min_price')
        if min_price is not None:
            query = query.filter(Product.price >= min_price)

        max_price = _decimal(filters.get('max_price'), 'max_price')
        if max_price is not None:
            query = query.filter(Product.price <= max_price)

        sort = filters.get('sort') or 'recent'
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order: {sort}", field='sort')
        return query.order_by(SORT_ORDERS[sort])

    def search(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        """Paginated product search."""
        page = max(int(filters.get('page') or 1), 1)
        per_page = min(max(int(filters.get('per_page') or 20), 1), MAX_PER_PAGE)

        pagination = self.build_query(filters).paginate(page=page, per_page=per_page, error_out=False)
        return {
            'products': [p.to_dict() for p in pagination.items],
            'pagination': {
                'page': pagination.page,
                'per_page': pagination.per_page,
                'total': pagination.total,
                'pages': pagination.pages,
            },
        }


def _decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", field=field)

