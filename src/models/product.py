"""
Catalog product model.

Products are owned by the catalog (seeded by admin tooling); the
entitlement core only reads them.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Any, List

from src.infra.db import db
from src.models.types import JSONList, new_id
from src.utils.timeutil import utcnow, isoformat


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, index=True)
    category = db.Column(db.String(100), index=True)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0'))
    sale_price = db.Column(db.Numeric(10, 2))
    freebie = db.Column(db.Boolean, nullable=False, default=False)

    # [{"key": "products/ui-kit/main.zip", "name": "main.zip",
    #   "content_type": "application/zip", "size": 1024}]
    file_manifest = db.Column(JSONList, default=list)

    is_published = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def effective_price(self) -> Decimal:
        """Sale price when one is set, list price otherwise."""
        if self.sale_price is not None:
            return Decimal(self.sale_price)
        return Decimal(self.price or 0)

    @property
    def files(self) -> List[Dict[str, Any]]:
        return list(self.file_manifest or [])

    def find_file(self, key: str):
        for entry in self.files:
            if entry.get('key') == key:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'category': self.category,
            'price': float(self.price) if self.price is not None else None,
            'sale_price': float(self.sale_price) if self.sale_price is not None else None,
            'freebie': self.freebie,
            'file_count': len(self.files),
            'created_at': isoformat(self.created_at),
        }
