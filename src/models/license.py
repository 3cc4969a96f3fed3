"""
License model.

Exactly one license per (user, product, order). The download counter only
moves through LicenseStore.increment_download, which enforces the limit in
the UPDATE statement itself.
"""
from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Dict, Any

from src.infra.db import db
from src.models.types import new_id
from src.utils.timeutil import utcnow, isoformat


def generate_license_key() -> str:
    return f"SF-{secrets.token_hex(4)}-{secrets.token_hex(4)}".upper()


class License(db.Model):
    __tablename__ = 'licenses'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'product_id', 'order_id', name='uq_licenses_user_product_order'),
        db.CheckConstraint('download_count >= 0', name='ck_licenses_download_count_non_negative'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    license_key = db.Column(db.String(32), unique=True, nullable=False, default=generate_license_key)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=False)

    license_type = db.Column(db.String(20), nullable=False, default='basic')
    purchase_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0'))
    currency = db.Column(db.String(3), nullable=False, default='USD')

    download_count = db.Column(db.Integer, nullable=False, default=0)
    download_limit = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def remaining_downloads(self) -> int:
        return max((self.download_limit or 0) - (self.download_count or 0), 0)

    def is_expired(self, now=None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'license_key': self.license_key,
            'user_id': self.user_id,
            'product_id': self.product_id,
            'order_id': self.order_id,
            'license_type': self.license_type,
            'purchase_price': float(self.purchase_price or 0),
            'currency': self.currency,
            'download_count': self.download_count,
            'download_limit': self.download_limit,
            'remaining_downloads': self.remaining_downloads,
            'is_active': self.is_active,
            'expires_at': isoformat(self.expires_at),
            'created_at': isoformat(self.created_at),
        }
