"""
Cart models.

One cart per user; one CartItem per (cart, product). Quantities are merged
in place and never stored as zero.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Dict, Any

from src.infra.db import db
from src.models.types import new_id
from src.utils.timeutil import utcnow, isoformat


class Cart(db.Model):
    __tablename__ = 'carts'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    items = db.relationship(
        'CartItem', backref='cart', lazy=True,
        cascade='all, delete-orphan', order_by='CartItem.added_at')

    def touch(self, ttl_days: int):
        """Refresh updated_at and push the expiry out by ttl_days."""
        now = utcnow()
        self.updated_at = now
        self.expires_at = now + timedelta(days=ttl_days)

    def is_expired(self, now=None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'items': [item.to_dict() for item in self.items],
            'updated_at': isoformat(self.updated_at),
            'expires_at': isoformat(self.expires_at),
        }


class CartItem(db.Model):
    __tablename__ = 'cart_items'
    __table_args__ = (
        db.UniqueConstraint('cart_id', 'product_id', name='uq_cart_items_cart_product'),
        db.CheckConstraint('quantity >= 1', name='ck_cart_items_quantity_positive'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    cart_id = db.Column(db.String(36), db.ForeignKey('carts.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    added_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship('Product', lazy='joined')

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'added_at': isoformat(self.added_at),
        }
        if self.product is not None:
            data['product'] = {
                'title': self.product.title,
                'unit_price': float(self.product.effective_price),
                'freebie': self.product.freebie,
            }
        return data
