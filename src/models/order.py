"""
Order models.

An order snapshots prices at checkout time. Status moves
pending -> completed | failed and never changes after completion.
"""
from __future__ import annotations

import secrets
import time
from decimal import Decimal
from typing import Dict, Any, Optional

from src.infra.db import db
from src.models.types import JSONDict, new_id
from src.utils.timeutil import utcnow, isoformat

PENDING = 'pending'
COMPLETED = 'completed'
FAILED = 'failed'

INDIVIDUAL = 'individual'
ACCESS_PASS = 'access_pass'


def generate_order_number(free: bool = False) -> str:
    prefix = 'ORD-FREE' if free else 'ORD'
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class OrderStateError(Exception):
    """Raised on an illegal order status transition."""


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_number = db.Column(db.String(64), unique=True, nullable=False)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    order_type = db.Column(db.String(20), nullable=False, default=INDIVIDUAL)
    status = db.Column(db.String(20), nullable=False, default=PENDING, index=True)
    license_type = db.Column(db.String(20))

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0'))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0'))
    currency = db.Column(db.String(3), nullable=False, default='USD')

    payment_intent_id = db.Column(db.String(128), unique=True, index=True)
    stripe_customer_id = db.Column(db.String(128))
    payment_metadata = db.Column(JSONDict, default=dict)
    failure_reason = db.Column(db.Text)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime)

    items = db.relationship('OrderItem', backref='order', lazy=True, cascade='all, delete-orphan')

    @property
    def is_free(self) -> bool:
        return Decimal(self.total or 0) == 0

    def mark_completed(self):
        if self.status == COMPLETED:
            raise OrderStateError(f"Order {self.id} is already completed")
        self.status = COMPLETED
        self.completed_at = utcnow()
        self.failure_reason = None

    def mark_failed(self, reason: Optional[str] = None):
        if self.status == COMPLETED:
            raise OrderStateError(f"Order {self.id} is completed and cannot fail")
        self.status = FAILED
        self.failure_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'order_number': self.order_number,
            'user_id': self.user_id,
            'order_type': self.order_type,
            'status': self.status,
            'license_type': self.license_type,
            'subtotal': float(self.subtotal or 0),
            'total': float(self.total or 0),
            'currency': self.currency,
            'payment_intent_id': self.payment_intent_id,
            'failure_reason': self.failure_reason,
            'items': [item.to_dict() for item in self.items],
            'created_at': isoformat(self.created_at),
            'completed_at': isoformat(self.completed_at),
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0'))
    license_type = db.Column(db.String(20), nullable=False, default='basic')

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price or 0) * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'unit_price': float(self.unit_price or 0),
            'license_type': self.license_type,
            'line_total': float(self.line_total),
        }
