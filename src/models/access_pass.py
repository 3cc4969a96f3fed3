"""
Access pass model: a catalog-wide entitlement bought as a subscription
(monthly/yearly) or a one-time lifetime purchase.
"""
from __future__ import annotations

from typing import Dict, Any

from src.infra.db import db
from src.models.types import new_id
from src.utils.timeutil import utcnow, isoformat

INCOMPLETE = 'incomplete'
ACTIVE = 'active'
PAST_DUE = 'past_due'
CANCELLED = 'cancelled'
EXPIRED = 'expired'

# Stripe subscription statuses -> pass status
SUBSCRIPTION_STATUS_MAP = {
    'active': ACTIVE,
    'trialing': ACTIVE,
    'incomplete': INCOMPLETE,
    'past_due': PAST_DUE,
    'unpaid': PAST_DUE,
    'canceled': CANCELLED,
    'incomplete_expired': EXPIRED,
}

# A pass in any of these states holds the user's single pass slot
HOLDING_STATUSES = (INCOMPLETE, ACTIVE, PAST_DUE)


class AccessPass(db.Model):
    __tablename__ = 'access_passes'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    pass_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=INCOMPLETE, index=True)

    stripe_subscription_id = db.Column(db.String(128), unique=True)
    stripe_payment_intent_id = db.Column(db.String(128), unique=True)
    stripe_customer_id = db.Column(db.String(128))

    current_period_start = db.Column(db.DateTime)
    current_period_end = db.Column(db.DateTime)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)

    amount = db.Column(db.Integer, nullable=False, default=0)  # cents
    currency = db.Column(db.String(3), nullable=False, default='USD')
    total_downloads = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    cancelled_at = db.Column(db.DateTime)

    def is_current(self, now=None) -> bool:
        """Active and inside its period; lifetime passes have no period end."""
        if self.status != ACTIVE:
            return False
        if self.current_period_end is None:
            return True
        return self.current_period_end > (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'pass_type': self.pass_type,
            'status': self.status,
            'stripe_subscription_id': self.stripe_subscription_id,
            'current_period_start': isoformat(self.current_period_start),
            'current_period_end': isoformat(self.current_period_end),
            'cancel_at_period_end': self.cancel_at_period_end,
            'amount': self.amount,
            'currency': self.currency,
            'total_downloads': self.total_downloads,
            'created_at': isoformat(self.created_at),
            'cancelled_at': isoformat(self.cancelled_at),
        }
