# -*- coding: utf-8 -*-
"""
Access pass plans.

Prices are in cents and can be overridden per plan with
ACCESS_PASS_MONTHLY_PRICE / ACCESS_PASS_YEARLY_PRICE / ACCESS_PASS_LIFETIME_PRICE.
"""
import os
from typing import Dict, Any, Optional

MONTHLY = 'monthly'
YEARLY = 'yearly'
LIFETIME = 'lifetime'


def _price(name: str, default: int) -> int:
    return int(os.getenv(f'ACCESS_PASS_{name.upper()}_PRICE', str(default)))


ACCESS_PASS_PLANS: Dict[str, Dict[str, Any]] = {
    MONTHLY: {
        'price': _price(MONTHLY, 2900),
        'interval': 'month',
        'name': 'Monthly Access Pass',
        'description': 'Unlimited downloads for 1 month',
    },
    YEARLY: {
        'price': _price(YEARLY, 29000),
        'interval': 'year',
        'name': 'Yearly Access Pass',
        'description': 'Unlimited downloads for 1 year',
    },
    LIFETIME: {
        'price': _price(LIFETIME, 99900),
        'interval': None,
        'name': 'Lifetime Access Pass',
        'description': 'Unlimited downloads forever',
    },
}


def get_access_pass_plan(pass_type: Optional[str]) -> Optional[Dict[str, Any]]:
    if not pass_type:
        return None
    return ACCESS_PASS_PLANS.get(pass_type.strip().lower())


def is_recurring(pass_type: str) -> bool:
    plan = get_access_pass_plan(pass_type)
    return bool(plan and plan['interval'])
