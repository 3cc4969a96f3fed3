# -*- coding: utf-8 -*-
"""
License tier configuration.

Single table for everything that depends on the license type: the price
multiplier applied at checkout, the download limit written onto new
licenses and an optional expiry. Supports environment overrides via
STOREFRONT_LICENSE_TIERS_JSON, e.g.::

    {"extended": {"download_limit": 100}, "basic": {"expires_in_days": 365}}
"""
import os
import json
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Optional

logger = logging.getLogger(__name__)

BASIC = 'basic'
EXTENDED = 'extended'


@dataclass(frozen=True)
class LicenseTier:
    name: str
    price_multiplier: Decimal
    download_limit: int
    expires_in_days: Optional[int] = None


DEFAULT_LICENSE_TIERS = {
    BASIC: LicenseTier(BASIC, Decimal('1'), 10),
    EXTENDED: LicenseTier(EXTENDED, Decimal('3'), 50),
}

# The storefront historically called the basic tier "standard".
TIER_ALIASES = {
    'standard': BASIC,
}


def load_license_tiers() -> Dict[str, LicenseTier]:
    """
    Load the license tier table with optional environment overrides.

    Unknown tier names in the override are added as new tiers; malformed
    JSON is logged and ignored.
    """
    tiers = dict(DEFAULT_LICENSE_TIERS)

    tiers_json = os.getenv('STOREFRONT_LICENSE_TIERS_JSON')
    if tiers_json:
        try:
            overrides = json.loads(tiers_json)
            for name, values in overrides.items():
                base = tiers.get(name, LicenseTier(name, Decimal('1'), 10))
                tiers[name] = replace(
                    base,
                    price_multiplier=Decimal(str(values.get('price_multiplier', base.price_multiplier))),
                    download_limit=int(values.get('download_limit', base.download_limit)),
                    expires_in_days=values.get('expires_in_days', base.expires_in_days),
                )
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to parse STOREFRONT_LICENSE_TIERS_JSON: {e}")

    return tiers


LICENSE_TIERS = load_license_tiers()


def normalize_license_type(license_type: Optional[str]) -> Optional[str]:
    if not license_type:
        return None
    name = license_type.strip().lower()
    return TIER_ALIASES.get(name, name)


def get_license_tier(license_type: Optional[str]) -> Optional[LicenseTier]:
    """Return the tier for a license type (aliases accepted) or None."""
    name = normalize_license_type(license_type)
    if name is None:
        return None
    return LICENSE_TIERS.get(name)
