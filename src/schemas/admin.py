# -*- coding: utf-8 -*-
"""
Admin request schemas.
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from src.config.license_tiers import get_license_tier, normalize_license_type


class GrantLicenseRequest(BaseModel):
    """Schema for manually granting a license (support, comps, migrations)."""
    user_id: str = Field(..., min_length=1, max_length=64,
                         description="User receiving the license")
    product_id: str = Field(..., min_length=1, max_length=64,
                            description="Licensed product")
    license_type: str = Field('basic', description="License tier name")
    order_id: Optional[str] = Field(
        None, max_length=64, description="Order reference; generated when omitted")
    reason: Optional[str] = Field(
        None, max_length=500, description="Why the license was granted")

    @field_validator('license_type')
    @classmethod
    def validate_license_type(cls, v):
        """License type must name a configured tier."""
        if get_license_tier(v) is None:
            raise ValueError(f'Unknown license type: {v}')
        return normalize_license_type(v)


class DeactivateLicenseRequest(BaseModel):
    """Schema for revoking a license."""
    reason: Optional[str] = Field(None, max_length=500)
