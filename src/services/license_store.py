"""
License Store

Persists one License per (user, product, order) triple. Download limits
and expiry come from the license tier table in configuration; the store
only applies them.
"""
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from src.config.license_tiers import get_license_tier, normalize_license_type
from src.infra.db import db
from src.infra.log import get_logger
from src.models.license import License
from src.services.errors import ValidationError, NotFoundError
from src.utils.timeutil import utcnow

logger = get_logger('storefront.entitlements')


def pick_preferred(licenses: List[License]) -> Optional[License]:
    """
    Choose the license that decides entitlement for a (user, product) pair.

    Active, unexpired licenses win; among those the one with the most
    remaining downloads, newest first on ties. Without a usable license the
    newest record is returned so the caller can report why it is unusable.
    """
    if not licenses:
        return None
    now = utcnow()
    usable = [lic for lic in licenses if lic.is_active and not lic.is_expired(now)]
    pool = usable or licenses
    return max(pool, key=lambda lic: (lic.remaining_downloads if usable else 0, lic.created_at))


class LicenseStore:

    def create(self, user_id: str, product_id: str, order_id: str, license_type: str,
               purchase_price=Decimal('0'), currency: str = 'USD', commit: bool = True) -> License:
        """
        Create the license for (user, product, order) or return the existing one.

        With commit=False the row is only flushed, joining the caller's
        transaction (order completion).
        """
        tier_name = normalize_license_type(license_type)
        tier = get_license_tier(tier_name)
        if tier is None:
            raise ValidationError(f"Unknown license type: {license_type}", field='licenseType')

        existing = self._find(user_id, product_id, order_id)
        if existing is not None:
            return existing

        license = License(
            user_id=user_id,
            product_id=product_id,
            order_id=order_id,
            license_type=tier.name,
            purchase_price=Decimal(str(purchase_price)),
            currency=currency,
            download_count=0,
            download_limit=tier.download_limit,
            is_active=True,
            expires_at=utcnow() + timedelta(days=tier.expires_in_days) if tier.expires_in_days else None,
        )

        if commit:
            db.session.add(license)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                winner = self._find(user_id, product_id, order_id)
                if winner is None:
                    raise
                return winner
        else:
            # A conflicting insert surfaces as IntegrityError to the
            # transaction owner, which rolls back the whole completion.
            db.session.add(license)
            db.session.flush()

        logger.info(
            "License created",
            license_id=license.id,
            user_id=user_id,
            product_id=product_id,
            order_id=order_id,
            license_type=tier.name,
            download_limit=tier.download_limit,
        )
        return license

    def get(self, user_id: str, product_id: str) -> Optional[License]:
        """The license that currently decides entitlement for the pair, if any."""
        licenses = License.query.filter_by(user_id=user_id, product_id=product_id).all()
        return pick_preferred(licenses)

    def get_by_id(self, license_id: str) -> Optional[License]:
        if not license_id:
            return None
        return db.session.get(License, license_id)

    def list_for_user(self, user_id: str) -> List[License]:
        return (License.query
                .filter_by(user_id=user_id)
                .order_by(License.created_at.desc())
                .all())

    def increment_download(self, license_id: str, commit: bool = True) -> bool:
        """
        Consume one download if the license is active and under its limit.

        The check and the increment are one UPDATE statement, so two
        concurrent downloads can never both take the last slot. Returns
        False when no row qualified.
        """
        result = db.session.execute(
            update(License)
            .where(
                License.id == license_id,
                License.is_active.is_(True),
                License.download_count < License.download_limit,
            )
            .values(download_count=License.download_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        consumed = result.rowcount == 1
        if commit:
            db.session.commit()

        license = db.session.get(License, license_id)
        if license is not None:
            db.session.refresh(license)
        return consumed

    def deactivate(self, license_id: str) -> License:
        license = self.get_by_id(license_id)
        if license is None:
            raise NotFoundError(f"License not found: {license_id}")
        license.is_active = False
        db.session.commit()
        logger.info("License deactivated", license_id=license_id, user_id=license.user_id)
        return license

    def _find(self, user_id: str, product_id: str, order_id: str) -> Optional[License]:
        return License.query.filter_by(
            user_id=user_id, product_id=product_id, order_id=order_id).first()
