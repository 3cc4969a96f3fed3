"""
Entitlement Checker

Decides whether a user may download a product. Reasons are evaluated in a
fixed precedence:

1. freeProduct            product is a freebie, always allowed
2. noLicense              no license record for (user, product)   -> 402
3. licenseInactive        license deactivated or past its expiry  -> 403
4. downloadLimitExceeded  download_count >= download_limit        -> 403
5. licensed               allowed

Access passes are checked through a separate operation and never change
the order above.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update

from src.infra.db import db
from src.infra.log import get_logger
from src.models.access_pass import AccessPass, ACTIVE
from src.models.license import License
from src.services import metrics
from src.services.catalog import CatalogService
from src.services.errors import EntitlementDenied
from src.services.license_store import LicenseStore
from src.utils.timeutil import utcnow

logger = get_logger('storefront.entitlements')

FREE_PRODUCT = 'freeProduct'
NO_LICENSE = 'noLicense'
LICENSE_INACTIVE = 'licenseInactive'
DOWNLOAD_LIMIT_EXCEEDED = 'downloadLimitExceeded'
LICENSED = 'licensed'
ACCESS_PASS = 'accessPass'
NO_ACCESS_PASS = 'noAccessPass'

DENIAL_MESSAGES = {
    NO_LICENSE: 'You need to purchase a license to download this product',
    LICENSE_INACTIVE: 'Your license for this product is no longer active',
    DOWNLOAD_LIMIT_EXCEEDED: 'You have reached the download limit for this license',
    NO_ACCESS_PASS: 'An active access pass is required',
}


@dataclass
class DownloadDecision:
    allowed: bool
    reason: str
    license: Optional[License] = None
    access_pass: Optional[AccessPass] = None

    def raise_if_denied(self):
        if not self.allowed:
            raise EntitlementDenied(self.reason, DENIAL_MESSAGES.get(self.reason))

    def to_dict(self):
        data = {'canDownload': self.allowed, 'reason': self.reason}
        if self.license is not None:
            data['remainingDownloads'] = self.license.remaining_downloads
        return data


class EntitlementChecker:

    def __init__(self, catalog: Optional[CatalogService] = None, licenses: Optional[LicenseStore] = None):
        self.catalog = catalog or CatalogService()
        self.licenses = licenses or LicenseStore()

    def can_download(self, user_id: str, product_id: str) -> DownloadDecision:
        """Evaluate the download reasons in precedence order. Raises ProductNotFound."""
        product = self.catalog.get_product(product_id)

        if product.freebie:
            decision = DownloadDecision(True, FREE_PRODUCT)
        else:
            license = self.licenses.get(user_id, product_id)
            if license is None:
                decision = DownloadDecision(False, NO_LICENSE)
            elif not license.is_active or license.is_expired():
                decision = DownloadDecision(False, LICENSE_INACTIVE, license)
            elif license.download_count >= license.download_limit:
                decision = DownloadDecision(False, DOWNLOAD_LIMIT_EXCEEDED, license)
            else:
                decision = DownloadDecision(True, LICENSED, license)

        self._record(user_id, product_id, decision)
        return decision

    def has_active_access_pass(self, user_id: str) -> Optional[AccessPass]:
        """The user's current access pass, or None."""
        now = utcnow()
        passes = (AccessPass.query
                  .filter_by(user_id=user_id, status=ACTIVE)
                  .order_by(AccessPass.created_at.desc())
                  .all())
        for access_pass in passes:
            if access_pass.is_current(now):
                return access_pass
        return None

    def can_download_with_access_pass(self, user_id: str, product_id: str) -> DownloadDecision:
        self.catalog.get_product(product_id)
        access_pass = self.has_active_access_pass(user_id)
        if access_pass is None:
            decision = DownloadDecision(False, NO_ACCESS_PASS)
        else:
            decision = DownloadDecision(True, ACCESS_PASS, access_pass=access_pass)
        self._record(user_id, product_id, decision)
        return decision

    def record_access_pass_download(self, access_pass: AccessPass, commit: bool = True):
        """Bump the pass's download counter in a single UPDATE."""
        db.session.execute(
            update(AccessPass)
            .where(AccessPass.id == access_pass.id)
            .values(total_downloads=AccessPass.total_downloads + 1)
            .execution_options(synchronize_session=False)
        )
        if commit:
            db.session.commit()

    def _record(self, user_id: str, product_id: str, decision: DownloadDecision):
        logger.log_entitlement_event(
            user_id=user_id,
            product_id=product_id,
            allowed=decision.allowed,
            reason=decision.reason,
            license_id=decision.license.id if decision.license is not None else None,
        )
        if not decision.allowed:
            metrics.record('record_entitlement_denial', decision.reason)
