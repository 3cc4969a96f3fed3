"""
Secure Download Issuer

Mints short-lived download links. The token is an HS256 JWT whose claims
bind it to one user, one product and one license, so a token cannot be
replayed for another product or user even when the token store is down.

Issuing consumes one download from the bound license through the License
Store's increment-with-ceiling; free and access-pass downloads have no
license and consume nothing.
"""
import time
import uuid
from typing import Dict, Any, Optional
from urllib.parse import quote, urlencode

import jwt
from flask import current_app, has_app_context

from src.infra.db import db
from src.infra.log import get_logger
from src.models.download_activity import (
    DownloadActivity, SOURCE_LICENSE, SOURCE_FREE, SOURCE_ACCESS_PASS,
)
from src.services import metrics
from src.services.catalog import CatalogService
from src.services.errors import EntitlementDenied, NotFoundError, ValidationError
from src.services.license_store import LicenseStore
from src.services.token_store import TokenStore

logger = get_logger('storefront.downloads')

ALGORITHM = 'HS256'
PURPOSE = 'download'

# Pseudo license ids for downloads that are not backed by a License
FREE_PRODUCT_LICENSE = 'free-product'
ACCESS_PASS_LICENSE = 'access-pass'

INVALID_TOKEN = 'invalidToken'
TOKEN_EXPIRED = 'tokenExpired'
FILE_NOT_AUTHORIZED = 'fileNotAuthorized'


def source_for(license_id: str) -> str:
    if license_id == FREE_PRODUCT_LICENSE:
        return SOURCE_FREE
    if license_id == ACCESS_PASS_LICENSE:
        return SOURCE_ACCESS_PASS
    return SOURCE_LICENSE


class DownloadIssuer:

    def __init__(self, licenses: Optional[LicenseStore] = None,
                 catalog: Optional[CatalogService] = None,
                 token_store: Optional[TokenStore] = None,
                 secret: Optional[str] = None,
                 ttl_seconds: Optional[int] = None):
        self.licenses = licenses or LicenseStore()
        self.catalog = catalog or CatalogService()
        self._token_store = token_store
        self._secret = secret
        self._ttl_seconds = ttl_seconds

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _config(self, key: str, default=None):
        if has_app_context():
            return current_app.config.get(key, default)
        return default

    @property
    def secret(self) -> str:
        return self._secret or self._config('DOWNLOAD_TOKEN_SECRET') or self._config('SECRET_KEY')

    @property
    def ttl_seconds(self) -> int:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return int(self._config('DOWNLOAD_TOKEN_TTL_SECONDS', 300))

    @property
    def token_store(self) -> TokenStore:
        if self._token_store is None:
            store = current_app.extensions.get('token_store') if has_app_context() else None
            self._token_store = store or TokenStore()
        return self._token_store

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def issue(self, user_id: str, product_id: str, license_id: str) -> Dict[str, Any]:
        """
        Mint a download link for an entitlement the caller already checked.

        Raises EntitlementDenied(downloadLimitExceeded) when the license has
        no download left at the moment of the increment.
        """
        source = source_for(license_id)
        if source == SOURCE_LICENSE and not self.licenses.increment_download(license_id):
            raise EntitlementDenied(
                'downloadLimitExceeded', 'You have reached the download limit for this license')

        ttl = self.ttl_seconds
        now = int(time.time())
        claims = {
            'sub': str(user_id),
            'pid': str(product_id),
            'lid': str(license_id),
            'purpose': PURPOSE,
            'jti': uuid.uuid4().hex,
            'iat': now,
            'exp': now + ttl,
        }
        token = jwt.encode(claims, self.secret, algorithm=ALGORITHM)
        base_url = (self._config('PUBLIC_BASE_URL') or '').rstrip('/')

        metrics.record('record_download', source)
        logger.info(
            "Download link issued",
            user_id=user_id,
            product_id=product_id,
            license_id=license_id,
            source=source,
            expires_in=ttl,
        )
        return {
            'url': f"{base_url}/api/download/secure/{token}",
            'expiresIn': ttl,
            'token': token,
        }

    def verify(self, token: str, user_id: Optional[str] = None,
               product_id: Optional[str] = None) -> Dict[str, Any]:
        """Decode a token and check its purpose and bindings. Returns the claims."""
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={'require': ['exp', 'sub', 'pid', 'lid', 'jti']},
            )
        except jwt.ExpiredSignatureError:
            raise EntitlementDenied(TOKEN_EXPIRED, 'Download link has expired')
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid download token", error=str(e))
            raise EntitlementDenied(INVALID_TOKEN, 'Invalid download token')

        if claims.get('purpose') != PURPOSE:
            raise EntitlementDenied(INVALID_TOKEN, 'Invalid download token')
        if user_id is not None and claims['sub'] != str(user_id):
            raise EntitlementDenied(INVALID_TOKEN, 'Download link belongs to another user')
        if product_id is not None and claims['pid'] != str(product_id):
            raise EntitlementDenied(INVALID_TOKEN, 'Download link is for another product')
        return claims

    def redeem(self, token: str, file_key: Optional[str] = None, user_id: Optional[str] = None,
               ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Dict[str, Any]:
        """
        Exchange a valid token for the storage URL of one product file.

        Each (token, file) pair can be redeemed once while the token lives.
        """
        claims = self.verify(token, user_id=user_id)
        product = self.catalog.find_product(claims['pid'])
        if product is None:
            raise NotFoundError(f"Product not found: {claims['pid']}")

        entry = self._select_file(product, file_key)

        remaining = max(int(claims['exp']) - int(time.time()), 1)
        if not self.token_store.mark_used(f"{claims['jti']}:{entry['key']}", remaining):
            raise EntitlementDenied(INVALID_TOKEN, 'Download link has already been used')

        source = source_for(claims['lid'])
        activity = DownloadActivity(
            user_id=claims['sub'],
            product_id=product.id,
            license_id=claims['lid'] if source == SOURCE_LICENSE else None,
            source=source,
            file_key=entry['key'],
            ip_address=ip_address,
            user_agent=(user_agent or '')[:512] or None,
            success=True,
        )
        db.session.add(activity)
        db.session.commit()

        logger.info(
            "Download redeemed",
            user_id=claims['sub'],
            product_id=product.id,
            file_key=entry['key'],
            source=source,
        )
        return {
            'url': self.storage_url(entry),
            'filename': entry.get('name') or entry['key'].rsplit('/', 1)[-1],
            'contentType': entry.get('content_type') or 'application/octet-stream',
            'size': entry.get('size'),
            'expiresIn': remaining,
        }

    def storage_url(self, entry: Dict[str, Any]) -> str:
        base = (self._config('STORAGE_BASE_URL') or '').rstrip('/')
        query = urlencode({'dl': entry.get('name') or entry['key'].rsplit('/', 1)[-1]})
        return f"{base}/{quote(entry['key'])}?{query}"

    def _select_file(self, product, file_key: Optional[str]) -> Dict[str, Any]:
        files = product.files
        if not files:
            raise NotFoundError('No files available for this product')
        if file_key:
            entry = product.find_file(file_key)
            if entry is None:
                raise EntitlementDenied(FILE_NOT_AUTHORIZED, 'File not authorized for this download link')
            return entry
        if len(files) > 1:
            raise ValidationError(
                'Multiple files available, specify one with the file parameter', field='file')
        return files[0]

    def record_denial(self, user_id: str, product_id: str, reason: str,
                      ip_address: Optional[str] = None, user_agent: Optional[str] = None,
                      source: str = SOURCE_LICENSE):
        """Audit a refused download attempt."""
        db.session.add(DownloadActivity(
            user_id=user_id,
            product_id=product_id,
            source=source,
            ip_address=ip_address,
            user_agent=(user_agent or '')[:512] or None,
            success=False,
            error_message=reason,
        ))
        db.session.commit()
