"""
Download routes
Entitlement check, download link issuance and secure link redemption
"""
from flask import Blueprint, request, jsonify, redirect

from src.middleware.auth import require_user, get_current_user_id
from src.models.download_activity import SOURCE_ACCESS_PASS
from src.services.catalog import CatalogService
from src.services.download_issuer import DownloadIssuer, FREE_PRODUCT_LICENSE, ACCESS_PASS_LICENSE
from src.services.entitlements import EntitlementChecker, FREE_PRODUCT
from src.services.errors import EntitlementDenied, NotFoundError
from src.services.request_context import get_client

downloads_bp = Blueprint('downloads', __name__, url_prefix='/api/download')


def _file_summaries(product):
    return [
        {'key': f.get('key'), 'name': f.get('name'), 'size': f.get('size')}
        for f in product.files
    ]


@downloads_bp.route('/<product_id>', methods=['GET'])
@require_user
def download_product(product_id):
    """
    Issue a short-lived download link for a product

    200 {url, expiresIn} / 402 noLicense / 403 licenseInactive or
    downloadLimitExceeded / 404 unknown product or no files
    """
    user_id = get_current_user_id()
    checker = EntitlementChecker()
    issuer = DownloadIssuer()
    ip_address, user_agent = get_client()

    decision = checker.can_download(user_id, product_id)
    if not decision.allowed:
        issuer.record_denial(user_id, product_id, decision.reason, ip_address, user_agent)
        decision.raise_if_denied()

    product = CatalogService().get_product(product_id)
    if not product.files:
        raise NotFoundError('No files available for this product')

    license_id = FREE_PRODUCT_LICENSE if decision.reason == FREE_PRODUCT else decision.license.id
    try:
        link = issuer.issue(user_id, product_id, license_id)
    except EntitlementDenied as e:
        # Lost the race for the last download between check and increment
        issuer.record_denial(user_id, product_id, e.reason, ip_address, user_agent)
        raise

    body = {
        'url': link['url'],
        'expiresIn': link['expiresIn'],
        'reason': decision.reason,
        'files': _file_summaries(product),
    }
    if decision.license is not None:
        body['remainingDownloads'] = max(decision.license.remaining_downloads, 0)
    return jsonify(body), 200


@downloads_bp.route('/access-pass/<product_id>', methods=['GET'])
@require_user
def download_with_access_pass(product_id):
    """Issue a download link covered by the caller's active access pass"""
    user_id = get_current_user_id()
    checker = EntitlementChecker()
    issuer = DownloadIssuer()

    decision = checker.can_download_with_access_pass(user_id, product_id)
    if not decision.allowed:
        ip_address, user_agent = get_client()
        issuer.record_denial(user_id, product_id, decision.reason, ip_address, user_agent,
                             source=SOURCE_ACCESS_PASS)
        decision.raise_if_denied()

    product = CatalogService().get_product(product_id)
    if not product.files:
        raise NotFoundError('No files available for this product')

    link = issuer.issue(user_id, product_id, ACCESS_PASS_LICENSE)
    checker.record_access_pass_download(decision.access_pass)
    return jsonify({
        'url': link['url'],
        'expiresIn': link['expiresIn'],
        'reason': decision.reason,
        'files': _file_summaries(product),
    }), 200


@downloads_bp.route('/secure/<token>', methods=['GET'])
def redeem(token):
    """
    Redeem a download link

    Query: file=<key> (required when the product has several files),
    redirect=true to answer with a 302 to the file
    """
    ip_address, user_agent = get_client()
    result = DownloadIssuer().redeem(
        token,
        file_key=request.args.get('file'),
        user_id=get_current_user_id(),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if request.args.get('redirect', '').lower() in ('1', 'true', 'yes'):
        return redirect(result['url'], code=302)
    return jsonify(result), 200
