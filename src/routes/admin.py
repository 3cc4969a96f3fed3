"""
Admin routes
Manual license grants and revocations, protected by STOREFRONT_ADMIN_TOKEN
"""
from flask import Blueprint, request, jsonify

from src.infra.log import get_logger
from src.middleware.auth import require_admin_token
from src.models.order import generate_order_number
from src.schemas.admin import GrantLicenseRequest, DeactivateLicenseRequest
from src.services.catalog import CatalogService
from src.services.license_store import LicenseStore

logger = get_logger('storefront.admin')
admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin_bp.route('/licenses', methods=['POST'])
@require_admin_token
def grant_license():
    """
    Grant a license without a payment

    Body: {"user_id": "...", "product_id": "...", "license_type": "basic",
           "order_id": "optional", "reason": "optional"}
    Repeating a grant with the same order_id returns the existing license.
    """
    data = GrantLicenseRequest(**(request.get_json(silent=True) or {}))
    CatalogService().get_product(data.product_id, published_only=False)

    order_id = data.order_id or generate_order_number().replace('ORD', 'ADMIN', 1)
    license = LicenseStore().create(data.user_id, data.product_id, order_id, data.license_type)
    logger.info(
        "License granted by admin",
        license_id=license.id,
        user_id=data.user_id,
        product_id=data.product_id,
        reason=data.reason,
    )
    return jsonify({'license': license.to_dict()}), 201


@admin_bp.route('/licenses/<license_id>/deactivate', methods=['POST'])
@require_admin_token
def deactivate_license(license_id):
    data = DeactivateLicenseRequest(**(request.get_json(silent=True) or {}))
    license = LicenseStore().deactivate(license_id)
    logger.info("License deactivated by admin", license_id=license_id, reason=data.reason)
    return jsonify({'license': license.to_dict()}), 200
