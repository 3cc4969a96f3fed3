"""
Catalog routes
"""
from flask import Blueprint, request, jsonify

from src.schemas.catalog import ProductSearchSchema
from src.services.catalog import CatalogService

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


@products_bp.route('', methods=['GET'])
def search_products():
    """
    Search published products

    Query Parameters:
    - q: Text matched against title and slug
    - category: Category slug
    - freebie: true/false
    - min_price / max_price: Price bounds
    - sort: recent, price_asc, price_desc, title
    - page: Page number (default: 1)
    - per_page: Items per page (default: 20, max: 100)
    """
    filters = ProductSearchSchema().load(request.args)
    return jsonify(CatalogService().search(filters)), 200


@products_bp.route('/<product_id>', methods=['GET'])
def get_product(product_id):
    product = CatalogService().get_product(product_id)
    data = product.to_dict()
    data['files'] = [
        {'name': f.get('name'), 'size': f.get('size'), 'content_type': f.get('content_type')}
        for f in product.files
    ]
    return jsonify(data), 200
