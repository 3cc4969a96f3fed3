# -*- coding: utf-8 -*-
# src/schemas/catalog.py
from marshmallow import Schema, fields, validate, EXCLUDE

from src.services.catalog import SORT_ORDERS, MAX_PER_PAGE


class ProductSearchSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    q = fields.String(load_default=None)
    category = fields.String(load_default=None)
    freebie = fields.Boolean(load_default=None)
    min_price = fields.Decimal(load_default=None, validate=validate.Range(min=0))
    max_price = fields.Decimal(load_default=None, validate=validate.Range(min=0))
    sort = fields.String(load_default='recent', validate=validate.OneOf(sorted(SORT_ORDERS)))
    page = fields.Integer(load_default=1, validate=validate.Range(min=1))
    per_page = fields.Integer(load_default=20, validate=validate.Range(min=1, max=MAX_PER_PAGE))
