# -*- coding: utf-8 -*-
# src/schemas/cart.py
from marshmallow import Schema, fields, EXCLUDE


class AddCartItemSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    productId = fields.String(required=True)
    # Range is enforced by CartService so every caller gets InvalidQuantity
    quantity = fields.Integer(load_default=1, strict=True)


class UpdateQuantitySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    quantity = fields.Integer(required=True, strict=True)
