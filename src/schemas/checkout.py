# -*- coding: utf-8 -*-
# src/schemas/checkout.py
from marshmallow import Schema, fields, validate, EXCLUDE


class CheckoutItemSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    productId = fields.String(required=True)
    quantity = fields.Integer(load_default=1, strict=True)


class CheckoutIntentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    items = fields.List(fields.Nested(CheckoutItemSchema), required=True)
    licenseType = fields.String(load_default='basic')


class SubscriptionSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    passType = fields.String(required=True)


class ConfirmPaymentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    paymentIntentId = fields.String(required=True, validate=validate.Length(min=1))
    paymentMethod = fields.String(load_default=None)
