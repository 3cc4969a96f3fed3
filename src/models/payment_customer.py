# -*- coding: utf-8 -*-
# src/models/payment_customer.py
from src.infra.db import db
from src.utils.timeutil import utcnow


class PaymentCustomer(db.Model):
    __tablename__ = 'payment_customers'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    provider_customer_id = db.Column(db.String(128), unique=True, nullable=False)
    email = db.Column(db.String(255), index=True)
    name = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
