# -*- coding: utf-8 -*-
from src.infra.db import db

from .product import Product
from .cart import Cart, CartItem
from .order import Order, OrderItem
from .license import License
from .access_pass import AccessPass
from .payment_customer import PaymentCustomer
from .processed_event import ProcessedEvent
from .download_activity import DownloadActivity
