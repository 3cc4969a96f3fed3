"""
Checkout Service (payment orchestration)

Turns requested items into either an immediate free grant or a provider
payment intent, and turns a confirmed payment into a completed order with
one license per item. Completion is shared by the synchronous confirm call
and the provider webhook and is idempotent on both the event id and the
payment intent id, so at-least-once delivery never creates a second order
or license.

Retry policy: only idempotent provider reads (customer lookup, intent
retrieval) are retried, once. Intent, subscription and confirmation calls
move money and are never retried here.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from src.config.access_passes import LIFETIME, get_access_pass_plan, is_recurring
from src.config.license_tiers import BASIC, get_license_tier
from src.infra.db import db
from src.infra.log import get_logger
from src.models.access_pass import (
    AccessPass, ACTIVE, INCOMPLETE, HOLDING_STATUSES, SUBSCRIPTION_STATUS_MAP,
)
from src.models.license import License
from src.models.order import (
    Order, OrderItem, COMPLETED, PENDING, INDIVIDUAL, ACCESS_PASS, generate_order_number,
)
from src.models.payment_customer import PaymentCustomer
from src.models.processed_event import ProcessedEvent
from src.models.product import Product
from src.services import metrics
from src.services.cart_service import CartService, validate_quantity
from src.services.catalog import CatalogService
from src.services.errors import (
    DuplicateOperation, DuplicateSubscription, NotFoundError, PaymentDeclined,
    ProductNotFound, ProviderUnavailable, ValidationError,
)
from src.services.license_store import LicenseStore
from src.services.payments.base import PaymentBackend, PaymentIntentInfo
from src.utils.timeutil import utcnow

logger = get_logger('storefront.checkout')

CENT = Decimal('0.01')
PAYMENT_SUCCEEDED_EVENT = 'payment_intent.succeeded'


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def held_access_pass(user_id: str) -> Optional[AccessPass]:
    """The pass occupying the user's single pass slot, if any."""
    return (AccessPass.query
            .filter(AccessPass.user_id == user_id, AccessPass.status.in_(HOLDING_STATUSES))
            .order_by(AccessPass.created_at)
            .first())


@dataclass
class LineItem:
    product: Product
    quantity: int
    unit_price: Decimal
    license_type: str

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'productId': self.product.id,
            'title': self.product.title,
            'quantity': self.quantity,
            'unitPrice': float(self.unit_price),
            'licenseType': self.license_type,
            'lineTotal': float(self.line_total),
        }


@dataclass
class CheckoutResult:
    is_free: bool
    total: Decimal
    currency: str
    items: List[LineItem] = field(default_factory=list)
    free_items: List[LineItem] = field(default_factory=list)
    order: Optional[Order] = None
    free_order: Optional[Order] = None
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    mock_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'isFree': self.is_free,
            'total': float(self.total),
            'currency': self.currency,
            'items': [item.to_dict() for item in self.items],
            'freeItems': [item.to_dict() for item in self.free_items],
            'mockMode': self.mock_mode,
        }
        if self.free_order is not None:
            data['freeOrder'] = self.free_order.to_dict()
        if not self.is_free:
            data.update({
                'clientSecret': self.client_secret,
                'paymentIntentId': self.payment_intent_id,
                'amount': to_minor_units(self.total),
                'orderId': self.order.id if self.order is not None else None,
            })
        return data


class CheckoutService:

    def __init__(self, backend: Optional[PaymentBackend] = None,
                 catalog: Optional[CatalogService] = None,
                 licenses: Optional[LicenseStore] = None,
                 carts: Optional[CartService] = None):
        self._backend = backend
        self.catalog = catalog or CatalogService()
        self.licenses = licenses or LicenseStore()
        self.carts = carts or CartService(catalog=self.catalog)

    @property
    def backend(self) -> PaymentBackend:
        if self._backend is None:
            self._backend = current_app.extensions['payment_backend']
        return self._backend

    @property
    def currency(self) -> str:
        if has_app_context():
            return current_app.config.get('DEFAULT_CURRENCY', 'USD')
        return 'USD'

    # ------------------------------------------------------------------
    # Individual purchases
    # ------------------------------------------------------------------

    def create_payment_intent(self, user_id: str, items: List[Dict[str, Any]],
                              license_type: str = BASIC, email: Optional[str] = None,
                              name: Optional[str] = None,
                              idempotency_key: Optional[str] = None) -> CheckoutResult:
        """
        Price the requested items and start payment for the paid ones.

        Free items are granted at once in an ORD-FREE order. When nothing is
        left to pay the result is a free checkout and the payment backend is
        never called.
        """
        tier = get_license_tier(license_type)
        if tier is None:
            raise ValidationError(f"Unknown license type: {license_type}", field='licenseType')

        requested = self._normalize_items(items)
        products = self.catalog.get_products(requested.keys())
        for product_id in requested:
            product = products.get(product_id)
            if product is None or not product.is_published:
                raise ProductNotFound(product_id)

        free_items, paid_items = [], []
        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.freebie or product.effective_price == 0:
                free_items.append(LineItem(product, quantity, Decimal('0'), BASIC))
            else:
                unit_price = (product.effective_price * tier.price_multiplier).quantize(CENT, ROUND_HALF_UP)
                paid_items.append(LineItem(product, quantity, unit_price, tier.name))

        currency = self.currency
        free_order = self._grant_free_items(user_id, free_items, currency) if free_items else None
        total = sum((item.line_total for item in paid_items), Decimal('0'))

        if total == 0:
            metrics.record('record_checkout', 'free')
            logger.log_payment_event('free_checkout', user_id=user_id, free_items=len(free_items))
            return CheckoutResult(
                is_free=True, total=Decimal('0'), currency=currency,
                free_items=free_items, free_order=free_order,
                mock_mode=self.backend.mock_mode,
            )

        customer = self._get_customer(user_id, email, name)
        order_items = [
            {'productId': item.product.id, 'quantity': item.quantity, 'price': str(item.unit_price)}
            for item in paid_items
        ]
        metadata = {
            'userId': user_id,
            'orderType': INDIVIDUAL,
            'licenseType': tier.name,
            'itemCount': str(len(paid_items)),
            'orderItems': json.dumps(order_items, separators=(',', ':')),
        }
        intent = self.backend.create_payment_intent(
            to_minor_units(total),
            currency,
            customer.id,
            metadata,
            idempotency_key=f"{user_id}:{idempotency_key}" if idempotency_key else None,
        )

        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            order_type=INDIVIDUAL,
            status=PENDING,
            license_type=tier.name,
            subtotal=total,
            total=total,
            currency=currency,
            payment_intent_id=intent.id,
            stripe_customer_id=customer.id,
            payment_metadata=metadata,
        )
        for item in paid_items:
            order.items.append(OrderItem(
                product_id=item.product.id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                license_type=item.license_type,
            ))
        db.session.add(order)
        try:
            db.session.commit()
        except IntegrityError:
            # The provider answered a repeated idempotency key with the
            # intent an earlier request already recorded
            db.session.rollback()
            order = Order.query.filter_by(payment_intent_id=intent.id, user_id=user_id).first()
            if order is None:
                raise
            logger.log_idempotency_event('intent_replayed', user_id=user_id,
                                         payment_intent_id=intent.id, order_id=order.id)
            return self._intent_result(order, intent, paid_items, free_items, free_order)

        metrics.record('record_checkout', 'intent_created')
        logger.log_payment_event(
            'intent_created',
            user_id=user_id,
            payment_intent_id=intent.id,
            order_id=order.id,
            amount=intent.amount,
            license_type=tier.name,
        )
        return self._intent_result(order, intent, paid_items, free_items, free_order)

    # ------------------------------------------------------------------
    # Access passes
    # ------------------------------------------------------------------

    def create_subscription(self, user_id: str, pass_type: str, email: Optional[str] = None,
                            name: Optional[str] = None) -> Dict[str, Any]:
        """
        Start an access pass purchase; one pass per user.

        A subscription that is still incomplete or past due holds the slot
        too, so a second purchase cannot race the first one to activation.
        """
        plan = get_access_pass_plan(pass_type)
        if plan is None:
            raise ValidationError(f"Invalid access pass type: {pass_type}", field='passType')
        pass_type = pass_type.strip().lower()

        existing = held_access_pass(user_id)
        if existing is not None:
            raise DuplicateSubscription('You already have an access pass', existing=existing)

        customer = self._get_customer(user_id, email, name)
        currency = self.currency
        metadata = {'userId': user_id, 'passType': pass_type}

        if not is_recurring(pass_type):
            metadata['orderType'] = ACCESS_PASS
            intent = self.backend.create_payment_intent(plan['price'], currency, customer.id, metadata)
            total = (Decimal(plan['price']) / 100).quantize(CENT)
            order = Order(
                order_number=generate_order_number(),
                user_id=user_id,
                order_type=ACCESS_PASS,
                status=PENDING,
                subtotal=total,
                total=total,
                currency=currency,
                payment_intent_id=intent.id,
                stripe_customer_id=customer.id,
                payment_metadata=metadata,
            )
            db.session.add(order)
            db.session.commit()
            logger.log_payment_event('access_pass_intent_created', user_id=user_id,
                                     pass_type=pass_type, payment_intent_id=intent.id)
            return {
                'passType': pass_type,
                'clientSecret': intent.client_secret,
                'paymentIntentId': intent.id,
                'amount': plan['price'],
                'orderId': order.id,
                'mockMode': self.backend.mock_mode,
            }

        subscription = self.backend.create_subscription(
            customer.id, pass_type, dict(plan, currency=currency), metadata)
        access_pass = AccessPass(
            user_id=user_id,
            pass_type=pass_type,
            status=SUBSCRIPTION_STATUS_MAP.get(subscription.status, INCOMPLETE),
            stripe_subscription_id=subscription.id,
            stripe_customer_id=customer.id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            amount=plan['price'],
            currency=currency,
        )
        db.session.add(access_pass)
        db.session.commit()

        logger.log_payment_event('subscription_created', user_id=user_id,
                                 pass_type=pass_type, subscription_id=subscription.id)
        return {
            'passType': pass_type,
            'subscriptionId': subscription.id,
            'clientSecret': subscription.client_secret,
            'status': access_pass.status,
            'amount': plan['price'],
            'accessPass': access_pass.to_dict(),
            'mockMode': self.backend.mock_mode,
        }

    # ------------------------------------------------------------------
    # Confirmation and completion
    # ------------------------------------------------------------------

    def confirm_payment(self, user_id: str, payment_intent_id: str,
                        payment_method: Optional[str] = None) -> Order:
        """Confirm an intent the caller owns and complete the order on success."""
        order = self._owned_order(user_id, payment_intent_id)
        if order.status == COMPLETED:
            return order

        try:
            intent = self.backend.confirm_payment_intent(payment_intent_id, payment_method)
        except PaymentDeclined as e:
            self.fail_payment(payment_intent_id, e.message)
            metrics.record('record_checkout', 'declined')
            raise

        if intent.succeeded:
            return self.complete_payment(intent, event_id=f"confirm:{intent.id}")
        return order

    def reconcile_payment(self, user_id: str, payment_intent_id: str) -> Order:
        """Bring a pending order up to date with the provider's view of its intent."""
        order = self._owned_order(user_id, payment_intent_id)
        if order.status != PENDING:
            return order

        intent = self._retry_once(
            'retrieve_payment_intent', self.backend.retrieve_payment_intent, payment_intent_id)
        if intent.succeeded:
            return self.complete_payment(intent, event_id=f"reconcile:{intent.id}")
        return order

    def complete_payment(self, intent: PaymentIntentInfo, event_id: Optional[str] = None,
                         event_type: str = PAYMENT_SUCCEEDED_EVENT) -> Order:
        """
        Apply a succeeded payment exactly once.

        Marks the order completed (rebuilding it from the intent metadata if
        no pending order exists), writes one license per item or the
        lifetime pass, clears the cart and records the event, all in one
        transaction. A replay returns the already completed order.
        """
        if event_id and ProcessedEvent.query.filter_by(event_id=event_id).first() is not None:
            logger.log_idempotency_event('payment_replay', event_id=event_id, payment_intent_id=intent.id)
            return self._order_for_intent(intent.id)

        try:
            order = self._apply_completion(intent, event_id, event_type)
            db.session.commit()
        except DuplicateOperation as e:
            db.session.rollback()
            logger.log_idempotency_event('payment_already_applied', payment_intent_id=intent.id)
            if event_id:
                self._mark_event(event_id, event_type)
            return e.existing
        except IntegrityError:
            # A concurrent completion of the same intent or event won the race
            db.session.rollback()
            existing = Order.query.filter_by(payment_intent_id=intent.id, status=COMPLETED).first()
            if existing is None:
                raise
            return existing

        metrics.record('record_checkout', 'completed')
        logger.log_payment_event(
            'completed',
            user_id=order.user_id,
            order_id=order.id,
            payment_intent_id=intent.id,
            order_type=order.order_type,
        )
        return order

    def fail_payment(self, payment_intent_id: str, reason: Optional[str] = None) -> Optional[Order]:
        """Mark the pending order for an intent as failed. Completed orders are left alone."""
        order = Order.query.filter_by(payment_intent_id=payment_intent_id).first()
        if order is None:
            return None
        if order.status == COMPLETED:
            logger.warning("Ignoring failure for completed order",
                           order_id=order.id, payment_intent_id=payment_intent_id)
            return order

        order.mark_failed(reason)
        db.session.commit()
        metrics.record('record_checkout', 'failed')
        logger.log_payment_event('failed', success=False, order_id=order.id,
                                 payment_intent_id=payment_intent_id, reason=reason)
        return order

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _intent_result(self, order: Order, intent: PaymentIntentInfo, paid_items: List[LineItem],
                       free_items: List[LineItem], free_order: Optional[Order]) -> CheckoutResult:
        return CheckoutResult(
            is_free=False, total=order.total, currency=order.currency,
            items=paid_items, free_items=free_items,
            order=order, free_order=free_order,
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            mock_mode=self.backend.mock_mode,
        )

    def _normalize_items(self, items) -> Dict[str, int]:
        """Validate request items and merge repeated products. Keeps request order."""
        if not isinstance(items, list) or not items:
            raise ValidationError('At least one item is required', field='items')

        merged: Dict[str, int] = {}
        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError('Each item must be an object', field='items')
            product_id = entry.get('productId')
            if not product_id or not isinstance(product_id, str):
                raise ValidationError('Each item needs a productId', field='items')
            quantity = validate_quantity(entry.get('quantity', 1))
            merged[product_id] = merged.get(product_id, 0) + quantity
        return merged

    def _grant_free_items(self, user_id: str, free_items: List[LineItem], currency: str) -> Optional[Order]:
        """Complete an ORD-FREE order for free items the user does not hold yet."""
        owned = {
            lic.product_id for lic in License.query.filter(
                License.user_id == user_id,
                License.product_id.in_([item.product.id for item in free_items]),
                License.is_active.is_(True),
            ).all()
        }
        to_grant = [item for item in free_items if item.product.id not in owned]
        if not to_grant:
            return None

        order = Order(
            order_number=generate_order_number(free=True),
            user_id=user_id,
            order_type=INDIVIDUAL,
            status=PENDING,
            license_type=BASIC,
            subtotal=Decimal('0'),
            total=Decimal('0'),
            currency=currency,
        )
        for item in to_grant:
            order.items.append(OrderItem(
                product_id=item.product.id, quantity=item.quantity,
                unit_price=Decimal('0'), license_type=BASIC,
            ))
        db.session.add(order)
        db.session.flush()

        for item in to_grant:
            self.licenses.create(user_id, item.product.id, order.id, BASIC,
                                 purchase_price=Decimal('0'), currency=currency, commit=False)
        order.mark_completed()
        db.session.commit()

        logger.log_payment_event('free_items_granted', user_id=user_id, order_id=order.id,
                                 product_ids=[item.product.id for item in to_grant])
        return order

    def _apply_completion(self, intent: PaymentIntentInfo, event_id: Optional[str], event_type: str) -> Order:
        order = (Order.query
                 .filter_by(payment_intent_id=intent.id)
                 .with_for_update()
                 .first())
        if order is None:
            order = self._order_from_metadata(intent)
        if order.status == COMPLETED:
            raise DuplicateOperation('Payment already applied', existing=order)

        if order.order_type == ACCESS_PASS:
            self._grant_lifetime_pass(order, intent)
        else:
            for item in order.items:
                self.licenses.create(
                    order.user_id, item.product_id, order.id, item.license_type,
                    purchase_price=item.unit_price, currency=order.currency, commit=False,
                )

        order.mark_completed()
        self.carts.clear(order.user_id, commit=False)
        if event_id:
            db.session.add(ProcessedEvent(event_id=event_id, event_type=event_type))
        return order

    def _order_from_metadata(self, intent: PaymentIntentInfo) -> Order:
        """Rebuild an order from intent metadata when no pending order was recorded."""
        metadata = intent.metadata or {}
        user_id = metadata.get('userId')
        if not user_id:
            raise ValidationError(f"Payment intent {intent.id} carries no userId metadata")

        order_type = metadata.get('orderType', INDIVIDUAL)
        total = (Decimal(intent.amount) / 100).quantize(CENT)
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            order_type=order_type,
            status=PENDING,
            license_type=metadata.get('licenseType'),
            subtotal=total,
            total=total,
            currency=(intent.currency or 'usd').upper(),
            payment_intent_id=intent.id,
            stripe_customer_id=intent.customer_id,
            payment_metadata=dict(metadata),
        )
        if order_type != ACCESS_PASS:
            try:
                entries = json.loads(metadata.get('orderItems') or '[]')
            except ValueError:
                raise ValidationError(f"Payment intent {intent.id} has malformed orderItems metadata")
            if not entries:
                raise ValidationError(f"Payment intent {intent.id} has no order items")
            for entry in entries:
                order.items.append(OrderItem(
                    product_id=entry['productId'],
                    quantity=int(entry.get('quantity', 1)),
                    unit_price=Decimal(str(entry.get('price', '0'))),
                    license_type=metadata.get('licenseType') or BASIC,
                ))

        db.session.add(order)
        db.session.flush()
        logger.warning("Order rebuilt from payment metadata", order_id=order.id, payment_intent_id=intent.id)
        return order

    def _grant_lifetime_pass(self, order: Order, intent: PaymentIntentInfo):
        if AccessPass.query.filter_by(stripe_payment_intent_id=intent.id).first() is not None:
            return
        now = utcnow()
        db.session.add(AccessPass(
            user_id=order.user_id,
            pass_type=LIFETIME,
            status=ACTIVE,
            stripe_payment_intent_id=intent.id,
            stripe_customer_id=intent.customer_id or order.stripe_customer_id,
            current_period_start=now,
            current_period_end=None,
            amount=intent.amount,
            currency=order.currency,
        ))

    def _mark_event(self, event_id: str, event_type: str):
        db.session.add(ProcessedEvent(event_id=event_id, event_type=event_type))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()

    def _owned_order(self, user_id: str, payment_intent_id: str) -> Order:
        order = Order.query.filter_by(payment_intent_id=payment_intent_id).first()
        if order is None or order.user_id != user_id:
            raise NotFoundError(f"Order not found for payment {payment_intent_id}")
        return order

    def _order_for_intent(self, payment_intent_id: str) -> Optional[Order]:
        return Order.query.filter_by(payment_intent_id=payment_intent_id).first()

    def _get_customer(self, user_id: str, email: Optional[str], name: Optional[str]):
        record = PaymentCustomer.query.filter_by(user_id=user_id).first()
        customer = self._retry_once(
            'retrieve_or_create_customer',
            self.backend.retrieve_or_create_customer,
            user_id, email, name,
            record.provider_customer_id if record is not None else None,
        )

        if record is None:
            db.session.add(PaymentCustomer(
                user_id=user_id, provider_customer_id=customer.id, email=email, name=name))
        elif record.provider_customer_id != customer.id:
            record.provider_customer_id = customer.id
        else:
            return customer

        try:
            db.session.commit()
        except IntegrityError:
            # Another request stored this user's customer first
            db.session.rollback()
        return customer

    def _retry_once(self, operation: str, func, *args):
        try:
            return func(*args)
        except ProviderUnavailable:
            logger.warning("Provider unavailable, retrying once", operation=operation)
            return func(*args)
