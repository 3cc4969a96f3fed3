# -*- coding: utf-8 -*-
"""
Provider webhook processing.

Events are applied at most once: the event id is written to
processed_events in the same transaction as the change it causes, and a
replayed id is answered as a duplicate without touching anything.

Handled events:
- payment_intent.succeeded: complete the order (licenses or lifetime pass)
- payment_intent.payment_failed: fail the pending order
- customer.subscription.created / updated / deleted: access pass lifecycle
- invoice.payment_succeeded: reactivate and extend the access pass
"""
from typing import Dict, Any, Optional

from sqlalchemy.exc import IntegrityError

from src.infra.db import db
from src.infra.log import get_logger
from src.models.access_pass import (
    AccessPass, ACTIVE, CANCELLED, INCOMPLETE, SUBSCRIPTION_STATUS_MAP,
)
from src.models.processed_event import ProcessedEvent
from src.services import metrics
from src.services.checkout_service import CheckoutService
from src.services.errors import ValidationError
from src.services.payments.base import PaymentIntentInfo, WebhookEvent
from src.utils.timeutil import utcnow, from_timestamp

logger = get_logger('storefront.webhooks')

APPLIED = 'applied'
DUPLICATE = 'duplicate'
IGNORED = 'ignored'


def intent_from_event(data: Dict[str, Any]) -> PaymentIntentInfo:
    customer = data.get('customer')
    if isinstance(customer, dict):
        customer = customer.get('id')
    last_error = data.get('last_payment_error') or {}
    return PaymentIntentInfo(
        id=data['id'],
        amount=int(data.get('amount') or 0),
        currency=data.get('currency') or 'usd',
        status=data.get('status') or 'succeeded',
        client_secret=data.get('client_secret'),
        customer_id=customer,
        metadata={k: str(v) for k, v in (data.get('metadata') or {}).items()},
        last_error=last_error.get('message') if isinstance(last_error, dict) else None,
    )


def subscription_period(data: Dict[str, Any]):
    start = data.get('current_period_start')
    end = data.get('current_period_end')
    if start is None or end is None:
        items = (data.get('items') or {}).get('data') or []
        if items:
            start = start or items[0].get('current_period_start')
            end = end or items[0].get('current_period_end')
    return from_timestamp(start), from_timestamp(end)


def invoice_subscription_id(data: Dict[str, Any]) -> Optional[str]:
    """Subscription id of an invoice; newer API versions nest it under parent."""
    if data.get('subscription'):
        return data['subscription']
    details = (data.get('parent') or {}).get('subscription_details') or {}
    return details.get('subscription')


class WebhookProcessor:

    def __init__(self, checkout: Optional[CheckoutService] = None):
        self.checkout = checkout or CheckoutService()
        self.handlers = {
            'payment_intent.succeeded': self._payment_succeeded,
            'payment_intent.payment_failed': self._payment_failed,
            'customer.subscription.created': self._subscription_changed,
            'customer.subscription.updated': self._subscription_changed,
            'customer.subscription.deleted': self._subscription_deleted,
            'invoice.payment_succeeded': self._invoice_paid,
        }

    def process(self, event: WebhookEvent) -> Dict[str, Any]:
        """Apply one verified event. Returns the acknowledgement body."""
        if self._seen(event.id):
            return self._ack(event, DUPLICATE)

        handler = self.handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled webhook event type", webhook_type=event.type, event_id=event.id)
            return self._ack(event, self._finish(event, IGNORED))

        try:
            outcome = handler(event)
        except ValidationError as e:
            # Events we cannot map onto our records (foreign intents, missing
            # metadata) are acknowledged so the provider stops redelivering.
            db.session.rollback()
            logger.warning("Webhook event not applicable", webhook_type=event.type,
                           event_id=event.id, reason=e.message)
            outcome = self._finish(event, IGNORED)

        return self._ack(event, outcome)

    # ------------------------------------------------------------------
    # Handlers; each returns an outcome and leaves the event recorded
    # ------------------------------------------------------------------

    def _payment_succeeded(self, event: WebhookEvent) -> str:
        intent = intent_from_event(event.data)
        self.checkout.complete_payment(intent, event_id=event.id, event_type=event.type)
        return APPLIED

    def _payment_failed(self, event: WebhookEvent) -> str:
        intent = intent_from_event(event.data)
        self.checkout.fail_payment(intent.id, intent.last_error or 'Payment failed')
        return self._finish(event, APPLIED)

    def _subscription_changed(self, event: WebhookEvent) -> str:
        data = event.data
        access_pass = AccessPass.query.filter_by(stripe_subscription_id=data.get('id')).first()
        if access_pass is None:
            access_pass = self._pass_from_metadata(data)

        status = SUBSCRIPTION_STATUS_MAP.get(data.get('status'), access_pass.status or INCOMPLETE)
        start, end = subscription_period(data)
        if status == ACTIVE:
            status = self._activate(access_pass)
        elif access_pass.status != CANCELLED:
            access_pass.status = status
        else:
            status = CANCELLED
        access_pass.current_period_start = start or access_pass.current_period_start
        access_pass.current_period_end = end or access_pass.current_period_end
        access_pass.cancel_at_period_end = bool(data.get('cancel_at_period_end', False))
        if status == CANCELLED and access_pass.cancelled_at is None:
            access_pass.cancelled_at = utcnow()

        logger.info("Access pass updated", access_pass_id=access_pass.id,
                    user_id=access_pass.user_id, status=status)
        return self._finish(event, APPLIED)

    def _subscription_deleted(self, event: WebhookEvent) -> str:
        access_pass = AccessPass.query.filter_by(stripe_subscription_id=event.data.get('id')).first()
        if access_pass is None:
            return self._finish(event, IGNORED)

        access_pass.status = CANCELLED
        access_pass.cancelled_at = utcnow()
        logger.info("Access pass cancelled", access_pass_id=access_pass.id, user_id=access_pass.user_id)
        return self._finish(event, APPLIED)

    def _invoice_paid(self, event: WebhookEvent) -> str:
        subscription_id = invoice_subscription_id(event.data)
        access_pass = None
        if subscription_id:
            access_pass = AccessPass.query.filter_by(stripe_subscription_id=subscription_id).first()
        if access_pass is None:
            return self._finish(event, IGNORED)

        self._activate(access_pass)
        lines = (event.data.get('lines') or {}).get('data') or []
        if lines:
            period = lines[0].get('period') or {}
            access_pass.current_period_start = from_timestamp(period.get('start')) or access_pass.current_period_start
            access_pass.current_period_end = from_timestamp(period.get('end')) or access_pass.current_period_end
        return self._finish(event, APPLIED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _activate(self, access_pass: AccessPass) -> str:
        """
        Make a pass active unless the user already holds another active one.

        The later subscription is cancelled at the provider instead, so a
        user never pays for two passes. Cancelled passes stay cancelled.
        """
        if access_pass.status == CANCELLED:
            return CANCELLED

        db.session.flush()
        other = (AccessPass.query
                 .filter(AccessPass.user_id == access_pass.user_id,
                         AccessPass.status == ACTIVE,
                         AccessPass.id != access_pass.id)
                 .first())
        if other is None:
            access_pass.status = ACTIVE
            return ACTIVE

        if access_pass.stripe_subscription_id:
            self.checkout.backend.cancel_subscription(access_pass.stripe_subscription_id)
        access_pass.status = CANCELLED
        access_pass.cancelled_at = utcnow()
        metrics.record('record_checkout', 'duplicate_pass_cancelled')
        logger.warning("Second access pass cancelled", access_pass_id=access_pass.id,
                       user_id=access_pass.user_id, active_pass_id=other.id)
        return CANCELLED

    def _pass_from_metadata(self, data: Dict[str, Any]) -> AccessPass:
        metadata = data.get('metadata') or {}
        user_id = metadata.get('userId')
        pass_type = metadata.get('passType')
        if not user_id or not pass_type:
            raise ValidationError(f"Subscription {data.get('id')} carries no userId/passType metadata")

        customer = data.get('customer')
        access_pass = AccessPass(
            user_id=user_id,
            pass_type=pass_type,
            status=INCOMPLETE,
            stripe_subscription_id=data.get('id'),
            stripe_customer_id=customer.get('id') if isinstance(customer, dict) else customer,
        )
        db.session.add(access_pass)
        return access_pass

    def _seen(self, event_id: str) -> bool:
        return ProcessedEvent.query.filter_by(event_id=event_id).first() is not None

    def _finish(self, event: WebhookEvent, outcome: str) -> str:
        """Record the event and commit the handler's changes with it."""
        db.session.add(ProcessedEvent(event_id=event.id, event_type=event.type))
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent delivery of the same event committed first
            db.session.rollback()
            return DUPLICATE
        return outcome

    def _ack(self, event: WebhookEvent, outcome: str) -> Dict[str, Any]:
        metrics.record('record_webhook_event', event.type, outcome)
        logger.log_webhook_event(event.type, event.id, outcome)
        body = {'received': True}
        if outcome == DUPLICATE:
            body['duplicate'] = True
        else:
            body['outcome'] = outcome
        return body
