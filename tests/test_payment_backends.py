# -*- coding: utf-8 -*-
"""
Payment backend tests.

The mock backend is exercised directly; the Stripe backend is tested with
the SDK's resource calls patched out, the way billing tests patch
stripe.billing_portal.
"""
import json
from unittest.mock import patch

import pytest
import stripe

from src.services.errors import (
    NotFoundError, PaymentDeclined, PaymentError, ProviderUnavailable, ValidationError,
)
from src.services.payments import init_payment_backend
from src.services.payments.base import SUCCEEDED, REQUIRES_PAYMENT_METHOD
from src.services.payments.mock_backend import MockPaymentBackend
from src.services.payments.stripe_backend import StripePaymentBackend


def stripe_object(cls, values):
    return cls.construct_from(values, "sk_test_dummy")


class TestMockBackend:

    def test_sequential_ids(self):
        backend = MockPaymentBackend()
        first = backend.create_payment_intent(1000, "USD", None, {})
        second = backend.create_payment_intent(1000, "USD", None, {})

        assert first.id == "pi_mock_000001"
        assert second.id == "pi_mock_000002"
        assert first.currency == "usd"
        assert first.status == REQUIRES_PAYMENT_METHOD

    def test_repeated_idempotency_key_returns_first_intent(self):
        backend = MockPaymentBackend()
        first = backend.create_payment_intent(1000, "usd", None, {}, idempotency_key="k")
        again = backend.create_payment_intent(1000, "usd", None, {}, idempotency_key="k")
        other = backend.create_payment_intent(1000, "usd", None, {}, idempotency_key="k2")

        assert again.id == first.id == "pi_mock_000001"
        assert other.id == "pi_mock_000002"

    def test_confirm_success(self):
        backend = MockPaymentBackend()
        intent = backend.create_payment_intent(1000, "usd", None, {})
        assert backend.confirm_payment_intent(intent.id, "4242 4242 4242 4242").status == SUCCEEDED

    @pytest.mark.parametrize("method,code", [
        ("4000000000000002", "card_declined"),
        ("pm_card_chargeDeclinedInsufficientFunds", "insufficient_funds"),
        ("4000000000009987", "lost_card"),
    ])
    def test_declines(self, method, code):
        backend = MockPaymentBackend()
        intent = backend.create_payment_intent(1000, "usd", None, {})

        with pytest.raises(PaymentDeclined) as exc:
            backend.confirm_payment_intent(intent.id, method)
        assert exc.value.decline_code == code
        assert backend.retrieve_payment_intent(intent.id).status == REQUIRES_PAYMENT_METHOD

    def test_confirm_succeeded_intent_is_unchanged(self):
        backend = MockPaymentBackend()
        intent = backend.create_payment_intent(1000, "usd", None, {})
        backend.confirm_payment_intent(intent.id)
        assert backend.confirm_payment_intent(intent.id, "4000000000000002").succeeded

    def test_unknown_intent(self):
        with pytest.raises(NotFoundError):
            MockPaymentBackend().retrieve_payment_intent("pi_missing")

    def test_outage(self):
        backend = MockPaymentBackend()
        backend.unavailable = True
        with pytest.raises(ProviderUnavailable):
            backend.create_customer("user-1")

    def test_retrieve_or_create_customer(self):
        backend = MockPaymentBackend()
        created = backend.retrieve_or_create_customer("user-1", "a@example.com")
        reused = backend.retrieve_or_create_customer("user-1", customer_id=created.id)
        replaced = backend.retrieve_or_create_customer("user-1", customer_id="cus_gone")

        assert reused.id == created.id
        assert replaced.id != created.id

    def test_yearly_subscription_period(self):
        backend = MockPaymentBackend()
        sub = backend.create_subscription("cus_1", "yearly", {"interval": "year"}, {"userId": "u"})
        assert (sub.current_period_end - sub.current_period_start).days == 365

    def test_subscription_starts_incomplete(self):
        backend = MockPaymentBackend()
        sub = backend.create_subscription("cus_1", "monthly", {"interval": "month"}, {})
        assert sub.status == "incomplete"
        assert sub.client_secret

    def test_cancel_subscription(self):
        backend = MockPaymentBackend()
        sub = backend.create_subscription("cus_1", "monthly", {"interval": "month"}, {})

        assert backend.cancel_subscription(sub.id).status == "canceled"
        assert backend.subscriptions[sub.id].status == "canceled"
        with pytest.raises(NotFoundError):
            backend.cancel_subscription("sub_missing")

    def test_construct_event_round_trip(self):
        backend = MockPaymentBackend()
        body = backend.build_event("payment_intent.succeeded", {"id": "pi_1"})
        event = backend.construct_event(json.dumps(body).encode(), None)

        assert event.id == "evt_mock_000001"
        assert event.data == {"id": "pi_1"}

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"type": "x"}'])
    def test_construct_event_rejects_garbage(self, payload):
        with pytest.raises(ValidationError):
            MockPaymentBackend().construct_event(payload, None)

    def test_reset(self):
        backend = MockPaymentBackend()
        backend.create_customer("user-1")
        backend.reset()
        assert backend.calls == []
        assert backend.create_customer("user-1").id == "cus_mock_000001"


class TestStripeBackend:

    @pytest.fixture
    def backend(self):
        return StripePaymentBackend("sk_test_dummy", webhook_secret="whsec_test", timeout=5)

    def test_create_payment_intent(self, backend):
        intent = stripe_object(stripe.PaymentIntent, {
            "id": "pi_1",
            "amount": 2000,
            "currency": "usd",
            "status": "requires_payment_method",
            "client_secret": "pi_1_secret_x",
            "customer": "cus_1",
            "metadata": {"userId": "user-1"},
        })
        with patch("stripe.PaymentIntent.create", return_value=intent) as mock_create:
            result = backend.create_payment_intent(2000, "USD", "cus_1", {"userId": "user-1"},
                                                   idempotency_key="user-1:key-1")

        kwargs = mock_create.call_args[1]
        assert kwargs["currency"] == "usd"
        assert kwargs["customer"] == "cus_1"
        assert kwargs["idempotency_key"] == "user-1:key-1"
        assert kwargs["automatic_payment_methods"] == {"enabled": True}
        assert result.client_secret == "pi_1_secret_x"
        assert result.metadata == {"userId": "user-1"}

    def test_card_error_becomes_decline(self, backend):
        error = stripe.CardError("Your card has insufficient funds.", None, "insufficient_funds")
        with patch("stripe.PaymentIntent.confirm", side_effect=error):
            with pytest.raises(PaymentDeclined) as exc:
                backend.confirm_payment_intent("pi_1", "pm_card_visa")
        assert exc.value.message == "Your card has insufficient funds."
        assert exc.value.decline_code == "insufficient_funds"

    def test_connection_error_is_retryable(self, backend):
        with patch("stripe.PaymentIntent.retrieve", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(ProviderUnavailable):
                backend.retrieve_payment_intent("pi_1")

    def test_other_errors(self, backend):
        with patch("stripe.Customer.create", side_effect=stripe.AuthenticationError("bad key")):
            with pytest.raises(PaymentError) as exc:
                backend.create_customer("user-1")
        assert exc.value.status_code == 502

    def test_missing_customer_is_none(self, backend):
        with patch("stripe.Customer.retrieve",
                   side_effect=stripe.InvalidRequestError("No such customer", "id")):
            assert backend.retrieve_customer("cus_gone") is None

    def test_deleted_customer_is_none(self, backend):
        deleted = stripe_object(stripe.Customer, {"id": "cus_1", "deleted": True})
        with patch("stripe.Customer.retrieve", return_value=deleted):
            assert backend.retrieve_customer("cus_1") is None

    def test_cancel_subscription(self, backend):
        canceled = stripe_object(stripe.Subscription, {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "canceled",
            "current_period_start": 1700000000,
            "current_period_end": 1702592000,
        })
        with patch("stripe.Subscription.cancel", return_value=canceled) as mock_cancel:
            result = backend.cancel_subscription("sub_1")

        mock_cancel.assert_called_once_with("sub_1")
        assert result.status == "canceled"
        assert result.customer_id == "cus_1"
        assert result.current_period_end is not None

    def test_construct_event(self, backend):
        event = stripe_object(stripe.Event, {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "amount": 2000}},
        })
        with patch("stripe.Webhook.construct_event", return_value=event) as mock_construct:
            result = backend.construct_event(b"{}", "t=1,v1=abc")

        mock_construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test")
        assert result.type == "payment_intent.succeeded"
        assert result.data["id"] == "pi_1"

    def test_bad_signature(self, backend):
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(ValidationError):
                backend.construct_event(b"{}", "t=1,v1=abc")

    def test_no_webhook_secret(self):
        backend = StripePaymentBackend("sk_test_dummy")
        with pytest.raises(ValidationError):
            backend.construct_event(b"{}", "sig")


class TestBackendSelection:

    def test_mock_when_flagged(self, app):
        app.config["STRIPE_MOCK_MODE"] = True
        app.config["STRIPE_SECRET_KEY"] = "sk_test_dummy"
        assert isinstance(init_payment_backend(app), MockPaymentBackend)

    def test_mock_without_secret_key(self, app):
        app.config["STRIPE_MOCK_MODE"] = False
        app.config["STRIPE_SECRET_KEY"] = ""
        assert init_payment_backend(app).mock_mode is True

    def test_stripe_with_secret_key(self, app):
        app.config["STRIPE_MOCK_MODE"] = False
        app.config["STRIPE_SECRET_KEY"] = "sk_test_dummy"
        backend = init_payment_backend(app)
        assert isinstance(backend, StripePaymentBackend)
        assert app.extensions["payment_backend"] is backend
