"""
Test Module: test_payment_service.py
Description: Unit tests for payment orders, verification and gateway selection.

Tests:
    - Strategy factory lookup and the mock gateway
    - Order creation validation and persistence
    - Verification: success upgrades the subscription, terminal states are final
    - Ownership and duplicate payment id checks
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from enums import PaymentMethod, PaymentStatus, SubscriptionTier
from exceptions import (
    PaymentError, ResourceConflictError,
    ResourceNotFoundError, UnauthorizedAccessError
)
from models import Payment
from schemas import PaymentRequest, PaymentResponse
from services.payment_gateways import (
    MockPaymentStrategy, PaymentStrategy, PaymentStrategyFactory, build_strategy_factory
)
from services.payment_service import PaymentService
from services.subscription_service import SubscriptionService


def _request(tier=SubscriptionTier.PREMIUM, months=1, amount=None, method=PaymentMethod.UPI):
    return PaymentRequest(
        amount=amount if amount is not None else tier.monthly_price * months,
        payment_method=method,
        subscription_tier=tier,
        duration_months=months,
    )


@pytest.fixture
def service(db):
    return PaymentService(db, build_strategy_factory(enable_mock=True), SubscriptionService(db))


# =============================================================================
# Gateways
# =============================================================================

class TestStrategyFactory:
    def test_mock_gateway_registered_when_enabled(self):
        factory = build_strategy_factory(enable_mock=True)

        assert factory.get_supported_gateways() == ["MOCK"]
        assert isinstance(factory.get_strategy("UPI"), MockPaymentStrategy)

    def test_no_strategy_raises_payment_error(self):
        factory = build_strategy_factory(enable_mock=False)

        with pytest.raises(PaymentError) as exc:
            factory.get_strategy("UPI")
        assert exc.value.message == "No payment strategy found for method: UPI"

    def test_first_supporting_strategy_wins(self):
        cards_only = MagicMock(spec=PaymentStrategy)
        cards_only.gateway_name = "CARDS"
        cards_only.supports.side_effect = lambda method: method == "CREDIT_CARD"
        factory = PaymentStrategyFactory([cards_only, MockPaymentStrategy()])

        assert factory.get_strategy("CREDIT_CARD") is cards_only
        assert factory.get_strategy("UPI").gateway_name == "MOCK"

    def test_gateway_filter(self):
        factory = PaymentStrategyFactory([MockPaymentStrategy()])

        with pytest.raises(PaymentError):
            factory.get_strategy("UPI", gateway="STRIPE")
        assert factory.get_strategy("UPI", gateway="mock").gateway_name == "MOCK"

    def test_mock_order_ids(self):
        response = MockPaymentStrategy().create_payment_order(_request(), "someone@example.com")

        assert response.success is True
        assert response.order_id.startswith("MOCK_")
        assert len(response.order_id) == len("MOCK_") + 8
        assert response.currency == "INR"


# =============================================================================
# Orders
# =============================================================================

class TestCreatePaymentOrder:
    def test_creates_pending_payment(self, db, service, user):
        response = service.create_payment_order(_request(months=3), user)

        assert response.success is True
        payment = db.query(Payment).one()
        assert payment.status == PaymentStatus.PENDING
        assert payment.order_id == response.order_id
        assert payment.transaction_id == response.transaction_id
        assert payment.subscription_tier == SubscriptionTier.PREMIUM
        assert payment.subscription_duration_months == 3
        assert payment.payment_gateway == "MOCK"
        assert payment.amount == 27.0

    def test_free_tier_cannot_be_purchased(self, service, user):
        request = PaymentRequest(
            amount=1.0, payment_method=PaymentMethod.UPI,
            subscription_tier=SubscriptionTier.FREE, duration_months=1,
        )
        with pytest.raises(PaymentError):
            service.create_payment_order(request, user)

    def test_underpayment_rejected(self, db, service, user):
        with pytest.raises(PaymentError):
            service.create_payment_order(_request(months=2, amount=9.0), user)
        assert db.query(Payment).count() == 0

    def test_failed_gateway_response_is_not_persisted(self, db, user):
        gateway = MagicMock(spec=PaymentStrategy)
        gateway.gateway_name = "FLAKY"
        gateway.supports.return_value = True
        gateway.create_payment_order.return_value = PaymentResponse(success=False, message="Card declined")
        service = PaymentService(db, PaymentStrategyFactory([gateway]), SubscriptionService(db))

        response = service.create_payment_order(_request(), user)

        assert response.success is False
        assert db.query(Payment).count() == 0


# =============================================================================
# Verification
# =============================================================================

class TestVerifyPayment:
    def test_success_marks_payment_and_upgrades(self, db, service, user):
        order = service.create_payment_order(_request(months=2), user)

        result = service.verify_and_complete_payment(order.order_id, "pay_123", "sig", user)

        assert result.success is True
        payment = db.query(Payment).one()
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.transaction_id == "pay_123"
        db.refresh(user)
        assert user.subscription_tier == SubscriptionTier.PREMIUM
        assert user.subscription_end_date > datetime.utcnow() + timedelta(days=55)

    def test_second_verification_conflicts(self, service, user):
        order = service.create_payment_order(_request(), user)
        service.verify_and_complete_payment(order.order_id, "pay_1", "sig", user)

        with pytest.raises(ResourceConflictError) as exc:
            service.verify_and_complete_payment(order.order_id, "pay_2", "sig", user)
        assert exc.value.message == "Payment already SUCCESS"

    def test_failed_verification_is_terminal(self, db, user):
        gateway = MockPaymentStrategy()
        gateway.verify_payment = MagicMock(return_value=PaymentResponse(success=False, message="Bad signature"))
        service = PaymentService(db, PaymentStrategyFactory([gateway]), SubscriptionService(db))
        order = service.create_payment_order(_request(), user)

        result = service.verify_and_complete_payment(order.order_id, "pay_1", "bad", user)

        assert result.success is False
        assert db.query(Payment).one().status == PaymentStatus.FAILED
        db.refresh(user)
        assert user.subscription_tier == SubscriptionTier.FREE
        with pytest.raises(ResourceConflictError):
            service.verify_and_complete_payment(order.order_id, "pay_1", "sig", user)

    def test_unknown_order_not_found(self, service, user):
        with pytest.raises(ResourceNotFoundError):
            service.verify_and_complete_payment("MOCK_missing", "pay_1", "sig", user)

    def test_other_users_order_forbidden(self, service, make_user):
        owner = make_user()
        intruder = make_user()
        order = service.create_payment_order(_request(), owner)

        with pytest.raises(UnauthorizedAccessError):
            service.verify_and_complete_payment(order.order_id, "pay_1", "sig", intruder)

    def test_reused_payment_id_conflicts(self, service, user):
        first = service.create_payment_order(_request(), user)
        second = service.create_payment_order(_request(), user)
        service.verify_and_complete_payment(first.order_id, "pay_same", "sig", user)

        with pytest.raises(ResourceConflictError):
            service.verify_and_complete_payment(second.order_id, "pay_same", "sig", user)


class TestPaymentHistory:
    def test_history_newest_first_and_scoped(self, service, make_user):
        alice = make_user()
        bob = make_user()
        first = service.create_payment_order(_request(), alice)
        second = service.create_payment_order(_request(SubscriptionTier.ENTERPRISE), alice)
        service.create_payment_order(_request(), bob)

        history = service.get_payment_history(alice)

        assert [p.order_id for p in history] == [second.order_id, first.order_id]
