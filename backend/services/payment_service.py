"""
Module: payment_service.py
Description: Payment orchestration for subscription upgrades.

Flow:
    1. create_payment_order: pick a gateway, create the order, store it PENDING
    2. verify_and_complete_payment: ask the gateway to verify, then mark the
       payment SUCCESS (and upgrade the subscription) or FAILED

SUCCESS and FAILED are terminal; a payment is verified at most once.
"""

from typing import List

from sqlalchemy.orm import Session as DBSession

from exceptions import (
    PaymentError, ResourceConflictError,
    ResourceNotFoundError, UnauthorizedAccessError
)
from enums import PaymentStatus
from models import Payment, User
from schemas import PaymentRequest, PaymentResponse
from services.observability import log_payment_event, timed
from services.payment_gateways import PaymentStrategyFactory
from services.subscription_service import SubscriptionService

CURRENCY = "INR"


class PaymentService:
    def __init__(
        self,
        db: DBSession,
        strategy_factory: PaymentStrategyFactory,
        subscription_service: SubscriptionService,
    ):
        self.db = db
        self.strategy_factory = strategy_factory
        self.subscription_service = subscription_service

    @timed("payments.create_order")
    def create_payment_order(self, request: PaymentRequest, user: User) -> PaymentResponse:
        tier = request.subscription_tier
        if not tier.is_paid:
            raise PaymentError("Only paid subscription tiers can be purchased")

        expected = round(tier.monthly_price * request.duration_months, 2)
        if request.amount + 1e-9 < expected:
            raise PaymentError(
                f"Amount {request.amount:.2f} is below the plan price {expected:.2f} "
                f"for {request.duration_months} month(s) of {tier.value}"
            )

        strategy = self.strategy_factory.get_strategy(request.payment_method.value, request.gateway)
        response = strategy.create_payment_order(request, user.email)

        if not response.success:
            log_payment_event("rejected", response.order_id or "-", gateway=strategy.gateway_name)
            return response

        payment = Payment(
            user_id=user.id,
            transaction_id=response.transaction_id,
            order_id=response.order_id,
            amount=request.amount,
            currency=CURRENCY,
            payment_method=request.payment_method,
            status=PaymentStatus.PENDING,
            subscription_tier=tier,
            subscription_duration_months=request.duration_months,
            payment_gateway=response.payment_gateway or strategy.gateway_name,
            payment_gateway_response=(response.message or "")[:2000],
        )
        self.db.add(payment)
        self.db.commit()

        log_payment_event("created", response.order_id, user=user.email, amount=request.amount)
        return response

    @timed("payments.verify")
    def verify_and_complete_payment(
        self, order_id: str, payment_id: str, signature: str, user: User
    ) -> PaymentResponse:
        payment = self.db.query(Payment).filter(Payment.order_id == order_id).first()
        if payment is None:
            raise ResourceNotFoundError("Payment not found")
        if payment.user_id != user.id:
            raise UnauthorizedAccessError("Unauthorized access")
        if payment.status != PaymentStatus.PENDING:
            raise ResourceConflictError(f"Payment already {payment.status.value}")

        duplicate = (
            self.db.query(Payment)
            .filter(Payment.transaction_id == payment_id)
            .filter(Payment.id != payment.id)
            .first()
        )
        if duplicate is not None:
            raise ResourceConflictError("Payment id already used for another order")

        strategy = self.strategy_factory.get_strategy(payment.payment_method.value, payment.payment_gateway)
        verification = strategy.verify_payment(order_id, payment_id, signature)

        if verification.success:
            payment.status = PaymentStatus.SUCCESS
            payment.transaction_id = payment_id
            self.db.commit()

            self.subscription_service.upgrade_subscription(
                user, payment.subscription_tier, payment.subscription_duration_months or 1
            )
            log_payment_event("verified", order_id, user=user.email)
        else:
            payment.status = PaymentStatus.FAILED
            self.db.commit()
            log_payment_event("failed", order_id, user=user.email)

        return verification

    def get_payment_history(self, user: User) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user.id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )
