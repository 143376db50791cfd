"""
Payment gateway strategies and the factory that picks one per request.

A strategy creates gateway orders and verifies completed payments. The
factory holds the registered strategies in order and returns the first one
whose `supports()` accepts the requested payment method.
"""

import uuid
from abc import ABC, abstractmethod
from typing import List, Optional

from exceptions import PaymentError
from schemas import PaymentRequest, PaymentResponse
from services.observability import logger


class PaymentStrategy(ABC):
    """Interface every gateway integration implements."""

    gateway_name: str = ""

    @abstractmethod
    def create_payment_order(self, request: PaymentRequest, user_ref: str) -> PaymentResponse:
        """Create an order at the gateway for `request`."""

    @abstractmethod
    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> PaymentResponse:
        """Confirm that `payment_id` settled `order_id`."""

    @abstractmethod
    def supports(self, payment_method: str) -> bool:
        """Whether this gateway can take the given payment method."""


class MockPaymentStrategy(PaymentStrategy):
    """
    Development gateway.

    Accepts every payment method, issues `MOCK_xxxxxxxx` order ids and
    verifies every payment successfully.
    """

    gateway_name = "MOCK"

    def create_payment_order(self, request: PaymentRequest, user_ref: str) -> PaymentResponse:
        logger.info("Mock payment order", amount=request.amount, user=user_ref)

        txn_id = "MOCK_" + uuid.uuid4().hex[:8]
        return PaymentResponse(
            success=True,
            transaction_id=txn_id,
            order_id=txn_id,
            amount=request.amount,
            currency="INR",
            payment_method=request.payment_method.value,
            payment_gateway=self.gateway_name,
            message="Mock payment successful (DEV MODE)",
        )

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> PaymentResponse:
        logger.info("Mock verification", order_id=order_id)
        return PaymentResponse(
            success=True,
            transaction_id=payment_id,
            order_id=order_id,
            payment_gateway=self.gateway_name,
            message="Mock verification successful",
        )

    def supports(self, payment_method: str) -> bool:
        return True


class PaymentStrategyFactory:
    """Linear lookup over the registered strategies; first match wins."""

    def __init__(self, strategies: Optional[List[PaymentStrategy]] = None):
        self.strategies: List[PaymentStrategy] = list(strategies or [])

    def register(self, strategy: PaymentStrategy) -> None:
        self.strategies.append(strategy)

    def get_strategy(self, payment_method: str, gateway: Optional[str] = None) -> PaymentStrategy:
        """
        Return the first strategy that supports `payment_method`.

        When `gateway` is given only strategies with that gateway name are
        considered.

        Raises:
            PaymentError: no registered strategy matches.
        """
        for strategy in self.strategies:
            if gateway and strategy.gateway_name.upper() != gateway.upper():
                continue
            if strategy.supports(payment_method):
                return strategy

        suffix = f" via gateway {gateway}" if gateway else ""
        raise PaymentError(f"No payment strategy found for method: {payment_method}{suffix}")

    def get_supported_gateways(self) -> List[str]:
        return [s.gateway_name for s in self.strategies]


def build_strategy_factory(enable_mock: bool) -> PaymentStrategyFactory:
    """Factory with the gateways enabled for this environment."""
    factory = PaymentStrategyFactory()
    if enable_mock:
        factory.register(MockPaymentStrategy())
    else:
        logger.warning("No payment gateways enabled; payment orders will be rejected")
    return factory
