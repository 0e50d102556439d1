"""
Shared base for settlement services.
"""

from __future__ import annotations

from django_fsm import TransitionNotAllowed

from core.services import BaseService, ServiceResult

from settlement.gateway import StripeGateway


class SettlementService(BaseService):
    """
    Base class for services that talk to the payment gateway.

    The gateway can be swapped for tests:

        SettlementService.set_gateway(fake_gateway)
        ...
        SettlementService.set_gateway(None)  # back to StripeGateway
    """

    # Gateway adapter - can be injected for testing
    _gateway: type | object | None = None

    @classmethod
    def get_gateway(cls):
        return SettlementService._gateway or StripeGateway

    @classmethod
    def set_gateway(cls, gateway) -> None:
        SettlementService._gateway = gateway

    @classmethod
    def transition_failure(cls, entity, exc: TransitionNotAllowed) -> ServiceResult:
        """Standard result for a state machine refusal."""
        cls.get_logger().warning(
            "State transition not allowed",
            extra={
                "entity": entity.__class__.__name__,
                "entity_id": str(entity.pk),
                "state": entity.state,
                "error": str(exc),
            },
        )
        return ServiceResult.failure(
            f"{entity.__class__.__name__} cannot change state from '{entity.state}'",
            error_code="INVALID_STATE_TRANSITION",
        )
