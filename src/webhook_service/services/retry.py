"""Delivery state transitions and retry backoff."""
from __future__ import annotations

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryState

DELIVERY_TRANSITIONS: dict[DeliveryState, set[DeliveryState]] = {
    DeliveryState.PENDING: {DeliveryState.SENT},
    DeliveryState.SENT: {DeliveryState.SUCCEEDED, DeliveryState.FAILED},
    DeliveryState.FAILED: {DeliveryState.SCHEDULED_RETRY, DeliveryState.EXHAUSTED},
    DeliveryState.SCHEDULED_RETRY: {DeliveryState.SENT, DeliveryState.EXHAUSTED},
    DeliveryState.SUCCEEDED: set(),
    DeliveryState.EXHAUSTED: set(),
}


def validate_delivery_transition(current: DeliveryState, new: DeliveryState) -> None:
    if current == new:
        return
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


def validate_delivery_path(current: DeliveryState, *states: DeliveryState) -> DeliveryState:
    """Validate every hop of ``current -> states[0] -> ...`` and return the final state."""
    for state in states:
        validate_delivery_transition(current, state)
        current = state
    return current


def backoff_seconds(attempt: int, *, base: float = 30.0, cap: float = 3600.0) -> float:
    # attempt is the 1-based number of the delivery about to be made; attempt 2 waits ``base``
    return min(cap, base * 2 ** max(attempt - 2, 0))
