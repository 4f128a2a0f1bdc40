from __future__ import annotations

import pytest

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryState
from webhook_service.services.retry import (
    backoff_seconds,
    validate_delivery_path,
    validate_delivery_transition,
)


@pytest.mark.parametrize(
    "current,new",
    [
        (DeliveryState.PENDING, DeliveryState.SENT),
        (DeliveryState.SENT, DeliveryState.SUCCEEDED),
        (DeliveryState.SENT, DeliveryState.FAILED),
        (DeliveryState.FAILED, DeliveryState.SCHEDULED_RETRY),
        (DeliveryState.FAILED, DeliveryState.EXHAUSTED),
        (DeliveryState.SCHEDULED_RETRY, DeliveryState.SENT),
        (DeliveryState.SCHEDULED_RETRY, DeliveryState.EXHAUSTED),
        (DeliveryState.SENT, DeliveryState.SENT),
    ],
)
def test_allowed_transitions(current, new):
    validate_delivery_transition(current, new)


@pytest.mark.parametrize(
    "current,new",
    [
        (DeliveryState.PENDING, DeliveryState.SUCCEEDED),
        (DeliveryState.SENT, DeliveryState.SCHEDULED_RETRY),
        (DeliveryState.SUCCEEDED, DeliveryState.SENT),
        (DeliveryState.EXHAUSTED, DeliveryState.SCHEDULED_RETRY),
    ],
)
def test_rejected_transitions(current, new):
    with pytest.raises(InvalidStatusTransitionError):
        validate_delivery_transition(current, new)


def test_path_validates_every_hop():
    final = validate_delivery_path(DeliveryState.SENT, DeliveryState.FAILED, DeliveryState.EXHAUSTED)
    assert final is DeliveryState.EXHAUSTED
    with pytest.raises(InvalidStatusTransitionError):
        validate_delivery_path(DeliveryState.SENT, DeliveryState.EXHAUSTED)


@pytest.mark.parametrize(
    "attempt,expected",
    [(2, 30), (3, 60), (4, 120), (5, 240), (20, 3600)],
)
def test_backoff_doubles_up_to_cap(attempt, expected):
    assert backoff_seconds(attempt, base=30, cap=3600) == expected
