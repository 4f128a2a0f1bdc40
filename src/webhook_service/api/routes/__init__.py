"""Route modules."""

from . import (
    inbound,
    outbound,
    receive,
    trigger,
)

__all__ = [
    "inbound",
    "outbound",
    "receive",
    "trigger",
]
