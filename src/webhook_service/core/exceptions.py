"""Common exceptions for domain and repository layers."""
from __future__ import annotations

from uuid import UUID


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class ConflictError(RepositoryError):
    """Raised when a unique constraint would be violated."""


class InvalidStatusTransitionError(WebhookServiceError):
    """Raised when a delivery attempts an unsupported state change."""


class InboundRejectedError(WebhookServiceError):
    """An inbound request was refused; already written to the ingestion log."""

    status_code = 400
    public_message = "Request rejected"

    def __init__(self, reason: str, *, webhook_id: UUID | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.webhook_id = webhook_id


class EndpointNotFoundError(InboundRejectedError):
    status_code = 404
    public_message = "Webhook not found or inactive"


class RateLimitExceededError(InboundRejectedError):
    status_code = 429
    public_message = "Rate limit exceeded"


class IpNotAllowedError(InboundRejectedError):
    status_code = 403
    public_message = "IP not allowed"


class InvalidSignatureError(InboundRejectedError):
    status_code = 401
    public_message = "Invalid signature"
