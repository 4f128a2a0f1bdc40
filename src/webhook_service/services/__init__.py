"""Service layer exports."""

from webhook_service.services.dispatcher import OutboundDispatcher
from webhook_service.services.receiver import InboundReceiver, InboundRequest
from webhook_service.services.webhooks import WebhookConfigService

__all__ = [
    "InboundReceiver",
    "InboundRequest",
    "OutboundDispatcher",
    "WebhookConfigService",
]
