from webhook_service.repositories.memory import InMemoryWebhookStore
from webhook_service.repositories.store import WebhookStore
from webhook_service.repositories.webhooks import PostgresWebhookStore

__all__ = [
    "InMemoryWebhookStore",
    "PostgresWebhookStore",
    "WebhookStore",
]
