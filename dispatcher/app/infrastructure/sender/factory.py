"""Sender factory: selects the sender capability from config. Only place that imports concrete senders."""
from __future__ import annotations

from dispatcher.app.config.settings import Settings
from dispatcher.app.domain.webhook_sender import WebhookSender
from dispatcher.app.infrastructure.http.factory import create_http_client
from dispatcher.app.infrastructure.sender.inmemory.in_memory_sender import InMemorySender
from dispatcher.app.ports.message_sender import MessageSender


def create_message_sender(settings: Settings) -> MessageSender:
    backend = settings.sender_backend.strip().lower()

    if backend == "webhook":
        if not settings.sender_url:
            raise ValueError("SENDER_URL is required for the webhook sender backend")
        return WebhookSender(
            create_http_client(settings),
            settings.sender_url,
            auth_key=settings.sender_auth_key,
            auth_header=settings.sender_auth_header,
            connect_timeout_seconds=settings.sender_connect_timeout_seconds,
            read_timeout_seconds=settings.sender_read_timeout_seconds,
        )

    if backend == "inmemory":
        return InMemorySender()

    raise ValueError(f"Unsupported sender backend: {backend}")
