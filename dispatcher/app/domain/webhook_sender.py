"""Webhook sender: delivers a message by POSTing JSON to a gateway endpoint.

Request body is `{"to": recipient, "content": content}` with the auth key in a
configurable header. The gateway answers 200 or 202 with `{"message": ...,
"messageId": ...}`. Uses the HTTP port; the concrete client is built in the
composition root.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from dispatcher.app.domain.models import SendReceipt
from dispatcher.app.ports.http_client import (
    AbstractHttpClient,
    HttpClientConnectionError,
    HttpClientError,
    HttpClientTimeoutError,
    RequestTimeout,
)
from dispatcher.app.ports.message_sender import SenderDeliveryError, SenderUnavailableError

ACCEPTED_STATUS_CODES = (200, 202)


def _is_unavailable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class WebhookSender:
    """MessageSender implementation on top of AbstractHttpClient."""

    def __init__(
        self,
        client: AbstractHttpClient,
        url: str,
        *,
        auth_key: str = "",
        auth_header: str = "x-ins-auth-key",
        connect_timeout_seconds: float = 5.0,
        read_timeout_seconds: float = 30.0,
    ) -> None:
        if not url:
            raise ValueError("webhook sender requires a url")
        self._client = client
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if auth_key:
            self._headers[auth_header] = auth_key
        self._timeout = RequestTimeout(
            connect_seconds=connect_timeout_seconds,
            read_seconds=read_timeout_seconds,
        )

    async def send(self, recipient: str, content: str) -> SendReceipt:
        try:
            response = await self._client.post_json(
                self._url,
                {"to": recipient, "content": content},
                timeout=self._timeout,
                headers=dict(self._headers),
            )
        except (HttpClientTimeoutError, HttpClientConnectionError) as exc:
            raise SenderUnavailableError(str(exc)) from exc
        except HttpClientError as exc:
            raise SenderDeliveryError(str(exc)) from exc

        status_code = response.status_code
        if status_code not in ACCEPTED_STATUS_CODES:
            if _is_unavailable_status(status_code):
                raise SenderUnavailableError(f"sender unavailable: status {status_code}")
            raise SenderDeliveryError(f"sender rejected message: status {status_code}")

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise SenderDeliveryError("sender returned a non-JSON body") from exc
        if not isinstance(body, dict) or not body.get("messageId"):
            raise SenderDeliveryError("sender response missing messageId")

        logger.debug("webhook accepted message: status={} body={}", status_code, body)
        return SendReceipt(
            message_id=str(body["messageId"]),
            detail=str(body.get("message", "")),
        )

    async def close(self) -> None:
        await self._client.close()
