"""GitHub repository_dispatch notifier."""

from __future__ import annotations

import logging

import httpx

from keygate.adapters.notify.base import AbstractNotifier, KeyIssuedEvent

logger = logging.getLogger(__name__)


class GitHubDispatchNotifier(AbstractNotifier):
    """Fires a ``repository_dispatch`` event for every issued key."""

    def __init__(
        self,
        token: str,
        dispatch_url: str,
        event_type: str = "new-api-key",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self.dispatch_url = dispatch_url
        self.event_type = event_type
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def build_payload(self, event: KeyIssuedEvent) -> dict:
        return {
            "event_type": self.event_type,
            "client_payload": {
                "project": event.project,
                "email": event.email,
                "ip": event.ip,
                "keyPrefix": event.key_prefix,
            },
        }

    async def send(self, event: KeyIssuedEvent) -> None:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github.v3+json",
        }
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(
                self.dispatch_url,
                json=self.build_payload(event),
                headers=headers,
            )
        response.raise_for_status()
        logger.debug(
            "notify.dispatched",
            extra={"status_code": response.status_code, "event_type": self.event_type},
        )
