"""Notification sink interfaces.

Notifications are best-effort signals; implementations may raise, and the
dispatcher that drives them logs and drops any failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class KeyIssuedEvent:
    """Emitted after a new credential has been persisted."""

    project: str
    email: str
    ip: str | None
    key_prefix: str


class AbstractNotifier(ABC):
    """Interface for key creation notification sinks."""

    @abstractmethod
    async def send(self, event: KeyIssuedEvent) -> None:
        """Deliver one event.

        Args:
            event: The event to deliver.
        """
        raise NotImplementedError
