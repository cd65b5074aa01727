"""Notification adapters for key creation events."""

from keygate.adapters.notify.base import AbstractNotifier, KeyIssuedEvent
from keygate.adapters.notify.factory import create_notifier
from keygate.adapters.notify.github import GitHubDispatchNotifier

__all__ = [
    "AbstractNotifier",
    "GitHubDispatchNotifier",
    "KeyIssuedEvent",
    "create_notifier",
]
