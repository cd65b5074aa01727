"""Factory for the configured notification sink."""

from keygate.adapters.notify.base import AbstractNotifier
from keygate.adapters.notify.github import GitHubDispatchNotifier
from keygate.core.config import NotifySettings, settings


def create_notifier(notify_settings: NotifySettings | None = None) -> AbstractNotifier | None:
    """Build the notifier, or return None when notifications are disabled.

    Notifications are enabled only when a GitHub token is configured.
    """
    cfg = notify_settings or settings.notify
    if not cfg.github_token:
        return None

    return GitHubDispatchNotifier(
        token=cfg.github_token,
        dispatch_url=cfg.dispatch_url,
        event_type=cfg.event_type,
        timeout_seconds=cfg.timeout_seconds,
    )
