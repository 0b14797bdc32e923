"""Notifier registry.

get_notifier() returns the provider named by ``email_provider`` when its
credentials are configured, and None when no channel is available. Tests
swap in a FakeNotifier with set_notifier().
"""

from purchasing.config import Settings, get_settings
from purchasing.notifier.port import Notifier

_UNSET = object()
_current_notifier = _UNSET


def build_notifier(settings: Settings) -> Notifier | None:
    """Build the configured provider, or None if it lacks credentials."""
    if settings.email_provider == "sendgrid":
        if not settings.sendgrid_api_key:
            return None
        from purchasing.notifier.sendgrid_adapter import SendGridNotifier

        return SendGridNotifier(settings.sendgrid_api_key)

    if not (settings.gmail_user and settings.gmail_password):
        return None
    from purchasing.notifier.gmail_adapter import GmailNotifier

    return GmailNotifier(settings.gmail_user, settings.gmail_password)


def get_notifier() -> Notifier | None:
    global _current_notifier
    if _current_notifier is _UNSET:
        _current_notifier = build_notifier(get_settings())
    return _current_notifier


def set_notifier(notifier: Notifier | None) -> None:
    """Override the active notifier. Passing None disables out-of-band email."""
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = _UNSET
