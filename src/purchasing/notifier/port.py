"""Out-of-band notifier port: delivers the 3-D Secure link by email."""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """Abstract interface for email dispatch adapters."""

    @abstractmethod
    def send(self, sender: str, to: str, title: str, content: str) -> dict:
        """Send a plain-text email message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


def render_content(content: str, url: str) -> str:
    """Substitute the authentication link into the email body."""
    return content.replace("{url}", url)
