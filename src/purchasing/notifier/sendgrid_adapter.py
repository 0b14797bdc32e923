"""SendGrid email notifier."""

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from purchasing.notifier.port import Notifier

logger = structlog.get_logger(__name__)


class SendGridNotifier(Notifier):
    def __init__(self, api_key: str):
        self.client = SendGridAPIClient(api_key)

    def send(self, sender: str, to: str, title: str, content: str) -> dict:
        message = Mail(
            from_email=sender,
            to_emails=to,
            subject=title,
            plain_text_content=content,
        )
        response = self.client.send(message)

        if response.status_code in (200, 201, 202):
            message_id = response.headers.get("X-Message-Id") if response.headers else None
            logger.info("email_sent", provider="sendgrid", to=to, status_code=response.status_code)
            return {"message_id": message_id, "status": "sent"}

        logger.warning("email_rejected", provider="sendgrid", to=to, status_code=response.status_code)
        return {
            "message_id": None,
            "status": "failed",
            "error": f"SendGrid returned status {response.status_code}",
        }
