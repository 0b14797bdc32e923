"""Gmail notifier over authenticated SMTP."""

import smtplib
from email.mime.text import MIMEText
from email.utils import make_msgid

import structlog

from purchasing.notifier.port import Notifier

logger = structlog.get_logger(__name__)

SMTP_HOST = "smtp.gmail.com"
SMTP_PORT = 587


class GmailNotifier(Notifier):
    def __init__(self, user: str, password: str, host: str = SMTP_HOST, port: int = SMTP_PORT):
        self.user = user
        self.password = password
        self.host = host
        self.port = port

    def send(self, sender: str, to: str, title: str, content: str) -> dict:
        message = MIMEText(content, "plain", "utf-8")
        message["Subject"] = title
        message["From"] = sender or self.user
        message["To"] = to
        message_id = make_msgid()
        message["Message-ID"] = message_id

        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            server.login(self.user, self.password)
            server.send_message(message)

        logger.info("email_sent", provider="gmail", to=to)
        return {"message_id": message_id, "status": "sent"}
