import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

logger = logging.getLogger(__name__)


class Emailer:
    """Sends plain text alert mails to a fixed list of operators."""

    def __init__(self, api_key, sender, recipients):
        self.api_key = api_key
        self.sender = sender
        self.recipients = [r for r in recipients if r][:2]

    def send_email(self, subject, body):
        if not self.api_key or not self.sender or not self.recipients:
            logger.warning("SendGrid nicht konfiguriert, Mail '%s' nicht versendet", subject)
            return
        message = Mail(
            from_email=self.sender,
            to_emails=self.recipients,
            subject=subject,
            plain_text_content=body
        )
        sg = SendGridAPIClient(self.api_key)
        sg.send(message)
        logger.info("Fehler-Mail '%s' an %s versendet", subject, ", ".join(self.recipients))
