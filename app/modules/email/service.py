import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
from typing import List, Optional, Dict, Any
from pathlib import Path
import logging
from jinja2 import Environment, FileSystemLoader, select_autoescape
from app.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class EmailService:
    """
    Sends billing notifications (issued documents, payment receipts) over SMTP.

    The platform address is the sender; the tenant company can be set as
    Reply-To so counterparties answer the company directly.
    """

    def __init__(self):
        self.smtp_server = settings.EMAIL_SMTP_SERVER
        self.smtp_port = settings.EMAIL_SMTP_PORT
        self.username = settings.EMAIL_USERNAME
        self.password = settings.EMAIL_PASSWORD
        self.use_tls = settings.EMAIL_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _connect(self) -> smtplib.SMTP:
        if self.use_tls:
            server = smtplib.SMTP(self.smtp_server, self.smtp_port)
            server.starttls(context=ssl.create_default_context())
        else:
            server = smtplib.SMTP_SSL(self.smtp_server, self.smtp_port)
        if self.username:
            server.login(self.username, self.password)
        return server

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self.jinja_env.get_template(template_name).render(**context)

    def render_text_template(self, template_name: str, context: Dict[str, Any]) -> Optional[str]:
        """Render the plain-text companion (same name, .txt) of an HTML template, if there is one"""
        text_name = str(Path(template_name).with_suffix(".txt"))
        if not (TEMPLATE_DIR / text_name).is_file():
            return None
        return self.render_template(text_name, context)

    def build_message(
        self,
        to_emails: List[str],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        reply_to: Optional[str] = None,
        sender_name: Optional[str] = None
    ) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = formataddr((sender_name or self.from_name, self.from_email))
        msg['To'] = ', '.join(to_emails)
        if reply_to:
            msg['Reply-To'] = reply_to
        if text_content:
            msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))
        return msg

    def send_email(
        self,
        to_emails: List[str],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        reply_to: Optional[str] = None,
        sender_name: Optional[str] = None
    ) -> bool:
        """
        Send one message. SMTP failures are logged and reported as False so
        the outbox can record the attempt.
        """
        msg = self.build_message(to_emails, subject, html_content, text_content, reply_to, sender_name)
        try:
            with self._connect() as server:
                server.sendmail(self.from_email, to_emails, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email to {', '.join(to_emails)}: {str(e)}")
            return False

        logger.info(f"Email '{subject}' sent to {', '.join(to_emails)}")
        return True

    def send_template_email(
        self,
        to_emails: List[str],
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        reply_to: Optional[str] = None
    ) -> bool:
        return self.send_email(
            to_emails=to_emails,
            subject=subject,
            html_content=self.render_template(template_name, context),
            text_content=self.render_text_template(template_name, context),
            reply_to=reply_to,
            sender_name=context.get("company_name") or None
        )


# Singleton instance
email_service = EmailService()
