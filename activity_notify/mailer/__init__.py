"""Notification email rendering and SMTP delivery."""

from .models import EmailResult
from .sender import EmailSender, SMTPEmailSender
from .smtp_client import SMTPClient
from .templates import TemplateRenderer

__all__ = [
    "EmailSender",
    "SMTPEmailSender",
    "EmailResult",
    "SMTPClient",
    "TemplateRenderer",
]
