"""
Outbound email for billing notifications.
"""

from .service import email_service

__all__ = ['email_service']
