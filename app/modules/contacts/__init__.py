"""
Contacts: clients and providers referenced by documents and payments.

Read-only from the billing engine's point of view.
"""

from .models import Contact, ContactType
from .service import ContactService

__all__ = [
    "Contact",
    "ContactType",
    "ContactService",
]
