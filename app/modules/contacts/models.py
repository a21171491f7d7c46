"""
Counterparties (clients and providers).

Reference data for the billing engine: documents and payments point at a
contact, and the contact's state is the default place of supply.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Boolean, JSON, Text, Uuid
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin
import enum


# ===== ENUMS =====

class ContactType(enum.Enum):
    """Contact roles"""
    CLIENT = "client"      # Sales side: invoices, credit notes
    PROVIDER = "provider"  # Purchase side: bills, purchase orders


# ===== MODELS =====

class Contact(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    """
    Client or provider of a company.

    ``type`` holds a list of roles, so one contact may be both a client
    and a provider.
    """
    __tablename__ = "contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    type = Column(JSON, nullable=False, default=list)  # ['client'], ['provider'] or both
    email = Column(String(100), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    tax_id = Column(String(50), nullable=True)  # GSTIN
    state = Column(String(100), nullable=True)
    billing_address = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def has_role(self, role: ContactType) -> bool:
        return role.value in (self.type or [])

    @property
    def is_client(self) -> bool:
        return self.has_role(ContactType.CLIENT)

    @property
    def is_provider(self) -> bool:
        return self.has_role(ContactType.PROVIDER)

    def __repr__(self):
        return f"<Contact(id={self.id}, name='{self.name}', type={self.type})>"
