"""
Counterparty lookups used by documents, payments and the ledger
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.common.errors import CounterpartyNotFound, InvalidDocument
from app.modules.contacts.models import Contact, ContactType


class ContactService:
    def __init__(self, db: Session):
        self.db = db

    def get_counterparty(
        self,
        tenant_id: UUID,
        contact_id: UUID,
        role: Optional[ContactType] = None,
        active_only: bool = True
    ) -> Contact:
        """Return a live contact of the tenant, optionally requiring a role"""
        query = self.db.query(Contact).filter(
            Contact.id == contact_id,
            Contact.tenant_id == tenant_id,
            Contact.deleted_at.is_(None)
        )
        if active_only:
            query = query.filter(Contact.is_active == True)
        contact = query.first()
        if not contact:
            raise CounterpartyNotFound("Contact not found", contact_id=contact_id)
        if role is not None and not contact.has_role(role):
            raise InvalidDocument(f"Contact '{contact.name}' is not a {role.value}", contact_id=contact_id)
        return contact
