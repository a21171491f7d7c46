from app.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from sqlalchemy.sql import func
import uuid


class Company(Base):
    """Tenant. Its state is the reference jurisdiction for tax splits."""
    __tablename__ = "companies"

    id = Column(Uuid(as_uuid=True), primary_key=True, index=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False, index=True)
    legal_name = Column(String(200), nullable=True)
    tax_id = Column(String(50), nullable=True)  # GSTIN
    state = Column(String(100), nullable=True)
    address = Column(String, nullable=True)
    email = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
