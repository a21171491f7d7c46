from app.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin


class Unit(Base, TenantMixin, TimestampMixin):
    __tablename__ = "units"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(50), nullable=False)
    symbol = Column(String(10), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_unit_tenant_name"),
    )


class Item(Base, TenantMixin, TimestampMixin):
    """Catalog item. Line items snapshot its fields at document creation."""
    __tablename__ = "items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    hsn_code = Column(String(20), nullable=True)
    sac_code = Column(String(20), nullable=True)
    unit_id = Column(Uuid(as_uuid=True), ForeignKey("units.id"), nullable=True)
    unit_price = Column(Numeric(18, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # GST %
    cess_rate = Column(Numeric(5, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    unit = relationship("Unit", lazy="joined")
