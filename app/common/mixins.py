"""
Common mixins for multi-tenant models
"""
from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.sql import func
from datetime import datetime, timezone


class TenantMixin:
    """Mixin for multi-tenant models that adds tenant_id and ensures tenant isolation"""

    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class SoftDeleteMixin:
    """Soft delete helpers; expects a deleted_at column (see TimestampMixin)"""

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def soft_delete(self):
        self.deleted_at = datetime.now(timezone.utc)
        if hasattr(self, "is_active"):
            self.is_active = False
