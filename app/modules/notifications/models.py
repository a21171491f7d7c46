from app.database.database import Base
from sqlalchemy import Column, String, Integer, Text, DateTime, Enum, JSON, Uuid
from sqlalchemy.sql import func
from uuid import uuid4
from app.common.mixins import TenantMixin
import enum


class OutboxStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Nothing to deliver (e.g. counterparty without email)


class OutboxEvent(Base, TenantMixin):
    """
    Side effect recorded in the same transaction as the change that caused
    it and delivered after commit by a Celery worker.
    """
    __tablename__ = "outbox_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    event_type = Column(String(50), nullable=False, index=True)
    aggregate_type = Column(String(50), nullable=False)
    aggregate_id = Column(Uuid(as_uuid=True), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(Enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
