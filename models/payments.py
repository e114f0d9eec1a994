from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class ListingWebhookEvent(Base):
    """Audit trail of payment-provider webhook deliveries."""

    __tablename__ = "listing_webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dedupe_key = Column(String(255), nullable=True, index=True)
    event_name = Column(String(64), nullable=True, index=True)
    result = Column(String(64), nullable=False, index=True)
    listing_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    email = Column(String(320), nullable=True)
    message = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
