# syncbridge/models/webhook.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from sqlalchemy.sql import func

from syncbridge.core.enums import WebhookStatus
from syncbridge.database import Base


class WebhookEvent(Base):
    """Audit row for every webhook that passed signature verification."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    source = Column(String(20), nullable=False, index=True)  # shopify, naver
    topic = Column(String, nullable=True)
    payload = Column(JSON)
    status = Column(String(20), nullable=False, default=WebhookStatus.RECEIVED.value, index=True)
    error_message = Column(Text, nullable=True)

    received_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WebhookEvent(id={self.id}, source='{self.source}', topic='{self.topic}', status='{self.status}')>"
