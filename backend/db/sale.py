import uuid
from datetime import datetime
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


class Sale(Base):
    """Completed POS transaction. Written by the checkout flow, read by recovery."""
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    receipt_number = Column(String, nullable=False)
    status = Column(Text, nullable=False, default="completed", index=True)  # completed|voided|pending
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, nullable=True)  # uuid, or combo-<uuid>-<uuid>
    name = Column(String, nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False)
    # [{"group": "Sauce", "choice": "Chocolate"}, ...]
    selections = Column(JSON, nullable=True)

    sale = relationship("Sale", back_populates="items")
