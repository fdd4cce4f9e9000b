import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    name = Column(String, nullable=False)
    unit = Column(Text, nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False, default=0)
    min_level = Column(Numeric(14, 4), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    supports_fractional = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    # Bumped on every quantity write; conditional updates compare against it.
    version = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    movements = relationship("InventoryMovement", back_populates="inventory_item", cascade="all, delete-orphan")
