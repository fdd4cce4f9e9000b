import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, Numeric, String, Text, DateTime, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        # At most one effective deduction per sale reference and stock row.
        Index(
            "uq_inventory_movements_effective_sale_item",
            "sale_reference",
            "inventory_item_id",
            unique=True,
            postgresql_where=text("NOT is_reversal AND NOT is_reversed"),
            sqlite_where=text("is_reversal = 0 AND is_reversed = 0"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    inventory_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ingredient_name = Column(String, nullable=True)

    change = Column(Numeric(14, 4), nullable=False)
    previous_quantity = Column(Numeric(14, 4), nullable=False)
    new_quantity = Column(Numeric(14, 4), nullable=False)

    # 'sale' | 'recovery' | 'compensation'
    movement_type = Column(Text, nullable=False, default="sale")
    sale_reference = Column(Text, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    is_reversal = Column(Boolean, nullable=False, default=False)
    is_reversed = Column(Boolean, nullable=False, default=False)
    reversal_of_id = Column(UUID(as_uuid=True), ForeignKey("inventory_movements.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    inventory_item = relationship("InventoryItem", back_populates="movements")
