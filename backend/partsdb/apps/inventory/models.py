from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from partsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationTypeEnum(str, enum.Enum):
    WAREHOUSE = "warehouse"
    VEHICLE = "vehicle"
    PROJECT_SITE = "project_site"
    CUSTOMER_SITE = "customer_site"
    VENDOR = "vendor"


class PartCategoryEnum(str, enum.Enum):
    PART = "part"
    TOOL = "tool"


class MovementTypeEnum(str, enum.Enum):
    RECEIPT = "receipt"
    TRANSFER = "transfer"
    INSTALLATION = "installation"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    DISPOSAL = "disposal"


class SerializedUnitStatusEnum(str, enum.Enum):
    IN_STOCK = "in_stock"
    IN_TRANSIT = "in_transit"
    INSTALLED = "installed"
    RETURNED = "returned"
    DEFECTIVE = "defective"
    WARRANTY_CLAIM = "warranty_claim"


# Units in these states still occupy a stock location.
UNIT_STATUSES_HOLDING_STOCK = {
    SerializedUnitStatusEnum.IN_STOCK,
    SerializedUnitStatusEnum.IN_TRANSIT,
    SerializedUnitStatusEnum.DEFECTIVE,
    SerializedUnitStatusEnum.WARRANTY_CLAIM,
}


class StockLocation(Base):
    __tablename__ = "stock_locations"
    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_location_code"),
        UniqueConstraint("assigned_technician_id", name="uq_stock_location_technician"),
        Index("ix_stock_locations_type", "location_type", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    location_type = Column(
        SAEnum(LocationTypeEnum, name="stock_location_type_enum", native_enum=False),
        nullable=False,
        default=LocationTypeEnum.WAREHOUSE,
    )
    # Vehicles only.
    assigned_technician_id = Column(String(64), nullable=True, index=True)
    is_staging = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<StockLocation id={self.id} code={self.code} type={self.location_type}>"


class Part(Base):
    """
    Catalog item. Parts and tools share one table; ``category`` only changes
    how the item is labelled.
    """

    __tablename__ = "parts"
    __table_args__ = (
        UniqueConstraint("part_number", name="uq_part_number"),
        Index("ix_parts_category", "category", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_number = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(
        SAEnum(PartCategoryEnum, name="part_category_enum", native_enum=False),
        nullable=False,
        default=PartCategoryEnum.PART,
    )
    uom = Column(String(16), nullable=False, default="EA")
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    is_serialized = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    units = relationship("SerializedUnit", back_populates="part", lazy="selectin")


class InventoryMovement(Base):
    """Immutable ledger row. Balances are derived from these."""

    __tablename__ = "inventory_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_inventory_movement_quantity_positive"),
        Index("ix_inventory_movements_part", "part_id", "occurred_at"),
        Index("ix_inventory_movements_ticket", "ticket_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    movement_type = Column(
        SAEnum(MovementTypeEnum, name="inventory_movement_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    from_location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=True, index=True)
    to_location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=True, index=True)

    serialized_unit_id = Column(
        Integer, ForeignKey("serialized_units.id", ondelete="SET NULL"), nullable=True, index=True
    )
    purchase_order_line_id = Column(
        Integer, ForeignKey("purchase_order_lines.id", ondelete="SET NULL"), nullable=True, index=True
    )
    ticket_id = Column(String(64), nullable=True)

    notes = Column(Text, nullable=True)
    actor_id = Column(String(64), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    part = relationship("Part", lazy="joined")
    from_location = relationship("StockLocation", foreign_keys=[from_location_id], lazy="joined")
    to_location = relationship("StockLocation", foreign_keys=[to_location_id], lazy="joined")


class StockBalance(Base):
    """Materialised (part, location) quantity, kept in step with the ledger."""

    __tablename__ = "stock_balances"
    __table_args__ = (
        UniqueConstraint("part_id", "location_id", name="uq_stock_balance_part_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    part = relationship("Part", lazy="joined")
    location = relationship("StockLocation", lazy="joined")


class SerializedUnit(Base):
    __tablename__ = "serialized_units"
    __table_args__ = (
        UniqueConstraint("part_id", "serial_number", name="uq_serialized_unit_serial"),
        Index("ix_serialized_units_status", "status"),
        Index("ix_serialized_units_warranty_end", "warranty_end_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    serial_number = Column(String(128), nullable=False, index=True)
    status = Column(
        SAEnum(SerializedUnitStatusEnum, name="serialized_unit_status_enum", native_enum=False),
        nullable=False,
        default=SerializedUnitStatusEnum.IN_STOCK,
    )
    current_location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="SET NULL"), nullable=True, index=True)

    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id", ondelete="SET NULL"), nullable=True, index=True)
    purchase_order_line_id = Column(Integer, ForeignKey("purchase_order_lines.id", ondelete="SET NULL"), nullable=True)
    ticket_id = Column(String(64), nullable=True, index=True)

    received_date = Column(Date, nullable=True)
    unit_cost = Column(Numeric(12, 2), nullable=True)
    warranty_start_date = Column(Date, nullable=True)
    warranty_end_date = Column(Date, nullable=True)

    installed_on_equipment_id = Column(String(64), nullable=True)
    installed_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    part = relationship("Part", back_populates="units", lazy="joined")
    current_location = relationship("StockLocation", lazy="joined")
