from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from partsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StagedPartItem(Base):
    """
    Stock received against a job and held in a staging location until the
    assigned technician picks it up (or it is released to general stock).
    """

    __tablename__ = "staged_part_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_staged_part_item_quantity_positive"),
        Index("ix_staged_part_items_ticket", "ticket_id", "picked_up", "released"),
        Index("ix_staged_part_items_technician", "assigned_technician_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(String(64), nullable=False)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)
    staging_location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=False)
    purchase_order_line_id = Column(Integer, ForeignKey("purchase_order_lines.id", ondelete="SET NULL"), nullable=True)
    parts_request_id = Column(Integer, ForeignKey("parts_requests.id", ondelete="SET NULL"), nullable=True)
    serialized_unit_id = Column(Integer, ForeignKey("serialized_units.id", ondelete="SET NULL"), nullable=True)
    assigned_technician_id = Column(String(64), nullable=True)

    picked_up = Column(Boolean, nullable=False, default=False)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_by_id = Column(String(64), nullable=True)
    picked_up_to_location_id = Column(Integer, ForeignKey("stock_locations.id", ondelete="SET NULL"), nullable=True)

    released = Column(Boolean, nullable=False, default=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    staged_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    part = relationship("Part", lazy="joined")
    staging_location = relationship("StockLocation", foreign_keys=[staging_location_id], lazy="joined")
    serialized_unit = relationship("SerializedUnit", lazy="joined")
