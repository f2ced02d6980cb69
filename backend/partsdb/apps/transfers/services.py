"""
Stock transfers between locations, job staging and technician pickups.

Job-linked receipts land in a staging location and are tracked as
``StagedPartItem`` rows. That stock is reserved for its ticket: it leaves
staging only through a pickup onto a vehicle or an explicit release back to
general stock.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
import logging
import os
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from partsdb.apps.audit import services as audit_services
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import services as inventory_services
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

JOB_STAGING_LOCATION_CODE = os.getenv("JOB_STAGING_LOCATION_CODE", "JOB-STAGING")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transfer_stock(
    db: Session,
    *,
    part_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    actor_id: Optional[str],
    serialized_unit_ids: Optional[Sequence[int]] = None,
    ticket_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> List[inventory_models.InventoryMovement]:
    """
    Move stock between two locations.

    Bulk parts post one transfer movement. Serialized parts need the unit ids
    being moved; each unit is relocated with its own movement. The ledger
    refuses to move stock held for jobs at the source.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationFailed("Quantity must be a positive whole number.", field="quantity")
    if from_location_id == to_location_id:
        raise ValidationFailed("Source and destination must differ.", field="to_location_id")

    part = inventory_services.get_part(db, part_id)
    source = inventory_services.get_location(db, from_location_id)
    inventory_services.get_active_location(db, to_location_id)

    unit_ids = list(serialized_unit_ids or [])
    movements: List[inventory_models.InventoryMovement] = []
    if part.is_serialized:
        if len(set(unit_ids)) != quantity or len(unit_ids) != quantity:
            raise ValidationFailed(
                f"Serialized part {part.part_number} needs exactly {quantity} distinct unit ids.",
                field="serialized_unit_ids",
            )
        units = [inventory_services.get_unit(db, unit_id) for unit_id in unit_ids]
        for unit in units:
            if unit.part_id != part.id:
                raise ValidationFailed(
                    f"Unit {unit.serial_number} is not a {part.part_number}.",
                    field="serialized_unit_ids",
                )
            if unit.current_location_id != source.id:
                raise ValidationFailed(
                    f"Unit {unit.serial_number} is not at {source.code}.",
                    field="serialized_unit_ids",
                )
            if unit.status not in inventory_models.UNIT_STATUSES_HOLDING_STOCK:
                raise ConflictError(
                    f"Unit {unit.serial_number} is {unit.status.value}.",
                    field="serialized_unit_ids",
                )
        for unit in units:
            movements.append(
                inventory_services.relocate_unit(
                    db,
                    unit_id=unit.id,
                    to_location_id=to_location_id,
                    ticket_id=ticket_id,
                    notes=notes,
                    actor_id=actor_id,
                )
            )
    else:
        if unit_ids:
            raise ValidationFailed(
                f"Part {part.part_number} is not serialized.",
                field="serialized_unit_ids",
            )
        movements.append(
            inventory_services.post_movement(
                db,
                movement_type=inventory_models.MovementTypeEnum.TRANSFER,
                part_id=part.id,
                quantity=quantity,
                from_location_id=source.id,
                to_location_id=to_location_id,
                ticket_id=ticket_id,
                notes=notes,
                actor_id=actor_id,
            )
        )

    logger.info(
        "Transferred stock",
        extra={
            "part_id": part.id,
            "quantity": quantity,
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "actor_id": actor_id,
        },
    )
    return movements


# ---------------------------------------------------------------------------
# STAGING
# ---------------------------------------------------------------------------


def resolve_staging_location(db: Session, chosen_location_id: Optional[int]) -> inventory_models.StockLocation:
    """
    The chosen location when it is itself a staging location, otherwise the
    default job staging location.
    """
    if chosen_location_id is not None:
        chosen = inventory_services.get_active_location(db, chosen_location_id)
        if chosen.is_staging:
            return chosen
    default = (
        db.query(inventory_models.StockLocation)
        .filter(
            inventory_models.StockLocation.code == JOB_STAGING_LOCATION_CODE,
            inventory_models.StockLocation.is_active.is_(True),
        )
        .first()
    )
    if not default:
        raise ConflictError(
            f"Job staging location {JOB_STAGING_LOCATION_CODE} is not configured.",
            field="location_id",
        )
    return default


def stage_for_ticket(
    db: Session,
    *,
    ticket_id: str,
    part_id: int,
    quantity: int,
    staging_location_id: int,
    purchase_order_line_id: Optional[int] = None,
    parts_request_id: Optional[int] = None,
    serialized_unit_id: Optional[int] = None,
    assigned_technician_id: Optional[str] = None,
) -> models.StagedPartItem:
    """Record job-reserved stock. The caller has already posted it into staging."""
    item = models.StagedPartItem(
        ticket_id=ticket_id,
        part_id=part_id,
        quantity=quantity,
        staging_location_id=staging_location_id,
        purchase_order_line_id=purchase_order_line_id,
        parts_request_id=parts_request_id,
        serialized_unit_id=serialized_unit_id,
        assigned_technician_id=assigned_technician_id,
        picked_up=False,
        released=False,
        staged_at=_utcnow(),
    )
    db.add(item)
    db.flush()
    return item


def _pending_items(db: Session, ticket_id: str, *, lock: bool = False) -> List[models.StagedPartItem]:
    query = db.query(models.StagedPartItem).filter(
        models.StagedPartItem.ticket_id == ticket_id,
        models.StagedPartItem.picked_up.is_(False),
        models.StagedPartItem.released.is_(False),
    )
    if lock:
        query = query.with_for_update(of=models.StagedPartItem)
    return query.order_by(models.StagedPartItem.id.asc()).all()


def _move_staged_item(
    db: Session,
    *,
    item: models.StagedPartItem,
    movement_type: inventory_models.MovementTypeEnum,
    to_location_id: int,
    actor_id: Optional[str],
    notes: Optional[str],
) -> None:
    inventory_services.post_movement(
        db,
        movement_type=movement_type,
        part_id=item.part_id,
        quantity=item.quantity,
        from_location_id=item.staging_location_id,
        to_location_id=to_location_id,
        serialized_unit_id=item.serialized_unit_id,
        ticket_id=item.ticket_id,
        notes=notes,
        actor_id=actor_id,
        staged_item_id=item.id,
    )
    if item.serialized_unit_id is not None:
        unit = inventory_services.get_unit(db, item.serialized_unit_id)
        unit.current_location_id = to_location_id
        db.add(unit)


def pickup_parts_for_ticket(
    db: Session,
    *,
    ticket_id: str,
    actor_id: str,
    destination_location_id: Optional[int] = None,
) -> schemas.PickupResult:
    """
    Move everything staged for a ticket onto a vehicle.

    The destination defaults to the actor's assigned vehicle. Every check runs
    before the first movement, and the movements and the picked-up flags are
    written in the same transaction.
    """
    if destination_location_id is not None:
        destination = inventory_services.get_active_location(db, destination_location_id)
        if destination.location_type != inventory_models.LocationTypeEnum.VEHICLE:
            raise ValidationFailed(
                f"Pickup destination {destination.code} is not a vehicle.",
                field="destination_location_id",
            )
    else:
        destination = inventory_services.vehicle_for_technician(db, actor_id)
        if destination is None:
            raise ConflictError(
                f"No vehicle is assigned to {actor_id}; assign one before picking up parts.",
                field="destination_location_id",
            )

    items = _pending_items(db, ticket_id, lock=True)
    if not items:
        raise NotFoundError(f"No parts are staged for ticket {ticket_id}.", field="ticket_id")

    now = _utcnow()
    for item in items:
        if item.staging_location_id != destination.id:
            _move_staged_item(
                db,
                item=item,
                movement_type=inventory_models.MovementTypeEnum.TRANSFER,
                to_location_id=destination.id,
                actor_id=actor_id,
                notes=f"Pickup for ticket {ticket_id}",
            )
        item.picked_up = True
        item.picked_up_at = now
        item.picked_up_by_id = actor_id
        item.picked_up_to_location_id = destination.id
        db.add(item)
        db.flush()

    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="ticket",
        entity_id=str(ticket_id),
        action="parts_picked_up",
        after={"destination_location_id": destination.id, "items_transferred": len(items)},
    )
    logger.info(
        "Picked up staged parts",
        extra={
            "ticket_id": ticket_id,
            "destination_location_id": destination.id,
            "items_transferred": len(items),
            "actor_id": actor_id,
        },
    )
    return schemas.PickupResult(
        ticket_id=ticket_id,
        destination_location_id=destination.id,
        items_transferred=len(items),
    )


def release_staged_items(
    db: Session,
    *,
    ticket_id: str,
    to_location_id: int,
    actor_id: Optional[str],
    notes: Optional[str] = None,
) -> schemas.ReleaseResult:
    """
    Return a ticket's unpicked staged stock to general stock, for example when
    the job is cancelled after the parts arrived.
    """
    destination = inventory_services.get_active_location(db, to_location_id)
    items = _pending_items(db, ticket_id, lock=True)
    if not items:
        raise NotFoundError(f"No parts are staged for ticket {ticket_id}.", field="ticket_id")
    if any(item.staging_location_id == destination.id for item in items):
        raise ValidationFailed(
            "Release destination must differ from the staging location.",
            field="to_location_id",
        )

    now = _utcnow()
    for item in items:
        _move_staged_item(
            db,
            item=item,
            movement_type=inventory_models.MovementTypeEnum.RETURN,
            to_location_id=destination.id,
            actor_id=actor_id,
            notes=notes or f"Released from ticket {ticket_id}",
        )
        item.released = True
        item.released_at = now
        db.add(item)
        db.flush()

    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="ticket",
        entity_id=str(ticket_id),
        action="staged_parts_released",
        after={"to_location_id": destination.id, "items_released": len(items)},
    )
    logger.info(
        "Released staged parts",
        extra={"ticket_id": ticket_id, "to_location_id": destination.id, "items_released": len(items)},
    )
    return schemas.ReleaseResult(
        ticket_id=ticket_id,
        to_location_id=destination.id,
        items_released=len(items),
    )


# ---------------------------------------------------------------------------
# PICK LISTS
# ---------------------------------------------------------------------------


def _item_read(item: models.StagedPartItem) -> schemas.StagedPartItemRead:
    data = schemas.StagedPartItemRead.model_validate(item)
    data.part_number = item.part.part_number if item.part else None
    data.part_name = item.part.name if item.part else None
    data.serial_number = item.serialized_unit.serial_number if item.serialized_unit else None
    return data


def _build_pick_list(ticket_id: str, items: List[models.StagedPartItem]) -> schemas.PickList:
    technicians: List[str] = []
    for item in items:
        if item.assigned_technician_id and item.assigned_technician_id not in technicians:
            technicians.append(item.assigned_technician_id)
    return schemas.PickList(
        ticket_id=ticket_id,
        assigned_technician_ids=technicians,
        items=[_item_read(item) for item in items],
        total_quantity=sum(item.quantity for item in items if not item.picked_up),
        picked_items=sum(1 for item in items if item.picked_up),
        total_items=len(items),
    )


def pick_list(db: Session, *, ticket_id: str) -> schemas.PickList:
    items = (
        db.query(models.StagedPartItem)
        .filter(
            models.StagedPartItem.ticket_id == ticket_id,
            models.StagedPartItem.released.is_(False),
        )
        .order_by(models.StagedPartItem.id.asc())
        .all()
    )
    if not items:
        raise NotFoundError(f"No parts are staged for ticket {ticket_id}.", field="ticket_id")
    return _build_pick_list(ticket_id, items)


def parts_ready_for_pickup(db: Session, *, technician_id: Optional[str] = None) -> List[schemas.PickList]:
    pending = db.query(models.StagedPartItem.ticket_id).filter(
        models.StagedPartItem.picked_up.is_(False),
        models.StagedPartItem.released.is_(False),
    )
    if technician_id:
        pending = pending.filter(models.StagedPartItem.assigned_technician_id == technician_id)
    ticket_ids = {row[0] for row in pending.distinct().all()}
    if not ticket_ids:
        return []

    query = db.query(models.StagedPartItem).filter(
        models.StagedPartItem.ticket_id.in_(ticket_ids),
        models.StagedPartItem.released.is_(False),
    )
    if technician_id:
        query = query.filter(models.StagedPartItem.assigned_technician_id == technician_id)

    grouped: Dict[str, List[models.StagedPartItem]] = OrderedDict()
    for item in query.order_by(models.StagedPartItem.staged_at.asc(), models.StagedPartItem.id.asc()).all():
        grouped.setdefault(item.ticket_id, []).append(item)
    return [_build_pick_list(ticket_id, items) for ticket_id, items in grouped.items()]
