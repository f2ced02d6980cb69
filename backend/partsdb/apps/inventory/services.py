from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
import enum
import logging
import os
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from partsdb.apps.audit import services as audit_services
from partsdb.apps.transfers import models as transfer_models
from partsdb.apps.workflow import transition_or_conflict
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

WARRANTY_EXPIRING_DAYS = int(os.getenv("WARRANTY_EXPIRING_DAYS", "30"))

MovementType = models.MovementTypeEnum
UnitStatus = models.SerializedUnitStatusEnum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_code(value: str) -> str:
    return (value or "").strip().upper()


def _json_safe(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (Decimal, date, datetime)):
        return str(value)
    return value


def _audit(
    db: Session,
    *,
    entity_type: str,
    entity_id: object,
    action: str,
    actor_id: Optional[str],
    after: Optional[dict] = None,
    before: Optional[dict] = None,
) -> None:
    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        before=before,
        after=after,
    )


# ---------------------------------------------------------------------------
# LOCATIONS
# ---------------------------------------------------------------------------


def get_location(db: Session, location_id: int) -> models.StockLocation:
    location = db.query(models.StockLocation).filter(models.StockLocation.id == location_id).first()
    if not location:
        raise NotFoundError(f"Location {location_id} not found.", field="location_id")
    return location


def get_active_location(db: Session, location_id: int) -> models.StockLocation:
    location = get_location(db, location_id)
    if not location.is_active:
        raise NotFoundError(f"Location {location.code} is inactive.", field="location_id")
    return location


def vehicle_for_technician(db: Session, technician_id: str) -> Optional[models.StockLocation]:
    if not technician_id:
        return None
    return (
        db.query(models.StockLocation)
        .filter(
            models.StockLocation.assigned_technician_id == technician_id,
            models.StockLocation.location_type == models.LocationTypeEnum.VEHICLE,
            models.StockLocation.is_active.is_(True),
        )
        .first()
    )


def create_location(
    db: Session,
    *,
    payload: schemas.StockLocationCreate,
    actor_id: Optional[str],
) -> models.StockLocation:
    code = _normalize_code(payload.code)
    if not code:
        raise ValidationFailed("Location code is required.", field="code")
    if not (payload.name or "").strip():
        raise ValidationFailed("Location name is required.", field="name")
    existing = db.query(models.StockLocation).filter(models.StockLocation.code == code).first()
    if existing:
        raise ConflictError(f"Location code {code} already exists.", field="code")

    technician_id = payload.assigned_technician_id
    if technician_id:
        if payload.location_type != models.LocationTypeEnum.VEHICLE:
            raise ValidationFailed("Only vehicles may be assigned to a technician.", field="assigned_technician_id")
        current = vehicle_for_technician(db, technician_id)
        if current:
            raise ConflictError(
                f"Technician {technician_id} is already assigned to {current.code}.",
                field="assigned_technician_id",
            )

    location = models.StockLocation(
        code=code,
        name=payload.name.strip(),
        location_type=payload.location_type,
        assigned_technician_id=technician_id,
        is_staging=payload.is_staging,
        notes=payload.notes,
        is_active=True,
    )
    db.add(location)
    db.flush()
    _audit(
        db,
        entity_type="stock_location",
        entity_id=location.id,
        action="create",
        actor_id=actor_id,
        after={"code": location.code, "location_type": location.location_type.value},
    )
    return location


def list_locations(
    db: Session,
    *,
    active_only: bool = True,
    location_type: Optional[models.LocationTypeEnum] = None,
) -> List[models.StockLocation]:
    query = db.query(models.StockLocation)
    if active_only:
        query = query.filter(models.StockLocation.is_active.is_(True))
    if location_type:
        query = query.filter(models.StockLocation.location_type == location_type)
    return query.order_by(models.StockLocation.code.asc()).all()


def assign_vehicle(
    db: Session,
    *,
    location_id: int,
    technician_id: str,
    reassign: bool = False,
    actor_id: Optional[str],
) -> models.StockLocation:
    """
    Assign a technician to a vehicle location.

    A vehicle carries at most one technician and a technician drives at most
    one vehicle. Taking over an occupied vehicle, or moving a technician off
    their current vehicle, needs ``reassign=True``.
    """
    if not (technician_id or "").strip():
        raise ValidationFailed("technician_id is required.", field="technician_id")
    location = get_active_location(db, location_id)
    if location.location_type != models.LocationTypeEnum.VEHICLE:
        raise ValidationFailed(f"Location {location.code} is not a vehicle.", field="location_id")
    if location.assigned_technician_id == technician_id:
        return location

    if location.assigned_technician_id and not reassign:
        raise ConflictError(
            f"Vehicle {location.code} is assigned to {location.assigned_technician_id}; pass reassign to replace.",
            field="reassign",
        )

    previous = (
        db.query(models.StockLocation)
        .filter(
            models.StockLocation.assigned_technician_id == technician_id,
            models.StockLocation.id != location.id,
        )
        .first()
    )
    if previous:
        if not reassign:
            raise ConflictError(
                f"Technician {technician_id} is already assigned to {previous.code}; pass reassign to move.",
                field="reassign",
            )
        previous.assigned_technician_id = None
        db.add(previous)
        db.flush()

    before = {"assigned_technician_id": location.assigned_technician_id}
    location.assigned_technician_id = technician_id
    db.add(location)
    db.flush()
    _audit(
        db,
        entity_type="stock_location",
        entity_id=location.id,
        action="assign_vehicle",
        actor_id=actor_id,
        before=before,
        after={
            "assigned_technician_id": technician_id,
            "released_location_id": previous.id if previous else None,
        },
    )
    return location


def unassign_vehicle(db: Session, *, location_id: int, actor_id: Optional[str]) -> models.StockLocation:
    location = get_location(db, location_id)
    if location.assigned_technician_id is None:
        return location
    before = {"assigned_technician_id": location.assigned_technician_id}
    location.assigned_technician_id = None
    db.add(location)
    db.flush()
    _audit(
        db,
        entity_type="stock_location",
        entity_id=location.id,
        action="unassign_vehicle",
        actor_id=actor_id,
        before=before,
        after={"assigned_technician_id": None},
    )
    return location


def deactivate_location(db: Session, *, location_id: int, actor_id: Optional[str]) -> models.StockLocation:
    location = get_location(db, location_id)
    if not location.is_active:
        return location
    held = (
        db.query(models.StockBalance)
        .filter(models.StockBalance.location_id == location.id, models.StockBalance.quantity > 0)
        .count()
    )
    if held:
        raise ConflictError(f"Location {location.code} still holds stock.", field="location_id")
    location.is_active = False
    location.assigned_technician_id = None
    db.add(location)
    db.flush()
    _audit(
        db,
        entity_type="stock_location",
        entity_id=location.id,
        action="deactivate",
        actor_id=actor_id,
        after={"is_active": False},
    )
    return location


# ---------------------------------------------------------------------------
# PARTS
# ---------------------------------------------------------------------------


def get_part(db: Session, part_id: int) -> models.Part:
    part = db.query(models.Part).filter(models.Part.id == part_id).first()
    if not part:
        raise NotFoundError(f"Part {part_id} not found.", field="part_id")
    return part


def create_part(db: Session, *, payload: schemas.PartCreate, actor_id: Optional[str]) -> models.Part:
    part_number = _normalize_code(payload.part_number)
    if not part_number:
        raise ValidationFailed("part_number is required.", field="part_number")
    if not (payload.name or "").strip():
        raise ValidationFailed("name is required.", field="name")
    if db.query(models.Part).filter(models.Part.part_number == part_number).first():
        raise ConflictError(f"Part number {part_number} already exists.", field="part_number")

    part = models.Part(
        part_number=part_number,
        name=payload.name.strip(),
        description=payload.description,
        category=payload.category,
        uom=payload.uom,
        unit_cost=payload.unit_cost,
        is_serialized=payload.is_serialized,
        is_active=True,
    )
    db.add(part)
    db.flush()
    _audit(
        db,
        entity_type="part",
        entity_id=part.id,
        action="create",
        actor_id=actor_id,
        after={"part_number": part.part_number, "category": part.category.value},
    )
    return part


def _part_has_history(db: Session, part_id: int) -> bool:
    if db.query(models.InventoryMovement.id).filter(models.InventoryMovement.part_id == part_id).first():
        return True
    return db.query(models.SerializedUnit.id).filter(models.SerializedUnit.part_id == part_id).first() is not None


def update_part(
    db: Session,
    *,
    part_id: int,
    payload: schemas.PartUpdate,
    actor_id: Optional[str],
) -> models.Part:
    part = get_part(db, part_id)
    changes = payload.model_dump(exclude_unset=True)

    if "is_serialized" in changes and changes["is_serialized"] is not None:
        if changes["is_serialized"] != part.is_serialized and _part_has_history(db, part.id):
            raise ConflictError(
                "is_serialized cannot change once stock has moved for this part.",
                field="is_serialized",
            )
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationFailed("name cannot be blank.", field="name")

    for field, value in changes.items():
        if value is None and field in {"name", "category", "uom", "unit_cost", "is_serialized", "is_active"}:
            continue
        setattr(part, field, value)
    db.add(part)
    db.flush()
    _audit(
        db,
        entity_type="part",
        entity_id=part.id,
        action="update",
        actor_id=actor_id,
        after={key: _json_safe(value) for key, value in changes.items()},
    )
    return part


def list_parts(
    db: Session,
    *,
    category: Optional[models.PartCategoryEnum] = None,
    search: Optional[str] = None,
    active_only: bool = True,
) -> List[models.Part]:
    query = db.query(models.Part)
    if active_only:
        query = query.filter(models.Part.is_active.is_(True))
    if category:
        query = query.filter(models.Part.category == category)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(models.Part.part_number.ilike(pattern), models.Part.name.ilike(pattern)))
    return query.order_by(models.Part.part_number.asc()).all()


# ---------------------------------------------------------------------------
# STOCK LEDGER
# ---------------------------------------------------------------------------


def _movement_deltas(
    *,
    from_location_id: Optional[int],
    to_location_id: Optional[int],
    quantity: int,
) -> List[Tuple[int, int]]:
    # Every movement type decrements its source and increments its target;
    # the type only decides which sides must be present.
    deltas: List[Tuple[int, int]] = []
    if from_location_id is not None:
        deltas.append((from_location_id, -quantity))
    if to_location_id is not None:
        deltas.append((to_location_id, quantity))
    return deltas


def _validate_movement_shape(
    movement_type: models.MovementTypeEnum,
    *,
    from_location_id: Optional[int],
    to_location_id: Optional[int],
) -> None:
    has_from = from_location_id is not None
    has_to = to_location_id is not None
    label = movement_type.value

    if movement_type == MovementType.RECEIPT:
        if has_from:
            raise ValidationFailed("A receipt cannot have a source location.", field="from_location_id")
        if not has_to:
            raise ValidationFailed("A receipt requires a destination location.", field="to_location_id")
    elif movement_type == MovementType.TRANSFER:
        if not has_from:
            raise ValidationFailed("A transfer requires a source location.", field="from_location_id")
        if not has_to:
            raise ValidationFailed("A transfer requires a destination location.", field="to_location_id")
        if from_location_id == to_location_id:
            raise ValidationFailed("Source and destination must differ.", field="to_location_id")
    elif movement_type in {MovementType.INSTALLATION, MovementType.DISPOSAL}:
        if not has_from:
            raise ValidationFailed(f"An {label} requires a source location.", field="from_location_id")
        if has_to:
            raise ValidationFailed(f"An {label} cannot have a destination location.", field="to_location_id")
    elif movement_type == MovementType.RETURN:
        if not has_to:
            raise ValidationFailed("A return requires a destination location.", field="to_location_id")
        if from_location_id == to_location_id:
            raise ValidationFailed("Source and destination must differ.", field="to_location_id")
    elif movement_type == MovementType.ADJUSTMENT:
        if has_from == has_to:
            raise ValidationFailed(
                "An adjustment names exactly one of source or destination.",
                field="from_location_id",
            )


def _lock_balance(db: Session, *, part_id: int, location_id: int) -> models.StockBalance:
    balance = (
        db.query(models.StockBalance)
        .filter(
            models.StockBalance.part_id == part_id,
            models.StockBalance.location_id == location_id,
        )
        .with_for_update(of=models.StockBalance)
        .first()
    )
    if balance is None:
        balance = models.StockBalance(part_id=part_id, location_id=location_id, quantity=0)
        db.add(balance)
        db.flush()
    return balance


def quantity_at(db: Session, *, part_id: int, location_id: int) -> int:
    balance = (
        db.query(models.StockBalance)
        .filter(
            models.StockBalance.part_id == part_id,
            models.StockBalance.location_id == location_id,
        )
        .first()
    )
    return int(balance.quantity) if balance else 0


def _pending_staged_items(db: Session):
    return db.query(transfer_models.StagedPartItem).filter(
        transfer_models.StagedPartItem.picked_up.is_(False),
        transfer_models.StagedPartItem.released.is_(False),
    )


def reserved_quantity(
    db: Session,
    *,
    part_id: int,
    location_id: int,
    exclude_item_id: Optional[int] = None,
) -> int:
    """Quantity at a location held for jobs by staged items not yet picked up or released."""
    query = (
        db.query(func.coalesce(func.sum(transfer_models.StagedPartItem.quantity), 0))
        .filter(
            transfer_models.StagedPartItem.part_id == part_id,
            transfer_models.StagedPartItem.staging_location_id == location_id,
            transfer_models.StagedPartItem.picked_up.is_(False),
            transfer_models.StagedPartItem.released.is_(False),
        )
    )
    if exclude_item_id is not None:
        query = query.filter(transfer_models.StagedPartItem.id != exclude_item_id)
    return int(query.scalar() or 0)


def staged_item_for_unit(db: Session, unit_id: int) -> Optional[transfer_models.StagedPartItem]:
    return (
        _pending_staged_items(db)
        .filter(transfer_models.StagedPartItem.serialized_unit_id == unit_id)
        .first()
    )


def _check_unit_not_reserved(
    db: Session,
    unit_id: int,
    *,
    staged_item_id: Optional[int] = None,
) -> None:
    staged = staged_item_for_unit(db, unit_id)
    if staged is not None and staged.id != staged_item_id:
        unit = get_unit(db, unit_id)
        raise ConflictError(
            f"Unit {unit.serial_number} is reserved for ticket {staged.ticket_id}; pick it up or release it first.",
            field="serialized_unit_id",
        )


def post_movement(
    db: Session,
    *,
    movement_type: models.MovementTypeEnum,
    part_id: int,
    quantity: int,
    actor_id: Optional[str],
    from_location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    serialized_unit_id: Optional[int] = None,
    purchase_order_line_id: Optional[int] = None,
    ticket_id: Optional[str] = None,
    notes: Optional[str] = None,
    staged_item_id: Optional[int] = None,
) -> models.InventoryMovement:
    """
    Append a movement to the ledger and apply it to the balance cache.

    The balance rows touched are locked for the rest of the transaction, so
    the stock checks and the decrement cannot interleave with a concurrent
    movement from the same location. Stock held by staged job items cannot
    leave its location except by the movement that carries that item
    (``staged_item_id``), i.e. a pickup or a release.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationFailed("Quantity must be a positive whole number.", field="quantity")
    movement_type = models.MovementTypeEnum(movement_type)
    _validate_movement_shape(
        movement_type,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
    )

    part = get_part(db, part_id)
    if from_location_id is not None:
        get_location(db, from_location_id)
    if to_location_id is not None:
        get_active_location(db, to_location_id)

    deltas = _movement_deltas(
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=quantity,
    )
    # Lock in a stable order so two opposite transfers cannot deadlock.
    balances: Dict[int, models.StockBalance] = {}
    for location_id, _ in sorted(deltas):
        balances[location_id] = _lock_balance(db, part_id=part.id, location_id=location_id)

    # Reservations only change while the staging balance row is locked, so
    # reading them after the lock is race free.
    for location_id, delta in deltas:
        if delta >= 0:
            continue
        balance = balances[location_id]
        if balance.quantity < -delta:
            location = get_location(db, location_id)
            raise ConflictError(
                f"Insufficient stock of {part.part_number} at {location.code}: "
                f"{balance.quantity} on hand, {-delta} requested.",
                field="quantity",
            )
        reserved = reserved_quantity(db, part_id=part.id, location_id=location_id, exclude_item_id=staged_item_id)
        if balance.quantity - reserved < -delta:
            location = get_location(db, location_id)
            raise ConflictError(
                f"Insufficient free stock of {part.part_number} at {location.code}: "
                f"{balance.quantity - reserved} free ({reserved} reserved for jobs), {-delta} requested.",
                field="quantity",
            )
        if serialized_unit_id is not None:
            _check_unit_not_reserved(db, serialized_unit_id, staged_item_id=staged_item_id)

    movement = models.InventoryMovement(
        part_id=part.id,
        quantity=quantity,
        movement_type=movement_type,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        serialized_unit_id=serialized_unit_id,
        purchase_order_line_id=purchase_order_line_id,
        ticket_id=ticket_id,
        notes=notes,
        actor_id=actor_id,
        occurred_at=_utcnow(),
    )
    db.add(movement)
    for location_id, delta in deltas:
        balance = balances[location_id]
        balance.quantity = balance.quantity + delta
        db.add(balance)
    db.flush()

    _audit(
        db,
        entity_type="inventory_movement",
        entity_id=movement.id,
        action=movement_type.value,
        actor_id=actor_id,
        after={
            "part_id": part.id,
            "quantity": quantity,
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "serialized_unit_id": serialized_unit_id,
            "ticket_id": ticket_id,
        },
    )
    return movement


def history(
    db: Session,
    *,
    part_id: Optional[int] = None,
    location_id: Optional[int] = None,
    movement_type: Optional[models.MovementTypeEnum] = None,
    ticket_id: Optional[str] = None,
    serialized_unit_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.InventoryMovement]:
    query = db.query(models.InventoryMovement)
    if part_id is not None:
        query = query.filter(models.InventoryMovement.part_id == part_id)
    if location_id is not None:
        query = query.filter(
            or_(
                models.InventoryMovement.from_location_id == location_id,
                models.InventoryMovement.to_location_id == location_id,
            )
        )
    if movement_type is not None:
        query = query.filter(models.InventoryMovement.movement_type == movement_type)
    if ticket_id:
        query = query.filter(models.InventoryMovement.ticket_id == ticket_id)
    if serialized_unit_id is not None:
        query = query.filter(models.InventoryMovement.serialized_unit_id == serialized_unit_id)
    return (
        query.order_by(models.InventoryMovement.occurred_at.desc(), models.InventoryMovement.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def _on_hand_items(balances: Iterable[models.StockBalance]) -> List[schemas.OnHandItem]:
    return [
        schemas.OnHandItem(
            part_id=balance.part_id,
            part_number=balance.part.part_number,
            part_name=balance.part.name,
            location_id=balance.location_id,
            location_code=balance.location.code,
            location_name=balance.location.name,
            quantity=balance.quantity,
        )
        for balance in balances
    ]


def inventory_by_part(db: Session, *, part_id: int) -> List[schemas.OnHandItem]:
    get_part(db, part_id)
    balances = (
        db.query(models.StockBalance)
        .join(models.StockLocation, models.StockLocation.id == models.StockBalance.location_id)
        .filter(models.StockBalance.part_id == part_id, models.StockBalance.quantity > 0)
        .order_by(models.StockLocation.code.asc())
        .all()
    )
    return _on_hand_items(balances)


def inventory_by_location(db: Session, *, location_id: int) -> List[schemas.OnHandItem]:
    get_location(db, location_id)
    balances = (
        db.query(models.StockBalance)
        .join(models.Part, models.Part.id == models.StockBalance.part_id)
        .filter(models.StockBalance.location_id == location_id, models.StockBalance.quantity > 0)
        .order_by(models.Part.part_number.asc())
        .all()
    )
    return _on_hand_items(balances)


def recalculate_balances(db: Session) -> int:
    """
    Rebuild the balance cache from the movement log.

    Returns the number of balance rows whose stored quantity was wrong.
    """
    expected: Dict[Tuple[int, int], int] = defaultdict(int)
    for movement in db.query(models.InventoryMovement).all():
        for location_id, delta in _movement_deltas(
            from_location_id=movement.from_location_id,
            to_location_id=movement.to_location_id,
            quantity=movement.quantity,
        ):
            expected[(movement.part_id, location_id)] += delta

    negative = {key: qty for key, qty in expected.items() if qty < 0}
    if negative:
        logger.error("Ledger derives negative balances", extra={"balances": negative})
        raise ConflictError(f"Ledger derives negative balances for {len(negative)} part/location pairs.")

    corrected = 0
    seen = set()
    for balance in db.query(models.StockBalance).with_for_update(of=models.StockBalance).all():
        key = (balance.part_id, balance.location_id)
        seen.add(key)
        target = expected.get(key, 0)
        if balance.quantity != target:
            balance.quantity = target
            db.add(balance)
            corrected += 1
    for key, qty in expected.items():
        if key in seen:
            continue
        part_id, location_id = key
        db.add(models.StockBalance(part_id=part_id, location_id=location_id, quantity=qty))
        corrected += 1
    db.flush()
    logger.info("Recalculated stock balances", extra={"corrected_rows": corrected})
    return corrected


# ---------------------------------------------------------------------------
# SERIALIZED UNITS
# ---------------------------------------------------------------------------


def get_unit(db: Session, unit_id: int) -> models.SerializedUnit:
    unit = db.query(models.SerializedUnit).filter(models.SerializedUnit.id == unit_id).first()
    if not unit:
        raise NotFoundError(f"Serialized unit {unit_id} not found.", field="serialized_unit_id")
    return unit


def existing_serials(db: Session, *, part_id: int, serial_numbers: Iterable[str]) -> List[str]:
    serials = list(serial_numbers)
    if not serials:
        return []
    rows = (
        db.query(models.SerializedUnit.serial_number)
        .filter(
            models.SerializedUnit.part_id == part_id,
            models.SerializedUnit.serial_number.in_(serials),
        )
        .all()
    )
    return [row[0] for row in rows]


def create_serialized_unit(
    db: Session,
    *,
    part: models.Part,
    serial_number: str,
    location_id: int,
    unit_cost=None,
    vendor_id: Optional[int] = None,
    purchase_order_id: Optional[int] = None,
    purchase_order_line_id: Optional[int] = None,
    ticket_id: Optional[str] = None,
    received_date: Optional[date] = None,
    warranty_start_date: Optional[date] = None,
    warranty_end_date: Optional[date] = None,
) -> models.SerializedUnit:
    """Only receiving mints units; the caller posts the matching receipt."""
    unit = models.SerializedUnit(
        part_id=part.id,
        serial_number=serial_number,
        status=UnitStatus.IN_STOCK,
        current_location_id=location_id,
        unit_cost=unit_cost,
        vendor_id=vendor_id,
        purchase_order_id=purchase_order_id,
        purchase_order_line_id=purchase_order_line_id,
        ticket_id=ticket_id,
        received_date=received_date or date.today(),
        warranty_start_date=warranty_start_date,
        warranty_end_date=warranty_end_date,
    )
    db.add(unit)
    db.flush()
    return unit


def _unit_snapshot(unit: models.SerializedUnit) -> dict:
    return {
        "serial_number": unit.serial_number,
        "current_location_id": unit.current_location_id,
        "installed_on_equipment_id": unit.installed_on_equipment_id,
    }


def relocate_unit(
    db: Session,
    *,
    unit_id: int,
    to_location_id: int,
    actor_id: Optional[str],
    ticket_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> models.InventoryMovement:
    unit = get_unit(db, unit_id)
    if unit.status not in models.UNIT_STATUSES_HOLDING_STOCK or unit.current_location_id is None:
        raise ConflictError(
            f"Unit {unit.serial_number} is {unit.status.value} and holds no stock to move.",
            field="serialized_unit_id",
        )
    if unit.current_location_id == to_location_id:
        raise ValidationFailed(
            f"Unit {unit.serial_number} is already at the destination.",
            field="to_location_id",
        )
    movement = post_movement(
        db,
        movement_type=MovementType.TRANSFER,
        part_id=unit.part_id,
        quantity=1,
        from_location_id=unit.current_location_id,
        to_location_id=to_location_id,
        serialized_unit_id=unit.id,
        ticket_id=ticket_id,
        actor_id=actor_id,
        notes=notes,
    )
    unit.current_location_id = to_location_id
    db.add(unit)
    db.flush()
    return movement


def set_unit_status(
    db: Session,
    *,
    unit_id: int,
    new_status: models.SerializedUnitStatusEnum,
    actor_id: Optional[str],
    equipment_id: Optional[str] = None,
    location_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> models.SerializedUnit:
    """
    Move a unit through its lifecycle, posting the ledger movement that keeps
    its location in agreement with stock balances.
    """
    unit = get_unit(db, unit_id)
    _check_unit_not_reserved(db, unit.id)
    new_status = models.SerializedUnitStatusEnum(new_status)
    old_status = unit.status
    before = _unit_snapshot(unit)

    after = dict(before)
    if new_status == UnitStatus.INSTALLED:
        after.update({"installed_on_equipment_id": equipment_id, "current_location_id": None})
    elif old_status == UnitStatus.INSTALLED:
        after.update({"installed_on_equipment_id": None, "current_location_id": location_id})
    elif new_status == UnitStatus.RETURNED:
        after.update({"current_location_id": None})
    elif location_id is not None:
        after.update({"current_location_id": location_id})

    transition_or_conflict(
        db,
        actor_id=actor_id,
        entity_type="serialized_unit",
        entity_id=str(unit.id),
        from_state=old_status.value,
        to_state=new_status.value,
        before_obj=before,
        after_obj=after,
    )

    if new_status == UnitStatus.INSTALLED:
        if unit.current_location_id is not None:
            post_movement(
                db,
                movement_type=MovementType.INSTALLATION,
                part_id=unit.part_id,
                quantity=1,
                from_location_id=unit.current_location_id,
                serialized_unit_id=unit.id,
                ticket_id=unit.ticket_id,
                actor_id=actor_id,
                notes=notes,
            )
        unit.current_location_id = None
        unit.installed_on_equipment_id = equipment_id
        unit.installed_at = _utcnow()
    elif old_status == UnitStatus.INSTALLED:
        post_movement(
            db,
            movement_type=MovementType.RETURN,
            part_id=unit.part_id,
            quantity=1,
            to_location_id=location_id,
            serialized_unit_id=unit.id,
            actor_id=actor_id,
            notes=notes,
        )
        unit.current_location_id = location_id
        unit.installed_on_equipment_id = None
        unit.installed_at = None
    elif new_status == UnitStatus.RETURNED:
        if unit.current_location_id is not None:
            post_movement(
                db,
                movement_type=MovementType.DISPOSAL,
                part_id=unit.part_id,
                quantity=1,
                from_location_id=unit.current_location_id,
                serialized_unit_id=unit.id,
                actor_id=actor_id,
                notes=notes or "Returned to vendor",
            )
        unit.current_location_id = None
    elif location_id is not None and location_id != unit.current_location_id:
        relocate_unit(db, unit_id=unit.id, to_location_id=location_id, actor_id=actor_id, notes=notes)

    unit.status = new_status
    if notes:
        unit.notes = notes
    db.add(unit)
    db.flush()
    logger.info(
        "Serialized unit status changed",
        extra={"unit_id": unit.id, "from_status": old_status.value, "to_status": new_status.value},
    )
    return unit


def list_units(
    db: Session,
    *,
    status: Optional[str] = None,
    search: Optional[str] = None,
    part_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> List[models.SerializedUnit]:
    query = db.query(models.SerializedUnit)
    if status == "available":
        query = query.filter(
            models.SerializedUnit.status.in_([UnitStatus.IN_STOCK, UnitStatus.IN_TRANSIT]),
            models.SerializedUnit.installed_on_equipment_id.is_(None),
        )
    elif status:
        try:
            query = query.filter(models.SerializedUnit.status == models.SerializedUnitStatusEnum(status))
        except ValueError:
            raise ValidationFailed(f"Unknown unit status {status!r}.", field="status")
    if part_id is not None:
        query = query.filter(models.SerializedUnit.part_id == part_id)
    if location_id is not None:
        query = query.filter(models.SerializedUnit.current_location_id == location_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.join(models.Part, models.Part.id == models.SerializedUnit.part_id).filter(
            or_(
                models.SerializedUnit.serial_number.ilike(pattern),
                models.Part.part_number.ilike(pattern),
                models.Part.name.ilike(pattern),
            )
        )
    return query.order_by(models.SerializedUnit.created_at.desc(), models.SerializedUnit.id.desc()).all()


def warranty_status(unit: models.SerializedUnit, today: Optional[date] = None) -> str:
    today = today or date.today()
    if not unit.warranty_end_date:
        return "none"
    if unit.warranty_end_date < today:
        return "expired"
    if unit.warranty_end_date <= today + timedelta(days=WARRANTY_EXPIRING_DAYS):
        return "expiring"
    return "active"


def list_expiring_warranties(
    db: Session,
    *,
    within_days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[models.SerializedUnit]:
    today = today or date.today()
    horizon = today + timedelta(days=WARRANTY_EXPIRING_DAYS if within_days is None else within_days)
    return (
        db.query(models.SerializedUnit)
        .filter(
            models.SerializedUnit.warranty_end_date.isnot(None),
            models.SerializedUnit.warranty_end_date >= today,
            models.SerializedUnit.warranty_end_date <= horizon,
            models.SerializedUnit.status != UnitStatus.RETURNED,
        )
        .order_by(models.SerializedUnit.warranty_end_date.asc())
        .all()
    )
