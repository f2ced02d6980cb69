from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsdb.database import get_db
from partsdb.errors import ValidationFailed
from partsdb.security import Actor, ActorRole, get_current_actor, require_roles

from . import models, schemas, services

router = APIRouter(
    prefix="/inventory",
    tags=["inventory"],
)

INVENTORY_WRITE_ROLES = [
    ActorRole.DISPATCHER,
    ActorRole.STOREKEEPER,
]

UNIT_STATUS_ROLES = [
    ActorRole.DISPATCHER,
    ActorRole.STOREKEEPER,
    ActorRole.TECHNICIAN,
]


def _with_warranty(unit: models.SerializedUnit, today: Optional[date] = None) -> schemas.SerializedUnitWithWarranty:
    data = schemas.SerializedUnitRead.model_validate(unit).model_dump()
    return schemas.SerializedUnitWithWarranty(**data, warranty_status=services.warranty_status(unit, today))


# ---------------------------------------------------------------------------
# PARTS
# ---------------------------------------------------------------------------


@router.get("/parts", response_model=List[schemas.PartRead])
def list_parts(
    category: Optional[models.PartCategoryEnum] = None,
    search: Optional[str] = None,
    active_only: bool = True,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.list_parts(db, category=category, search=search, active_only=active_only)


@router.post("/parts", response_model=schemas.PartRead, status_code=status.HTTP_201_CREATED)
def create_part(
    payload: schemas.PartCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.BUYER, *INVENTORY_WRITE_ROLES)),
):
    part = services.create_part(db, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(part)
    return part


@router.get("/parts/{part_id}", response_model=schemas.PartRead)
def get_part(
    part_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.get_part(db, part_id)


@router.patch("/parts/{part_id}", response_model=schemas.PartRead)
def update_part(
    part_id: int,
    payload: schemas.PartUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.BUYER, *INVENTORY_WRITE_ROLES)),
):
    part = services.update_part(db, part_id=part_id, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(part)
    return part


@router.get("/parts/{part_id}/stock", response_model=schemas.PartStockSummary)
def part_stock(
    part_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    part = services.get_part(db, part_id)
    items = services.inventory_by_part(db, part_id=part_id)
    return schemas.PartStockSummary(
        part=schemas.PartRead.model_validate(part),
        locations=items,
        total_quantity=sum(item.quantity for item in items),
    )


# ---------------------------------------------------------------------------
# LOCATIONS
# ---------------------------------------------------------------------------


@router.get("/locations", response_model=List[schemas.StockLocationRead])
def list_locations(
    active_only: bool = True,
    location_type: Optional[models.LocationTypeEnum] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.list_locations(db, active_only=active_only, location_type=location_type)


@router.post("/locations", response_model=schemas.StockLocationRead, status_code=status.HTTP_201_CREATED)
def create_location(
    payload: schemas.StockLocationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    location = services.create_location(db, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(location)
    return location


@router.post("/locations/{location_id}/assignment", response_model=schemas.StockLocationRead)
def assign_vehicle(
    location_id: int,
    payload: schemas.VehicleAssignmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.DISPATCHER)),
):
    location = services.assign_vehicle(
        db,
        location_id=location_id,
        technician_id=payload.technician_id,
        reassign=payload.reassign,
        actor_id=actor.id,
    )
    db.commit()
    db.refresh(location)
    return location


@router.delete("/locations/{location_id}/assignment", response_model=schemas.StockLocationRead)
def unassign_vehicle(
    location_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.DISPATCHER)),
):
    location = services.unassign_vehicle(db, location_id=location_id, actor_id=actor.id)
    db.commit()
    db.refresh(location)
    return location


@router.post("/locations/{location_id}/deactivate", response_model=schemas.StockLocationRead)
def deactivate_location(
    location_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    location = services.deactivate_location(db, location_id=location_id, actor_id=actor.id)
    db.commit()
    db.refresh(location)
    return location


@router.get("/locations/{location_id}/stock", response_model=List[schemas.OnHandItem])
def location_stock(
    location_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.inventory_by_location(db, location_id=location_id)


@router.get("/technicians/{technician_id}/vehicle", response_model=Optional[schemas.StockLocationRead])
def technician_vehicle(
    technician_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.vehicle_for_technician(db, technician_id)


# ---------------------------------------------------------------------------
# LEDGER
# ---------------------------------------------------------------------------


@router.post("/movements", response_model=schemas.MovementRead, status_code=status.HTTP_201_CREATED)
def post_movement(
    payload: schemas.MovementCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*INVENTORY_WRITE_ROLES)),
):
    part = services.get_part(db, payload.part_id)
    if part.is_serialized:
        # Unit locations must stay in step with the ledger.
        raise ValidationFailed(
            "Serialized parts move through the serialized unit endpoints.",
            field="part_id",
        )
    movement = services.post_movement(
        db,
        movement_type=payload.movement_type,
        part_id=payload.part_id,
        quantity=payload.quantity,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        ticket_id=payload.ticket_id,
        notes=payload.notes,
        actor_id=actor.id,
    )
    db.commit()
    db.refresh(movement)
    return movement


@router.get("/movements", response_model=List[schemas.MovementRead])
def list_movements(
    part_id: Optional[int] = None,
    location_id: Optional[int] = None,
    movement_type: Optional[models.MovementTypeEnum] = None,
    ticket_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.history(
        db,
        part_id=part_id,
        location_id=location_id,
        movement_type=movement_type,
        ticket_id=ticket_id,
        skip=skip,
        limit=limit,
    )


@router.get("/on-hand", response_model=schemas.QuantityAtRead)
def quantity_at(
    part_id: int,
    location_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return schemas.QuantityAtRead(
        part_id=part_id,
        location_id=location_id,
        quantity=services.quantity_at(db, part_id=part_id, location_id=location_id),
    )


@router.post("/balances/recalculate", response_model=schemas.RecalculateResult)
def recalculate_balances(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.ADMIN)),
):
    corrected = services.recalculate_balances(db)
    db.commit()
    return schemas.RecalculateResult(corrected_rows=corrected)


# ---------------------------------------------------------------------------
# SERIALIZED UNITS
# ---------------------------------------------------------------------------


@router.get("/units", response_model=List[schemas.SerializedUnitWithWarranty])
def list_units(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    part_id: Optional[int] = None,
    location_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    units = services.list_units(
        db,
        status=status_filter,
        search=search,
        part_id=part_id,
        location_id=location_id,
    )
    return [_with_warranty(unit) for unit in units]


@router.get("/units/expiring-warranties", response_model=List[schemas.SerializedUnitWithWarranty])
def list_expiring_warranties(
    within_days: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return [_with_warranty(unit) for unit in services.list_expiring_warranties(db, within_days=within_days)]


@router.get("/units/{unit_id}", response_model=schemas.SerializedUnitWithWarranty)
def get_unit(
    unit_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return _with_warranty(services.get_unit(db, unit_id))


@router.post("/units/{unit_id}/status", response_model=schemas.SerializedUnitWithWarranty)
def set_unit_status(
    unit_id: int,
    payload: schemas.UnitStatusChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*UNIT_STATUS_ROLES)),
):
    unit = services.set_unit_status(
        db,
        unit_id=unit_id,
        new_status=payload.status,
        equipment_id=payload.equipment_id,
        location_id=payload.location_id,
        notes=payload.notes,
        actor_id=actor.id,
    )
    db.commit()
    db.refresh(unit)
    return _with_warranty(unit)


@router.post("/units/{unit_id}/relocate", response_model=schemas.MovementRead, status_code=status.HTTP_201_CREATED)
def relocate_unit(
    unit_id: int,
    payload: schemas.UnitRelocateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*UNIT_STATUS_ROLES)),
):
    movement = services.relocate_unit(
        db,
        unit_id=unit_id,
        to_location_id=payload.to_location_id,
        ticket_id=payload.ticket_id,
        notes=payload.notes,
        actor_id=actor.id,
    )
    db.commit()
    db.refresh(movement)
    return movement
