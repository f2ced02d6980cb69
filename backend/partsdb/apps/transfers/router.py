from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from partsdb.database import get_db
from partsdb.security import Actor, ActorRole, get_current_actor, require_roles

from . import schemas, services

router = APIRouter(
    prefix="/transfers",
    tags=["transfers"],
)

TRANSFER_ROLES = [
    ActorRole.DISPATCHER,
    ActorRole.STOREKEEPER,
    ActorRole.TECHNICIAN,
]


@router.post("/", response_model=schemas.TransferResult, status_code=status.HTTP_201_CREATED)
def transfer_stock(
    payload: schemas.TransferRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*TRANSFER_ROLES)),
):
    movements = services.transfer_stock(
        db,
        part_id=payload.part_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
        serialized_unit_ids=payload.serialized_unit_ids,
        ticket_id=payload.ticket_id,
        notes=payload.notes,
        actor_id=actor.id,
    )
    db.commit()
    for movement in movements:
        db.refresh(movement)
    return schemas.TransferResult(part_id=payload.part_id, quantity=payload.quantity, movements=movements)


@router.get("/ready-for-pickup", response_model=List[schemas.PickList])
def parts_ready_for_pickup(
    technician_id: Optional[str] = None,
    mine: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    if mine or actor.role == ActorRole.TECHNICIAN:
        technician_id = actor.id
    return services.parts_ready_for_pickup(db, technician_id=technician_id)


@router.get("/tickets/{ticket_id}/pick-list", response_model=schemas.PickList)
def pick_list(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.pick_list(db, ticket_id=ticket_id)


@router.post("/tickets/{ticket_id}/pickup", response_model=schemas.PickupResult)
def pickup_parts(
    ticket_id: str,
    payload: Optional[schemas.PickupRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*TRANSFER_ROLES)),
):
    result = services.pickup_parts_for_ticket(
        db,
        ticket_id=ticket_id,
        actor_id=actor.id,
        destination_location_id=payload.destination_location_id if payload else None,
    )
    db.commit()
    return result


@router.post("/tickets/{ticket_id}/release", response_model=schemas.ReleaseResult)
def release_staged_items(
    ticket_id: str,
    payload: schemas.ReleaseRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.DISPATCHER, ActorRole.STOREKEEPER)),
):
    result = services.release_staged_items(
        db,
        ticket_id=ticket_id,
        to_location_id=payload.to_location_id,
        notes=payload.notes,
        actor_id=actor.id,
    )
    db.commit()
    return result
