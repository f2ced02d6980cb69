from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsdb.database import get_db, get_read_db
from partsdb.security import Actor, ActorRole, get_current_actor, require_roles

from . import schemas, services

router = APIRouter(
    prefix="/parts-requests",
    tags=["parts-requests"],
)

QUEUE_ROLES = [
    ActorRole.DISPATCHER,
    ActorRole.BUYER,
]


@router.get("/", response_model=List[schemas.PartsRequestQueueItem])
def list_requests(
    status_filter: str = Query("all", alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*QUEUE_ROLES)),
):
    return services.list_requests(db, status_filter=status_filter)


@router.get("/metrics", response_model=schemas.ProcurementMetrics)
def procurement_metrics(
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(require_roles(*QUEUE_ROLES)),
):
    return services.procurement_metrics(db)


@router.post("/", response_model=schemas.PartsRequestRead, status_code=status.HTTP_201_CREATED)
def create_request(
    payload: schemas.PartsRequestCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    request = services.create_request(db, payload=payload, requester_id=actor.id)
    db.commit()
    db.refresh(request)
    return request


@router.get("/{request_id}", response_model=schemas.PartsRequestRead)
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.get_request(db, request_id)


@router.post("/{request_id}/cancel", response_model=schemas.PartsRequestRead)
def cancel_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*QUEUE_ROLES)),
):
    request = services.cancel_request(db, request_id=request_id, actor_id=actor.id)
    db.commit()
    db.refresh(request)
    return request


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(ActorRole.DISPATCHER)),
):
    services.delete_request(db, request_id=request_id, actor_id=actor.id)
    db.commit()
    return None
