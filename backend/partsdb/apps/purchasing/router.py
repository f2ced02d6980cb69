from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsdb.database import get_db
from partsdb.security import Actor, ActorRole, get_current_actor, require_roles

from . import models, schemas, services

router = APIRouter(
    prefix="/purchasing",
    tags=["purchasing"],
)

PURCHASING_ROLES = [
    ActorRole.BUYER,
    ActorRole.DISPATCHER,
]

RECEIVING_ROLES = [
    ActorRole.BUYER,
    ActorRole.DISPATCHER,
    ActorRole.STOREKEEPER,
]


# ---------------------------------------------------------------------------
# VENDORS
# ---------------------------------------------------------------------------


@router.get("/vendors", response_model=List[schemas.VendorRead])
def list_vendors(
    active_only: bool = True,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.list_vendors(db, active_only=active_only)


@router.post("/vendors", response_model=schemas.VendorRead, status_code=status.HTTP_201_CREATED)
def create_vendor(
    payload: schemas.VendorCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    vendor = services.create_vendor(db, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(vendor)
    return vendor


# ---------------------------------------------------------------------------
# PURCHASE ORDERS
# ---------------------------------------------------------------------------


@router.get("/orders", response_model=List[schemas.PurchaseOrderRead])
def list_purchase_orders(
    status_filter: Optional[models.PurchaseOrderStatusEnum] = Query(None, alias="status"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.list_purchase_orders(db, status=status_filter, search=search)


@router.post("/orders", response_model=schemas.PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    payload: schemas.PurchaseOrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.create_purchase_order(db, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.post("/orders/from-requests", response_model=schemas.PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
def create_purchase_order_from_requests(
    payload: schemas.PurchaseOrderFromRequests,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.create_purchase_order_from_requests(db, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.get("/orders/{po_id}", response_model=schemas.PurchaseOrderRead)
def get_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.get_purchase_order(db, po_id)


@router.patch("/orders/{po_id}", response_model=schemas.PurchaseOrderRead)
def update_purchase_order(
    po_id: int,
    payload: schemas.PurchaseOrderHeaderUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.update_header(db, po_id=po_id, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.post("/orders/{po_id}/lines", response_model=schemas.PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
def add_line(
    po_id: int,
    payload: schemas.PurchaseOrderLineCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.add_line(db, po_id=po_id, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.patch("/orders/{po_id}/lines/{line_id}", response_model=schemas.PurchaseOrderRead)
def update_line(
    po_id: int,
    line_id: int,
    payload: schemas.PurchaseOrderLineUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.update_line(db, po_id=po_id, line_id=line_id, payload=payload, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.delete("/orders/{po_id}/lines/{line_id}", response_model=schemas.PurchaseOrderRead)
def remove_line(
    po_id: int,
    line_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.remove_line(db, po_id=po_id, line_id=line_id, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.post("/orders/{po_id}/transition", response_model=schemas.PurchaseOrderRead)
def transition_purchase_order(
    po_id: int,
    payload: schemas.PurchaseOrderTransition,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*PURCHASING_ROLES)),
):
    po = services.transition_purchase_order(db, po_id=po_id, to_status=payload.status, actor_id=actor.id)
    db.commit()
    db.refresh(po)
    return po


@router.post("/orders/{po_id}/receive", response_model=schemas.ReceiveResult)
def receive_purchase_order(
    po_id: int,
    payload: schemas.ReceivePurchaseOrder,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*RECEIVING_ROLES)),
):
    result = services.receive_purchase_order(db, po_id=po_id, payload=payload, actor_id=actor.id)
    db.commit()
    return result
