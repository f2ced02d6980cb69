from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import os
from typing import List, Optional

from sqlalchemy.orm import Session

from partsdb.apps.audit import services as audit_services
from partsdb.apps.inventory import services as inventory_services
from partsdb.apps.purchasing import models as purchasing_models
from partsdb.apps.workflow import transition_or_conflict
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

from . import models, schemas

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

REQUEST_SLA_DAYS = int(os.getenv("REQUEST_SLA_DAYS", "5"))
METRICS_PERIOD_DAYS = int(os.getenv("METRICS_PERIOD_DAYS", "7"))

RequestStatus = models.RequestStatusEnum

QUEUE_FILTERS = {"all", "open", "ordered", "received", "cancelled"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_waiting(request: models.PartsRequest, now: Optional[datetime] = None) -> int:
    if request.status != RequestStatus.OPEN:
        return 0
    now = _as_utc(now) or _utcnow()
    return max(0, (now - _as_utc(request.requested_at)).days)


def _queue_item(request: models.PartsRequest, now: datetime) -> schemas.PartsRequestQueueItem:
    waiting = days_waiting(request, now)
    data = schemas.PartsRequestRead.model_validate(request).model_dump()
    return schemas.PartsRequestQueueItem(
        **data,
        days_waiting=waiting,
        sla_breached=request.status == RequestStatus.OPEN and waiting > REQUEST_SLA_DAYS,
    )


def get_request(db: Session, request_id: int) -> models.PartsRequest:
    request = db.query(models.PartsRequest).filter(models.PartsRequest.id == request_id).first()
    if not request:
        raise NotFoundError(f"Parts request {request_id} not found.", field="request_id")
    return request


def list_requests(
    db: Session,
    *,
    status_filter: str = "all",
    now: Optional[datetime] = None,
) -> List[schemas.PartsRequestQueueItem]:
    status_filter = (status_filter or "all").lower()
    if status_filter not in QUEUE_FILTERS:
        raise ValidationFailed(f"Unknown queue filter {status_filter!r}.", field="status")
    query = db.query(models.PartsRequest)
    if status_filter != "all":
        query = query.filter(models.PartsRequest.status == RequestStatus(status_filter))
    now = now or _utcnow()
    requests = query.order_by(models.PartsRequest.requested_at.asc(), models.PartsRequest.id.asc()).all()
    return [_queue_item(request, now) for request in requests]


def create_request(
    db: Session,
    *,
    payload: schemas.PartsRequestCreate,
    requester_id: str,
) -> models.PartsRequest:
    if not (payload.ticket_id or "").strip():
        raise ValidationFailed("ticket_id is required.", field="ticket_id")
    if not payload.items:
        raise ValidationFailed("A parts request needs at least one item.", field="items")
    for index, item in enumerate(payload.items):
        if item.quantity <= 0:
            raise ValidationFailed(
                f"Item {index + 1}: quantity must be greater than zero.",
                field=f"items[{index}].quantity",
            )
        inventory_services.get_part(db, item.part_id)

    request = models.PartsRequest(
        ticket_id=payload.ticket_id.strip(),
        requester_id=requester_id,
        assigned_technician_id=payload.assigned_technician_id or requester_id,
        urgency=payload.urgency,
        status=RequestStatus.OPEN,
        notes=payload.notes,
        requested_at=_utcnow(),
    )
    request.lines = [
        models.PartsRequestLine(part_id=item.part_id, quantity_requested=item.quantity, note=item.note)
        for item in payload.items
    ]
    db.add(request)
    db.flush()
    audit_services.log_event(
        db,
        actor_id=requester_id,
        entity_type="parts_request",
        entity_id=str(request.id),
        action="create",
        after={
            "ticket_id": request.ticket_id,
            "urgency": request.urgency.value,
            "items": len(request.lines),
        },
    )
    return request


def _transition(
    db: Session,
    request: models.PartsRequest,
    to_status: models.RequestStatusEnum,
    *,
    actor_id: Optional[str],
    extra: Optional[dict] = None,
) -> None:
    transition_or_conflict(
        db,
        actor_id=actor_id,
        entity_type="parts_request",
        entity_id=str(request.id),
        from_state=request.status.value,
        to_state=to_status.value,
        before_obj={"purchase_order_id": request.purchase_order_id},
        after_obj=dict(extra or {}, purchase_order_id=request.purchase_order_id),
    )
    request.status = to_status


def link_to_po(
    db: Session,
    *,
    request_id: int,
    purchase_order_id: int,
    actor_id: Optional[str],
) -> models.PartsRequest:
    """
    Record that a PO fulfils this request. Safe to call repeatedly; the
    status only ever moves forward.
    """
    request = get_request(db, request_id)
    if request.status == RequestStatus.CANCELLED:
        raise ConflictError(f"Parts request {request.id} is cancelled.", field="parts_request_id")
    if request.purchase_order_id is None:
        request.purchase_order_id = purchase_order_id
    if request.status == RequestStatus.OPEN:
        _transition(db, request, RequestStatus.ORDERED, actor_id=actor_id)
        request.ordered_at = _utcnow()
    db.add(request)
    db.flush()
    return request


def mark_received_if_complete(db: Session, *, request_id: int, actor_id: Optional[str]) -> bool:
    request = get_request(db, request_id)
    if request.status != RequestStatus.ORDERED:
        return False
    lines = (
        db.query(purchasing_models.PurchaseOrderLine)
        .join(
            purchasing_models.PurchaseOrder,
            purchasing_models.PurchaseOrder.id == purchasing_models.PurchaseOrderLine.purchase_order_id,
        )
        .filter(
            purchasing_models.PurchaseOrderLine.parts_request_id == request.id,
            purchasing_models.PurchaseOrder.status != purchasing_models.PurchaseOrderStatusEnum.CANCELLED,
        )
        .all()
    )
    if not lines:
        return False
    if any(line.quantity_received < line.quantity_ordered for line in lines):
        return False
    _transition(db, request, RequestStatus.RECEIVED, actor_id=actor_id)
    request.received_at = _utcnow()
    db.add(request)
    db.flush()
    return True


def cancel_request(db: Session, *, request_id: int, actor_id: Optional[str]) -> models.PartsRequest:
    request = get_request(db, request_id)
    _transition(db, request, RequestStatus.CANCELLED, actor_id=actor_id)
    request.cancelled_at = _utcnow()
    db.add(request)
    db.flush()
    return request


def delete_request(db: Session, *, request_id: int, actor_id: Optional[str]) -> None:
    request = get_request(db, request_id)
    linked = (
        db.query(purchasing_models.PurchaseOrderLine.id)
        .filter(purchasing_models.PurchaseOrderLine.parts_request_id == request.id)
        .first()
    )
    if linked or request.purchase_order_id is not None:
        raise ConflictError(
            f"Parts request {request.id} is linked to a purchase order; cancel it instead.",
            field="request_id",
        )
    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="parts_request",
        entity_id=str(request.id),
        action="delete",
        before={"ticket_id": request.ticket_id, "status": request.status.value},
    )
    db.delete(request)
    db.flush()


def procurement_metrics(db: Session, *, now: Optional[datetime] = None) -> schemas.ProcurementMetrics:
    now = _as_utc(now) or _utcnow()
    period_start = now - timedelta(days=METRICS_PERIOD_DAYS)

    requests = db.query(models.PartsRequest).all()
    open_requests = [r for r in requests if r.status == RequestStatus.OPEN]
    ordered = [r for r in requests if r.status == RequestStatus.ORDERED]
    received = [r for r in requests if r.status == RequestStatus.RECEIVED and r.received_at is not None]

    fulfil_days = [
        (_as_utc(r.received_at) - _as_utc(r.requested_at)).total_seconds() / 86400.0 for r in received
    ]
    by_urgency = {urgency.value: 0 for urgency in models.RequestUrgencyEnum}
    for request in open_requests:
        by_urgency[request.urgency.value] += 1

    return schemas.ProcurementMetrics(
        pending_requests=len(open_requests),
        ordered_requests=len(ordered),
        received_this_period=sum(1 for r in received if _as_utc(r.received_at) >= period_start),
        avg_days_to_fulfill=round(sum(fulfil_days) / len(fulfil_days), 1) if fulfil_days else 0.0,
        sla_breaches=sum(1 for r in open_requests if days_waiting(r, now) > REQUEST_SLA_DAYS),
        requests_by_urgency=by_urgency,
        period_days=METRICS_PERIOD_DAYS,
        sla_days=REQUEST_SLA_DAYS,
    )
