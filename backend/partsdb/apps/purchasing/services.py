from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import logging
import os
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from partsdb.apps.audit import services as audit_services
from partsdb.apps.events.broker import EventEnvelope, publish_on_commit
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import services as inventory_services
from partsdb.apps.parts_requests import models as request_models
from partsdb.apps.parts_requests import services as request_services
from partsdb.apps.transfers import services as transfer_services
from partsdb.apps.workflow import can_transition, transition_or_conflict
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed
from partsdb.utils.identifiers import generate_document_number, generate_uuid7

from . import models, schemas

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

PO_TAX_RATE = Decimal(os.getenv("PO_TAX_RATE", "0.08"))

POStatus = models.PurchaseOrderStatusEnum
TWO_PLACES = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# VENDORS
# ---------------------------------------------------------------------------


def get_vendor(db: Session, vendor_id: int) -> models.Vendor:
    vendor = db.query(models.Vendor).filter(models.Vendor.id == vendor_id).first()
    if not vendor or not vendor.is_active:
        raise NotFoundError(f"Vendor {vendor_id} not found.", field="vendor_id")
    return vendor


def create_vendor(db: Session, *, payload: schemas.VendorCreate, actor_id: Optional[str]) -> models.Vendor:
    code = (payload.code or "").strip().upper()
    if not code:
        raise ValidationFailed("Vendor code is required.", field="code")
    if not (payload.name or "").strip():
        raise ValidationFailed("Vendor name is required.", field="name")
    if db.query(models.Vendor).filter(models.Vendor.code == code).first():
        raise ConflictError(f"Vendor code {code} already exists.", field="code")
    vendor = models.Vendor(
        code=code,
        name=payload.name.strip(),
        contact_email=payload.contact_email,
        phone=payload.phone,
        is_active=True,
    )
    db.add(vendor)
    db.flush()
    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="vendor",
        entity_id=str(vendor.id),
        action="create",
        after={"code": vendor.code, "name": vendor.name},
    )
    return vendor


def list_vendors(db: Session, *, active_only: bool = True) -> List[models.Vendor]:
    query = db.query(models.Vendor)
    if active_only:
        query = query.filter(models.Vendor.is_active.is_(True))
    return query.order_by(models.Vendor.name.asc()).all()


# ---------------------------------------------------------------------------
# PURCHASE ORDERS
# ---------------------------------------------------------------------------


def _generate_po_number(db: Session) -> str:
    for _ in range(20):
        candidate = generate_document_number("PO")
        exists = db.query(models.PurchaseOrder.id).filter(models.PurchaseOrder.po_number == candidate).first()
        if not exists:
            return candidate
    raise ConflictError("Could not allocate a unique purchase order number.", field="po_number")


def recompute_totals(po: models.PurchaseOrder) -> None:
    """subtotal = sum of line totals; total = subtotal + tax + shipping."""
    subtotal = Decimal("0.00")
    for line in po.lines:
        line.line_total = _money(Decimal(line.quantity_ordered) * Decimal(str(line.unit_price or 0)))
        subtotal += line.line_total
    po.subtotal = _money(subtotal)
    po.tax_amount = _money(po.subtotal * Decimal(str(po.tax_rate or 0)))
    po.shipping_amount = _money(po.shipping_amount)
    po.total = po.subtotal + po.tax_amount + po.shipping_amount


def _build_line(
    db: Session,
    payload: schemas.PurchaseOrderLineCreate,
    *,
    index: int,
) -> models.PurchaseOrderLine:
    if payload.quantity_ordered is None or payload.quantity_ordered <= 0:
        raise ValidationFailed(
            f"Line {index + 1}: quantity must be greater than zero.",
            field=f"lines[{index}].quantity_ordered",
        )
    part = inventory_services.get_part(db, payload.part_id)
    if not part.is_active:
        raise NotFoundError(f"Part {part.part_number} is inactive.", field=f"lines[{index}].part_id")

    request_id = payload.parts_request_id
    if payload.parts_request_line_id is not None:
        request_line = (
            db.query(request_models.PartsRequestLine)
            .filter(request_models.PartsRequestLine.id == payload.parts_request_line_id)
            .first()
        )
        if not request_line:
            raise NotFoundError(
                f"Parts request line {payload.parts_request_line_id} not found.",
                field=f"lines[{index}].parts_request_line_id",
            )
        if request_id is not None and request_id != request_line.parts_request_id:
            raise ValidationFailed(
                f"Line {index + 1}: request line does not belong to request {request_id}.",
                field=f"lines[{index}].parts_request_line_id",
            )
        if request_line.part_id != part.id:
            raise ValidationFailed(
                f"Line {index + 1}: part differs from the requested part.",
                field=f"lines[{index}].part_id",
            )
        request_id = request_line.parts_request_id

    request = request_services.get_request(db, request_id) if request_id is not None else None
    if request is not None and request.status == request_models.RequestStatusEnum.CANCELLED:
        raise ConflictError(
            f"Parts request {request.id} is cancelled.",
            field=f"lines[{index}].parts_request_id",
        )

    return models.PurchaseOrderLine(
        part_id=part.id,
        description=payload.description or part.name,
        quantity_ordered=payload.quantity_ordered,
        quantity_received=0,
        quantity_damaged=0,
        unit_price=_money(payload.unit_price if payload.unit_price is not None else part.unit_cost),
        ticket_id=payload.ticket_id or (request.ticket_id if request else None),
        parts_request_id=request_id,
        parts_request_line_id=payload.parts_request_line_id,
    )


def _link_requests(
    db: Session,
    po: models.PurchaseOrder,
    *,
    actor_id: Optional[str],
    skip_cancelled: bool = False,
) -> None:
    request_ids = sorted({line.parts_request_id for line in po.lines if line.parts_request_id})
    for request_id in request_ids:
        if skip_cancelled:
            request = request_services.get_request(db, request_id)
            if request.status == request_models.RequestStatusEnum.CANCELLED:
                continue
        request_services.link_to_po(db, request_id=request_id, purchase_order_id=po.id, actor_id=actor_id)


def _check_dates(order_date: Optional[date], expected_delivery_date: Optional[date]) -> None:
    if order_date and expected_delivery_date and expected_delivery_date < order_date:
        raise ValidationFailed(
            "Expected delivery date cannot be before the order date.",
            field="expected_delivery_date",
        )


def create_purchase_order(
    db: Session,
    *,
    payload: schemas.PurchaseOrderCreate,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    if payload.vendor_id is None:
        raise ValidationFailed("A vendor is required.", field="vendor_id")
    vendor = get_vendor(db, payload.vendor_id)
    order_date = payload.order_date or date.today()
    _check_dates(order_date, payload.expected_delivery_date)

    lines = [_build_line(db, line, index=index) for index, line in enumerate(payload.lines)]

    po = models.PurchaseOrder(
        po_number=_generate_po_number(db),
        vendor_id=vendor.id,
        order_date=order_date,
        expected_delivery_date=payload.expected_delivery_date,
        source=payload.source,
        status=POStatus.DRAFT,
        tax_rate=payload.tax_rate if payload.tax_rate is not None else PO_TAX_RATE,
        shipping_amount=payload.shipping_amount,
        notes=payload.notes,
        created_by_id=actor_id,
    )
    po.lines = lines
    recompute_totals(po)
    db.add(po)
    db.flush()

    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="purchase_order",
        entity_id=str(po.id),
        action="create",
        after={"po_number": po.po_number, "vendor_id": po.vendor_id, "total": str(po.total)},
    )
    _link_requests(db, po, actor_id=actor_id)
    return po


def create_purchase_order_from_requests(
    db: Session,
    *,
    payload: schemas.PurchaseOrderFromRequests,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    """
    Consolidate open parts requests into one draft PO, one line per request
    line at the catalog price.
    """
    if not payload.request_ids:
        raise ValidationFailed("Select at least one parts request.", field="request_ids")

    lines: List[schemas.PurchaseOrderLineCreate] = []
    for request_id in dict.fromkeys(payload.request_ids):
        request = request_services.get_request(db, request_id)
        if request.status != request_models.RequestStatusEnum.OPEN:
            raise ConflictError(
                f"Parts request {request.id} is {request.status.value}; only open requests can be ordered.",
                field="request_ids",
            )
        for request_line in request.lines:
            lines.append(
                schemas.PurchaseOrderLineCreate(
                    part_id=request_line.part_id,
                    quantity_ordered=request_line.quantity_requested,
                    unit_price=request_line.part.unit_cost,
                    ticket_id=request.ticket_id,
                    parts_request_id=request.id,
                    parts_request_line_id=request_line.id,
                )
            )

    header = payload.model_dump(exclude={"request_ids"})
    return create_purchase_order(
        db,
        payload=schemas.PurchaseOrderCreate(**header, lines=lines),
        actor_id=actor_id,
    )


def get_purchase_order(db: Session, po_id: int, *, lock: bool = False) -> models.PurchaseOrder:
    query = db.query(models.PurchaseOrder).filter(models.PurchaseOrder.id == po_id)
    if lock:
        query = query.with_for_update(of=models.PurchaseOrder)
    po = query.first()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found.", field="purchase_order_id")
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: Optional[models.PurchaseOrderStatusEnum] = None,
    search: Optional[str] = None,
) -> List[models.PurchaseOrder]:
    query = db.query(models.PurchaseOrder).join(models.Vendor, models.Vendor.id == models.PurchaseOrder.vendor_id)
    if status:
        query = query.filter(models.PurchaseOrder.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(models.PurchaseOrder.po_number.ilike(pattern), models.Vendor.name.ilike(pattern)))
    return query.order_by(models.PurchaseOrder.created_at.desc(), models.PurchaseOrder.id.desc()).all()


def _get_draft(db: Session, po_id: int) -> models.PurchaseOrder:
    po = get_purchase_order(db, po_id, lock=True)
    if po.status != POStatus.DRAFT:
        raise ConflictError(
            f"Purchase order {po.po_number} is {po.status.value}; only drafts can be edited.",
            field="status",
        )
    return po


def _find_line(po: models.PurchaseOrder, line_id: int) -> models.PurchaseOrderLine:
    for line in po.lines:
        if line.id == line_id:
            return line
    raise NotFoundError(f"Line {line_id} is not on purchase order {po.po_number}.", field="line_id", line_id=line_id)


def _audit_po_change(db: Session, po: models.PurchaseOrder, action: str, actor_id: Optional[str], **extra) -> None:
    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="purchase_order",
        entity_id=str(po.id),
        action=action,
        after=dict(extra, subtotal=str(po.subtotal), total=str(po.total)),
    )


def add_line(
    db: Session,
    *,
    po_id: int,
    payload: schemas.PurchaseOrderLineCreate,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    po = _get_draft(db, po_id)
    line = _build_line(db, payload, index=len(po.lines))
    po.lines.append(line)
    recompute_totals(po)
    db.add(po)
    db.flush()
    _audit_po_change(db, po, "add_line", actor_id, line_id=line.id)
    _link_requests(db, po, actor_id=actor_id)
    return po


def update_line(
    db: Session,
    *,
    po_id: int,
    line_id: int,
    payload: schemas.PurchaseOrderLineUpdate,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    po = _get_draft(db, po_id)
    line = _find_line(po, line_id)
    changes = payload.model_dump(exclude_unset=True)
    if "quantity_ordered" in changes:
        quantity = changes["quantity_ordered"]
        if quantity is None or quantity <= 0:
            raise ValidationFailed("Quantity must be greater than zero.", field="quantity_ordered", line_id=line.id)
        line.quantity_ordered = quantity
    if changes.get("unit_price") is not None:
        line.unit_price = _money(changes["unit_price"])
    if "description" in changes:
        line.description = changes["description"] or line.part.name
    if "ticket_id" in changes:
        line.ticket_id = changes["ticket_id"]
    recompute_totals(po)
    db.add(po)
    db.flush()
    _audit_po_change(db, po, "update_line", actor_id, line_id=line.id)
    return po


def remove_line(db: Session, *, po_id: int, line_id: int, actor_id: Optional[str]) -> models.PurchaseOrder:
    po = _get_draft(db, po_id)
    line = _find_line(po, line_id)
    po.lines.remove(line)
    recompute_totals(po)
    db.add(po)
    db.flush()
    _audit_po_change(db, po, "remove_line", actor_id, line_id=line_id)
    return po


def update_header(
    db: Session,
    *,
    po_id: int,
    payload: schemas.PurchaseOrderHeaderUpdate,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    po = _get_draft(db, po_id)
    changes = payload.model_dump(exclude_unset=True)
    if "vendor_id" in changes:
        if changes["vendor_id"] is None:
            raise ValidationFailed("A vendor is required.", field="vendor_id")
        po.vendor_id = get_vendor(db, changes["vendor_id"]).id
    if changes.get("order_date") is not None:
        po.order_date = changes["order_date"]
    if "expected_delivery_date" in changes:
        po.expected_delivery_date = changes["expected_delivery_date"]
    _check_dates(po.order_date, po.expected_delivery_date)
    if changes.get("source") is not None:
        po.source = changes["source"]
    if changes.get("shipping_amount") is not None:
        po.shipping_amount = changes["shipping_amount"]
    if changes.get("tax_rate") is not None:
        po.tax_rate = changes["tax_rate"]
    if "notes" in changes:
        po.notes = changes["notes"]
    recompute_totals(po)
    db.add(po)
    db.flush()
    _audit_po_change(db, po, "update_header", actor_id)
    return po


def transition_purchase_order(
    db: Session,
    *,
    po_id: int,
    to_status: models.PurchaseOrderStatusEnum,
    actor_id: Optional[str],
) -> models.PurchaseOrder:
    po = get_purchase_order(db, po_id, lock=True)
    to_status = models.PurchaseOrderStatusEnum(to_status)
    from_status = po.status
    now = _utcnow()

    if can_transition("purchase_order", from_status.value, to_status.value):
        if to_status == POStatus.RECEIVED and any(line.quantity_remaining for line in po.lines):
            raise ValidationFailed(
                f"Purchase order {po.po_number} still has quantities to receive.",
                field="status",
            )
        if to_status == POStatus.PARTIAL and not any(line.quantity_received for line in po.lines):
            raise ValidationFailed(
                f"Nothing has been received on purchase order {po.po_number}.",
                field="status",
            )

    after = {"vendor_id": po.vendor_id, "line_count": len(po.lines), "po_number": po.po_number}
    if to_status == POStatus.APPROVED:
        after.update({"approved_by_id": actor_id, "approved_at": now.isoformat()})
    transition_or_conflict(
        db,
        actor_id=actor_id,
        entity_type="purchase_order",
        entity_id=str(po.id),
        from_state=from_status.value,
        to_state=to_status.value,
        before_obj={"po_number": po.po_number},
        after_obj=after,
    )

    po.status = to_status
    if to_status == POStatus.APPROVED:
        po.approved_by_id = actor_id
        po.approved_at = now
    elif to_status == POStatus.RECEIVED:
        po.received_at = now
    elif to_status == POStatus.PARTIAL:
        po.received_at = None
    db.add(po)
    db.flush()

    if to_status in {POStatus.SUBMITTED, POStatus.APPROVED}:
        _link_requests(db, po, actor_id=actor_id, skip_cancelled=True)
    return po


# ---------------------------------------------------------------------------
# RECEIVING
# ---------------------------------------------------------------------------


@dataclass
class _ReceivePlan:
    line: models.PurchaseOrderLine
    quantity: int
    damaged: int
    location: Optional[inventory_models.StockLocation] = None
    staging: Optional[inventory_models.StockLocation] = None
    serials: List[str] = field(default_factory=list)
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None

    @property
    def target(self) -> Optional[inventory_models.StockLocation]:
        return self.staging or self.location


def _plan_receipt(
    db: Session,
    po: models.PurchaseOrder,
    lines_by_id: Dict[int, models.PurchaseOrderLine],
    entries: List[schemas.ReceiveLine],
) -> List[_ReceivePlan]:
    plans: List[_ReceivePlan] = []
    seen_lines = set()
    serials_in_pass: Dict[int, set] = {}

    for entry in entries:
        line = lines_by_id.get(entry.line_id)
        if line is None:
            raise NotFoundError(
                f"Line {entry.line_id} is not on purchase order {po.po_number}.",
                field="line_id",
                line_id=entry.line_id,
            )
        if line.id in seen_lines:
            raise ValidationFailed("Line appears more than once in this receipt.", field="line_id", line_id=line.id)
        seen_lines.add(line.id)

        # Excess is clamped, not rejected.
        quantity = max(0, min(entry.quantity_received or 0, line.quantity_remaining))
        damaged = max(0, min(entry.quantity_damaged or 0, quantity))
        plan = _ReceivePlan(
            line=line,
            quantity=quantity,
            damaged=damaged,
            warranty_start_date=entry.warranty_start_date,
            warranty_end_date=entry.warranty_end_date,
        )
        plans.append(plan)
        if quantity == 0:
            continue

        if entry.location_id is None:
            raise ValidationFailed(
                f"Line {line.id} ({line.part.part_number}): choose a stock location.",
                field="location_id",
                line_id=line.id,
            )
        plan.location = inventory_services.get_active_location(db, entry.location_id)
        if line.ticket_id:
            plan.staging = transfer_services.resolve_staging_location(db, plan.location.id)

        if (
            entry.warranty_start_date
            and entry.warranty_end_date
            and entry.warranty_end_date < entry.warranty_start_date
        ):
            raise ValidationFailed(
                f"Line {line.id}: warranty end precedes warranty start.",
                field="warranty_end_date",
                line_id=line.id,
            )

        if line.part.is_serialized:
            serials = [(serial or "").strip() for serial in entry.serial_numbers]
            if any(not serial for serial in serials):
                raise ValidationFailed(
                    f"Line {line.id}: serial numbers cannot be blank.",
                    field="serial_numbers",
                    line_id=line.id,
                )
            if len(serials) != quantity:
                raise ValidationFailed(
                    f"Line {line.id} ({line.part.part_number}): {quantity} serial numbers required, "
                    f"{len(serials)} supplied.",
                    field="serial_numbers",
                    line_id=line.id,
                )
            used = serials_in_pass.setdefault(line.part_id, set())
            if len(set(serials)) != len(serials) or used.intersection(serials):
                raise ValidationFailed(
                    f"Line {line.id}: serial numbers must be unique.",
                    field="serial_numbers",
                    line_id=line.id,
                )
            known = inventory_services.existing_serials(db, part_id=line.part_id, serial_numbers=serials)
            if known:
                raise ValidationFailed(
                    f"Line {line.id}: serial numbers already recorded: {', '.join(sorted(known))}.",
                    field="serial_numbers",
                    line_id=line.id,
                )
            used.update(serials)
            plan.serials = serials
    return plans


def _assigned_technician(db: Session, line: models.PurchaseOrderLine) -> Optional[str]:
    if line.parts_request_id is None:
        return None
    return request_services.get_request(db, line.parts_request_id).assigned_technician_id


def receive_purchase_order(
    db: Session,
    *,
    po_id: int,
    payload: schemas.ReceivePurchaseOrder,
    actor_id: Optional[str],
) -> schemas.ReceiveResult:
    """
    Apply one receiving pass to an approved or partially received PO.

    Quantities are clamped to what is still outstanding on each line, read
    under a row lock. Every line is validated before anything is written, so
    a rejected pass leaves counters, units and stock untouched.
    """
    po = get_purchase_order(db, po_id, lock=True)
    if po.status not in models.RECEIVABLE_STATUSES:
        raise ConflictError(
            f"Purchase order {po.po_number} is {po.status.value}; only approved or partial orders can be received.",
            field="status",
        )
    if not payload.lines:
        raise ValidationFailed("No lines to receive.", field="lines")

    locked_lines = (
        db.query(models.PurchaseOrderLine)
        .filter(models.PurchaseOrderLine.purchase_order_id == po.id)
        .with_for_update(of=models.PurchaseOrderLine)
        .populate_existing()
        .all()
    )
    lines_by_id = {line.id: line for line in locked_lines}

    plans = _plan_receipt(db, po, lines_by_id, payload.lines)
    units_received = sum(plan.quantity for plan in plans)
    if units_received == 0:
        raise ValidationFailed(
            f"Nothing left to receive on purchase order {po.po_number} for the lines given.",
            field="quantity_received",
        )

    received_on = date.today()
    unit_ids: List[int] = []
    staged_ids: List[int] = []
    for plan in plans:
        if plan.quantity == 0:
            continue
        line = plan.line
        target = plan.target
        technician_id = _assigned_technician(db, line) if line.ticket_id else None

        if line.part.is_serialized:
            for serial in plan.serials:
                unit = inventory_services.create_serialized_unit(
                    db,
                    part=line.part,
                    serial_number=serial,
                    location_id=target.id,
                    unit_cost=line.unit_price,
                    vendor_id=po.vendor_id,
                    purchase_order_id=po.id,
                    purchase_order_line_id=line.id,
                    ticket_id=line.ticket_id,
                    received_date=received_on,
                    warranty_start_date=plan.warranty_start_date,
                    warranty_end_date=plan.warranty_end_date,
                )
                unit_ids.append(unit.id)
                inventory_services.post_movement(
                    db,
                    movement_type=inventory_models.MovementTypeEnum.RECEIPT,
                    part_id=line.part_id,
                    quantity=1,
                    to_location_id=target.id,
                    serialized_unit_id=unit.id,
                    purchase_order_line_id=line.id,
                    ticket_id=line.ticket_id,
                    notes=f"Received on {po.po_number}",
                    actor_id=actor_id,
                )
                if line.ticket_id:
                    staged = transfer_services.stage_for_ticket(
                        db,
                        ticket_id=line.ticket_id,
                        part_id=line.part_id,
                        quantity=1,
                        staging_location_id=target.id,
                        purchase_order_line_id=line.id,
                        parts_request_id=line.parts_request_id,
                        serialized_unit_id=unit.id,
                        assigned_technician_id=technician_id,
                    )
                    staged_ids.append(staged.id)
        else:
            inventory_services.post_movement(
                db,
                movement_type=inventory_models.MovementTypeEnum.RECEIPT,
                part_id=line.part_id,
                quantity=plan.quantity,
                to_location_id=target.id,
                purchase_order_line_id=line.id,
                ticket_id=line.ticket_id,
                notes=f"Received on {po.po_number}",
                actor_id=actor_id,
            )
            if line.ticket_id:
                staged = transfer_services.stage_for_ticket(
                    db,
                    ticket_id=line.ticket_id,
                    part_id=line.part_id,
                    quantity=plan.quantity,
                    staging_location_id=target.id,
                    purchase_order_line_id=line.id,
                    parts_request_id=line.parts_request_id,
                    assigned_technician_id=technician_id,
                )
                staged_ids.append(staged.id)

        line.quantity_received = line.quantity_received + plan.quantity
        line.quantity_damaged = line.quantity_damaged + plan.damaged
        db.add(line)
    db.flush()

    all_lines = list(lines_by_id.values())
    from_status = po.status
    if all(line.quantity_remaining == 0 for line in all_lines):
        to_status = POStatus.RECEIVED
    else:
        to_status = POStatus.PARTIAL
    if to_status != from_status:
        transition_or_conflict(
            db,
            actor_id=actor_id,
            entity_type="purchase_order",
            entity_id=str(po.id),
            from_state=from_status.value,
            to_state=to_status.value,
            before_obj={"po_number": po.po_number},
            after_obj={"po_number": po.po_number, "units_received": units_received},
        )
        po.status = to_status
    if to_status == POStatus.RECEIVED:
        po.received_at = _utcnow()
    db.add(po)
    db.flush()

    requests_received: List[int] = []
    for request_id in sorted({line.parts_request_id for line in all_lines if line.parts_request_id}):
        if request_services.mark_received_if_complete(db, request_id=request_id, actor_id=actor_id):
            requests_received.append(request_id)

    tickets_ready = _signal_ready_tickets(db, po, plans, all_lines, actor_id=actor_id)

    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type="purchase_order",
        entity_id=str(po.id),
        action="receive",
        after={
            "units_received": units_received,
            "lines": {str(plan.line.id): plan.quantity for plan in plans},
            "status": po.status.value,
        },
        metadata={"notes": payload.notes} if payload.notes else None,
    )
    logger.info(
        "Received purchase order",
        extra={
            "purchase_order_id": po.id,
            "po_number": po.po_number,
            "units_received": units_received,
            "status": po.status.value,
            "actor_id": actor_id,
        },
    )
    return schemas.ReceiveResult(
        purchase_order=schemas.PurchaseOrderRead.model_validate(po),
        units_received=units_received,
        serialized_unit_ids=unit_ids,
        staged_item_ids=staged_ids,
        tickets_ready=tickets_ready,
        requests_received=requests_received,
    )


def _signal_ready_tickets(
    db: Session,
    po: models.PurchaseOrder,
    plans: List[_ReceivePlan],
    all_lines: List[models.PurchaseOrderLine],
    *,
    actor_id: Optional[str],
) -> List[str]:
    """Queue ``ticket.parts_ready`` for each ticket whose lines on this PO became complete."""
    touched = {plan.line.ticket_id for plan in plans if plan.quantity and plan.line.ticket_id}
    ready: List[str] = []
    for ticket_id in sorted(touched):
        ticket_lines = [line for line in all_lines if line.ticket_id == ticket_id]
        if any(line.quantity_remaining for line in ticket_lines):
            continue
        ready.append(ticket_id)
        publish_on_commit(
            db,
            EventEnvelope(
                id=generate_uuid7(),
                type="ticket.parts_ready",
                entityType="ticket",
                entityId=str(ticket_id),
                action="parts_ready",
                timestamp=_utcnow().isoformat(),
                actor={"actorId": actor_id} if actor_id else None,
                metadata={
                    "purchaseOrderId": po.id,
                    "poNumber": po.po_number,
                    "lineIds": [line.id for line in ticket_lines],
                },
            )
        )
    return ready
