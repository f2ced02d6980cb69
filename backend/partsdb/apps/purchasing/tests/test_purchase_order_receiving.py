from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from partsdb.apps.events.broker import broker, pending_events
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import services as inventory_services
from partsdb.apps.parts_requests import models as request_models
from partsdb.apps.parts_requests import schemas as request_schemas
from partsdb.apps.parts_requests import services as request_services
from partsdb.apps.purchasing import models as purchasing_models
from partsdb.apps.purchasing import schemas as purchasing_schemas
from partsdb.apps.purchasing import services as purchasing_services
from partsdb.apps.transfers import models as transfer_models
from partsdb.apps.transfers import services as transfer_services
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

POStatus = purchasing_models.PurchaseOrderStatusEnum


def _approved_po(db, vendor, lines):
    po = purchasing_services.create_purchase_order(
        db,
        payload=purchasing_schemas.PurchaseOrderCreate(vendor_id=vendor.id, tax_rate=Decimal("0"), lines=lines),
        actor_id="buyer-1",
    )
    for status in (POStatus.SUBMITTED, POStatus.APPROVED):
        purchasing_services.transition_purchase_order(db, po_id=po.id, to_status=status, actor_id="buyer-1")
    db.commit()
    return po


def _receive(db, po, *entries):
    result = purchasing_services.receive_purchase_order(
        db,
        po_id=po.id,
        payload=purchasing_schemas.ReceivePurchaseOrder(lines=list(entries)),
        actor_id="store-1",
    )
    db.commit()
    return result


def _on_hand(db, part, location):
    return inventory_services.quantity_at(db, part_id=part.id, location_id=location.id)


def test_partial_then_full_receipt_then_transfer(db_session, make_part, make_location, make_vendor):
    part = make_part("FLT-20X20")
    w1 = make_location("W1")
    v1 = make_location("V1", location_type=inventory_models.LocationTypeEnum.VEHICLE)
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=10)],
    )
    line_id = po.lines[0].id

    first = _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=line_id, quantity_received=4, location_id=w1.id))
    assert first.units_received == 4
    assert po.status == POStatus.PARTIAL
    assert po.received_at is None
    assert _on_hand(db_session, part, w1) == 4

    _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=line_id, quantity_received=6, location_id=w1.id))
    assert po.status == POStatus.RECEIVED
    assert po.received_at is not None
    assert po.lines[0].quantity_received == 10
    assert _on_hand(db_session, part, w1) == 10

    transfer_services.transfer_stock(
        db_session,
        part_id=part.id,
        from_location_id=w1.id,
        to_location_id=v1.id,
        quantity=3,
        actor_id="store-1",
    )
    db_session.commit()
    assert _on_hand(db_session, part, w1) == 7
    assert _on_hand(db_session, part, v1) == 3


def test_excess_quantity_is_clamped(db_session, make_part, make_location, make_vendor):
    part = make_part("FLT-21")
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=5)],
    )
    result = _receive(
        db_session,
        po,
        purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=8, quantity_damaged=9, location_id=w1.id),
    )
    assert result.units_received == 5
    assert po.lines[0].quantity_received == 5
    assert po.lines[0].quantity_damaged == 5
    assert po.status == POStatus.RECEIVED
    assert _on_hand(db_session, part, w1) == 5

    with pytest.raises(ConflictError):
        _receive(
            db_session,
            po,
            purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=1, location_id=w1.id),
        )


def test_missing_location_aborts_whole_pass(db_session, make_part, make_location, make_vendor):
    first_part = make_part("FLT-22")
    second_part = make_part("FLT-23")
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [
            purchasing_schemas.PurchaseOrderLineCreate(part_id=first_part.id, quantity_ordered=2),
            purchasing_schemas.PurchaseOrderLineCreate(part_id=second_part.id, quantity_ordered=2),
        ],
    )
    with pytest.raises(ValidationFailed) as excinfo:
        _receive(
            db_session,
            po,
            purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=2, location_id=w1.id),
            purchasing_schemas.ReceiveLine(line_id=po.lines[1].id, quantity_received=2),
        )
    db_session.rollback()
    assert excinfo.value.line_id == po.lines[1].id
    assert _on_hand(db_session, first_part, w1) == 0
    assert db_session.query(inventory_models.InventoryMovement).count() == 0


def test_serial_count_mismatch_leaves_counters_unchanged(db_session, make_part, make_location, make_vendor):
    part = make_part("CMP-30", is_serialized=True, unit_cost="450.00")
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=2)],
    )
    line = po.lines[0]

    with pytest.raises(ValidationFailed) as excinfo:
        _receive(
            db_session,
            po,
            purchasing_schemas.ReceiveLine(line_id=line.id, quantity_received=2, location_id=w1.id, serial_numbers=["A1"]),
        )
    db_session.rollback()
    assert excinfo.value.field == "serial_numbers"
    assert excinfo.value.line_id == line.id
    assert db_session.get(purchasing_models.PurchaseOrderLine, line.id).quantity_received == 0
    assert db_session.query(inventory_models.SerializedUnit).count() == 0


@pytest.mark.parametrize("serials", [["A1", "A1"], ["A1", "  "]])
def test_duplicate_or_blank_serials_are_rejected(db_session, make_part, make_location, make_vendor, serials):
    part = make_part("CMP-31", is_serialized=True)
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=2)],
    )
    with pytest.raises(ValidationFailed):
        _receive(
            db_session,
            po,
            purchasing_schemas.ReceiveLine(
                line_id=po.lines[0].id,
                quantity_received=2,
                location_id=w1.id,
                serial_numbers=serials,
            ),
        )


def test_serialized_receipt_mints_units_with_warranty(db_session, make_part, make_location, make_vendor):
    part = make_part("CMP-32", is_serialized=True, unit_cost="450.00")
    w1 = make_location("W1")
    vendor = make_vendor()
    po = _approved_po(
        db_session,
        vendor,
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=3, unit_price=Decimal("410.00"))],
    )
    result = _receive(
        db_session,
        po,
        purchasing_schemas.ReceiveLine(
            line_id=po.lines[0].id,
            quantity_received=2,
            location_id=w1.id,
            serial_numbers=["SN-1", "SN-2"],
            warranty_start_date=date(2026, 1, 1),
            warranty_end_date=date(2027, 1, 1),
        ),
    )
    assert len(result.serialized_unit_ids) == 2
    units = db_session.query(inventory_models.SerializedUnit).order_by(inventory_models.SerializedUnit.id).all()
    assert [u.serial_number for u in units] == ["SN-1", "SN-2"]
    assert all(u.current_location_id == w1.id for u in units)
    assert all(u.unit_cost == Decimal("410.00") for u in units)
    assert all(u.vendor_id == vendor.id and u.purchase_order_id == po.id for u in units)
    assert units[0].warranty_end_date == date(2027, 1, 1)
    assert _on_hand(db_session, part, w1) == 2
    assert po.status == POStatus.PARTIAL

    with pytest.raises(ValidationFailed):
        _receive(
            db_session,
            po,
            purchasing_schemas.ReceiveLine(
                line_id=po.lines[0].id,
                quantity_received=1,
                location_id=w1.id,
                serial_numbers=["SN-2"],
            ),
        )


def test_unknown_line_and_empty_pass(db_session, make_part, make_location, make_vendor):
    part = make_part("FLT-24")
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=1)],
    )
    with pytest.raises(NotFoundError) as excinfo:
        _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=4040, quantity_received=1, location_id=w1.id))
    assert excinfo.value.line_id == 4040

    with pytest.raises(ValidationFailed):
        _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=0))


def test_draft_order_cannot_be_received(db_session, make_part, make_location, make_vendor):
    part = make_part("FLT-25")
    w1 = make_location("W1")
    po = purchasing_services.create_purchase_order(
        db_session,
        payload=purchasing_schemas.PurchaseOrderCreate(
            vendor_id=make_vendor().id,
            lines=[purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=1)],
        ),
        actor_id="buyer-1",
    )
    db_session.commit()
    with pytest.raises(ConflictError):
        _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=1, location_id=w1.id))


def test_job_linked_receipt_is_staged_and_completes_request(db_session, make_part, make_location, make_vendor):
    part = make_part("TXV-40")
    w1 = make_location("W1")
    staging = make_location("JOB-STAGING", is_staging=True)
    request = request_services.create_request(
        db_session,
        payload=request_schemas.PartsRequestCreate(
            ticket_id="T-555",
            assigned_technician_id="tech-9",
            items=[request_schemas.PartsRequestItemCreate(part_id=part.id, quantity=2)],
        ),
        requester_id="tech-9",
    )
    db_session.commit()

    po = purchasing_services.create_purchase_order_from_requests(
        db_session,
        payload=purchasing_schemas.PurchaseOrderFromRequests(vendor_id=make_vendor().id, request_ids=[request.id]),
        actor_id="buyer-1",
    )
    for status in (POStatus.SUBMITTED, POStatus.APPROVED):
        purchasing_services.transition_purchase_order(db_session, po_id=po.id, to_status=status, actor_id="buyer-1")
    db_session.commit()

    result = _receive(
        db_session,
        po,
        purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=2, location_id=w1.id),
    )

    assert _on_hand(db_session, part, w1) == 0
    assert _on_hand(db_session, part, staging) == 2
    staged = db_session.query(transfer_models.StagedPartItem).one()
    assert (staged.ticket_id, staged.quantity, staged.assigned_technician_id) == ("T-555", 2, "tech-9")
    assert result.staged_item_ids == [staged.id]
    assert result.tickets_ready == ["T-555"]
    assert result.requests_received == [request.id]
    assert request.status == request_models.RequestStatusEnum.RECEIVED

    ready = [event for event in broker.recent(event_type="ticket.parts_ready") if event.entityId == "T-555"]
    assert ready and ready[-1].metadata["poNumber"] == po.po_number


def test_job_linked_receipt_without_staging_location_is_refused(db_session, make_part, make_location, make_vendor):
    part = make_part("TXV-41")
    w1 = make_location("W1")
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=1, ticket_id="T-9")],
    )
    with pytest.raises(ConflictError):
        _receive(db_session, po, purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=1, location_id=w1.id))


def test_parts_ready_is_not_announced_for_a_rolled_back_receipt(db_session, make_part, make_location, make_vendor):
    part = make_part("TXV-42")
    w1 = make_location("W1")
    make_location("JOB-STAGING", is_staging=True)
    po = _approved_po(
        db_session,
        make_vendor(),
        [purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=1, ticket_id="T-556")],
    )
    result = purchasing_services.receive_purchase_order(
        db_session,
        po_id=po.id,
        payload=purchasing_schemas.ReceivePurchaseOrder(
            lines=[purchasing_schemas.ReceiveLine(line_id=po.lines[0].id, quantity_received=1, location_id=w1.id)]
        ),
        actor_id="store-1",
    )
    assert result.tickets_ready == ["T-556"]
    assert [e.entityId for e in pending_events(db_session) if e.type == "ticket.parts_ready"] == ["T-556"]

    db_session.rollback()
    assert not [e for e in broker.recent(event_type="ticket.parts_ready") if e.entityId == "T-556"]
    assert db_session.query(transfer_models.StagedPartItem).count() == 0
