from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from partsdb.apps.audit import models as audit_models
from partsdb.apps.parts_requests import models, schemas, services
from partsdb.apps.parts_requests.router import router
from partsdb.apps.purchasing import schemas as purchasing_schemas
from partsdb.apps.purchasing import services as purchasing_services
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

RequestStatus = models.RequestStatusEnum


def _request(db, part, *, ticket_id="T-100", quantity=1, requester_id="tech-1", **extra):
    request = services.create_request(
        db,
        payload=schemas.PartsRequestCreate(
            ticket_id=ticket_id,
            items=[schemas.PartsRequestItemCreate(part_id=part.id, quantity=quantity)],
            **extra,
        ),
        requester_id=requester_id,
    )
    db.commit()
    return request


def _draft_po(db, vendor, part):
    po = purchasing_services.create_purchase_order(
        db,
        payload=purchasing_schemas.PurchaseOrderCreate(
            vendor_id=vendor.id,
            tax_rate=Decimal("0"),
            lines=[purchasing_schemas.PurchaseOrderLineCreate(part_id=part.id, quantity_ordered=1)],
        ),
        actor_id="buyer-1",
    )
    db.commit()
    return po


def test_create_request_defaults_and_audit(db_session, make_part):
    part = make_part("CAP-45")
    request = _request(db_session, part, ticket_id="  T-100 ", quantity=2, urgency=models.RequestUrgencyEnum.HIGH)

    assert request.ticket_id == "T-100"
    assert request.status == RequestStatus.OPEN
    assert request.assigned_technician_id == "tech-1"
    assert request.lines[0].quantity_requested == 2
    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_type == "parts_request", audit_models.AuditEvent.action == "create")
        .one()
    )
    assert event.entity_id == str(request.id)
    assert event.after["urgency"] == "high"


def test_create_request_validation_names_the_item(db_session, make_part):
    part = make_part("CAP-46")
    with pytest.raises(ValidationFailed) as excinfo:
        services.create_request(
            db_session,
            payload=schemas.PartsRequestCreate(
                ticket_id="T-1",
                items=[
                    schemas.PartsRequestItemCreate(part_id=part.id, quantity=1),
                    schemas.PartsRequestItemCreate(part_id=part.id, quantity=0),
                ],
            ),
            requester_id="tech-1",
        )
    assert excinfo.value.field == "items[1].quantity"

    with pytest.raises(ValidationFailed) as excinfo:
        services.create_request(
            db_session,
            payload=schemas.PartsRequestCreate(ticket_id=" ", items=[schemas.PartsRequestItemCreate(part_id=part.id, quantity=1)]),
            requester_id="tech-1",
        )
    assert excinfo.value.field == "ticket_id"

    with pytest.raises(ValidationFailed):
        services.create_request(
            db_session,
            payload=schemas.PartsRequestCreate(ticket_id="T-1"),
            requester_id="tech-1",
        )

    with pytest.raises(NotFoundError):
        services.create_request(
            db_session,
            payload=schemas.PartsRequestCreate(ticket_id="T-1", items=[schemas.PartsRequestItemCreate(part_id=999, quantity=1)]),
            requester_id="tech-1",
        )


def test_queue_reports_days_waiting_and_sla(db_session, make_part):
    part = make_part("CAP-47")
    older = _request(db_session, part, ticket_id="T-1")
    newer = _request(db_session, part, ticket_id="T-2")
    older.requested_at = datetime.now(timezone.utc) - timedelta(days=6)
    newer.requested_at = datetime.now(timezone.utc) - timedelta(days=2)
    db_session.commit()

    queue = services.list_requests(db_session, status_filter="open")
    assert [item.ticket_id for item in queue] == ["T-1", "T-2"]
    assert (queue[0].days_waiting, queue[0].sla_breached) == (6, True)
    assert (queue[1].days_waiting, queue[1].sla_breached) == (2, False)

    services.cancel_request(db_session, request_id=older.id, actor_id="dispatch-1")
    db_session.commit()
    cancelled = services.list_requests(db_session, status_filter="cancelled")
    assert [item.id for item in cancelled] == [older.id]
    assert cancelled[0].days_waiting == 0

    with pytest.raises(ValidationFailed):
        services.list_requests(db_session, status_filter="waiting")


def test_link_to_po_only_moves_forward(db_session, make_part, make_vendor):
    part = make_part("CAP-48")
    vendor = make_vendor()
    request = _request(db_session, part)
    first_po = _draft_po(db_session, vendor, part)
    second_po = _draft_po(db_session, vendor, part)

    services.link_to_po(db_session, request_id=request.id, purchase_order_id=first_po.id, actor_id="buyer-1")
    ordered_at = request.ordered_at
    services.link_to_po(db_session, request_id=request.id, purchase_order_id=second_po.id, actor_id="buyer-1")
    db_session.commit()

    assert request.status == RequestStatus.ORDERED
    assert request.purchase_order_id == first_po.id
    assert request.ordered_at == ordered_at
    transitions = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_type == "parts_request", audit_models.AuditEvent.action == "transition")
        .all()
    )
    assert len(transitions) == 1


def test_cancelled_request_is_terminal(db_session, make_part, make_vendor):
    part = make_part("CAP-49")
    request = _request(db_session, part)
    po = _draft_po(db_session, make_vendor(), part)

    services.cancel_request(db_session, request_id=request.id, actor_id="dispatch-1")
    db_session.commit()
    assert request.status == RequestStatus.CANCELLED
    assert request.cancelled_at is not None

    with pytest.raises(ConflictError):
        services.cancel_request(db_session, request_id=request.id, actor_id="dispatch-1")
    with pytest.raises(ConflictError):
        services.link_to_po(db_session, request_id=request.id, purchase_order_id=po.id, actor_id="buyer-1")


def test_mark_received_waits_for_every_line(db_session, make_part, make_vendor):
    part = make_part("CAP-50")
    request = _request(db_session, part, quantity=2)
    po = purchasing_services.create_purchase_order_from_requests(
        db_session,
        payload=purchasing_schemas.PurchaseOrderFromRequests(vendor_id=make_vendor().id, request_ids=[request.id]),
        actor_id="buyer-1",
    )
    db_session.commit()

    assert services.mark_received_if_complete(db_session, request_id=request.id, actor_id=None) is False
    po.lines[0].quantity_received = 2
    db_session.flush()
    assert services.mark_received_if_complete(db_session, request_id=request.id, actor_id=None) is True
    assert request.status == RequestStatus.RECEIVED
    assert request.received_at is not None
    assert services.mark_received_if_complete(db_session, request_id=request.id, actor_id=None) is False


def test_delete_only_unlinked_requests(db_session, make_part, make_vendor):
    part = make_part("CAP-51")
    loose = _request(db_session, part, ticket_id="T-1")
    linked = _request(db_session, part, ticket_id="T-2")
    purchasing_services.create_purchase_order_from_requests(
        db_session,
        payload=purchasing_schemas.PurchaseOrderFromRequests(vendor_id=make_vendor().id, request_ids=[linked.id]),
        actor_id="buyer-1",
    )
    db_session.commit()

    with pytest.raises(ConflictError):
        services.delete_request(db_session, request_id=linked.id, actor_id="dispatch-1")

    loose_id = loose.id
    services.delete_request(db_session, request_id=loose_id, actor_id="dispatch-1")
    db_session.commit()
    with pytest.raises(NotFoundError):
        services.get_request(db_session, loose_id)
    assert db_session.query(models.PartsRequestLine).filter(models.PartsRequestLine.parts_request_id == loose_id).count() == 0


def test_procurement_metrics(db_session, make_part, make_vendor):
    part = make_part("CAP-52")
    now = datetime.now(timezone.utc)

    stale = _request(db_session, part, ticket_id="T-1", urgency=models.RequestUrgencyEnum.CRITICAL)
    stale.requested_at = now - timedelta(days=8)
    _request(db_session, part, ticket_id="T-2")
    ordered = _request(db_session, part, ticket_id="T-3")
    services.link_to_po(
        db_session,
        request_id=ordered.id,
        purchase_order_id=_draft_po(db_session, make_vendor(), part).id,
        actor_id="buyer-1",
    )
    done = _request(db_session, part, ticket_id="T-4")
    done.status = RequestStatus.RECEIVED
    done.requested_at = now - timedelta(days=4)
    done.received_at = now - timedelta(days=1)
    db_session.commit()

    metrics = services.procurement_metrics(db_session, now=now)
    assert metrics.pending_requests == 2
    assert metrics.ordered_requests == 1
    assert metrics.received_this_period == 1
    assert metrics.avg_days_to_fulfill == 3.0
    assert metrics.sla_breaches == 1
    assert metrics.requests_by_urgency["critical"] == 1
    assert metrics.requests_by_urgency["medium"] == 1
    assert metrics.requests_by_urgency["low"] == 0


def test_router_registers_queue_endpoints():
    routes = {(route.path, tuple(sorted(route.methods))) for route in router.routes}
    assert ("/parts-requests/", ("GET",)) in routes
    assert ("/parts-requests/", ("POST",)) in routes
    assert ("/parts-requests/metrics", ("GET",)) in routes
    assert ("/parts-requests/{request_id}", ("GET",)) in routes
    assert ("/parts-requests/{request_id}/cancel", ("POST",)) in routes
    assert ("/parts-requests/{request_id}", ("DELETE",)) in routes
