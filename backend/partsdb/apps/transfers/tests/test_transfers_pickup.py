from __future__ import annotations

import pytest

from partsdb.apps.audit import models as audit_models
from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import services as inventory_services
from partsdb.apps.transfers import models, services
from partsdb.apps.transfers.router import router
from partsdb.errors import ConflictError, NotFoundError, ValidationFailed

MovementType = inventory_models.MovementTypeEnum
VEHICLE = inventory_models.LocationTypeEnum.VEHICLE


def _receive(db, part, location, quantity, **extra):
    movement = inventory_services.post_movement(
        db,
        movement_type=MovementType.RECEIPT,
        part_id=part.id,
        quantity=quantity,
        to_location_id=location.id,
        actor_id="store-1",
        **extra,
    )
    db.commit()
    return movement


def _stage(db, part, staging, quantity, *, ticket_id="T-700", technician_id="tech-1", unit=None):
    _receive(
        db,
        part,
        staging,
        quantity,
        ticket_id=ticket_id,
        serialized_unit_id=unit.id if unit else None,
    )
    item = services.stage_for_ticket(
        db,
        ticket_id=ticket_id,
        part_id=part.id,
        quantity=quantity,
        staging_location_id=staging.id,
        serialized_unit_id=unit.id if unit else None,
        assigned_technician_id=technician_id,
    )
    db.commit()
    return item


def _on_hand(db, part, location):
    return inventory_services.quantity_at(db, part_id=part.id, location_id=location.id)


@pytest.fixture
def staging(make_location):
    return make_location(services.JOB_STAGING_LOCATION_CODE, is_staging=True)


@pytest.fixture
def van(db_session, make_location):
    location = make_location("V1", location_type=VEHICLE)
    inventory_services.assign_vehicle(db_session, location_id=location.id, technician_id="tech-1", actor_id="dispatch-1")
    db_session.commit()
    return location


def test_bulk_transfer_moves_stock(db_session, make_part, make_location):
    part = make_part("FLT-20")
    w1 = make_location("W1")
    v2 = make_location("V2", location_type=VEHICLE)
    _receive(db_session, part, w1, 10)

    movements = services.transfer_stock(
        db_session,
        part_id=part.id,
        from_location_id=w1.id,
        to_location_id=v2.id,
        quantity=3,
        actor_id="store-1",
    )
    db_session.commit()
    assert [m.movement_type for m in movements] == [MovementType.TRANSFER]
    assert (_on_hand(db_session, part, w1), _on_hand(db_session, part, v2)) == (7, 3)


@pytest.mark.parametrize("quantity", [0, -2])
def test_transfer_rejects_non_positive_quantity(db_session, make_part, make_location, quantity):
    part = make_part("FLT-21")
    w1 = make_location("W1")
    w2 = make_location("W2")
    with pytest.raises(ValidationFailed):
        services.transfer_stock(
            db_session,
            part_id=part.id,
            from_location_id=w1.id,
            to_location_id=w2.id,
            quantity=quantity,
            actor_id="store-1",
        )


def test_transfer_refuses_more_than_on_hand(db_session, make_part, make_location):
    part = make_part("FLT-22")
    w1 = make_location("W1")
    w2 = make_location("W2")
    _receive(db_session, part, w1, 2)
    with pytest.raises(ConflictError):
        services.transfer_stock(
            db_session,
            part_id=part.id,
            from_location_id=w1.id,
            to_location_id=w2.id,
            quantity=3,
            actor_id="store-1",
        )
    assert _on_hand(db_session, part, w1) == 2


def test_reserved_stock_cannot_be_transferred(db_session, make_part, make_location, staging):
    part = make_part("TXV-40")
    w1 = make_location("W1")
    _stage(db_session, part, staging, 2)
    _receive(db_session, part, staging, 1)

    assert inventory_services.reserved_quantity(db_session, part_id=part.id, location_id=staging.id) == 2
    with pytest.raises(ConflictError):
        services.transfer_stock(
            db_session,
            part_id=part.id,
            from_location_id=staging.id,
            to_location_id=w1.id,
            quantity=2,
            actor_id="store-1",
        )
    services.transfer_stock(
        db_session,
        part_id=part.id,
        from_location_id=staging.id,
        to_location_id=w1.id,
        quantity=1,
        actor_id="store-1",
    )
    db_session.commit()
    assert _on_hand(db_session, part, staging) == 2


def test_serialized_transfer_relocates_each_unit(db_session, make_part, make_location):
    part = make_part("CMP-30", is_serialized=True)
    w1 = make_location("W1")
    w2 = make_location("W2")
    units = []
    for serial in ("SN-1", "SN-2"):
        unit = inventory_services.create_serialized_unit(db_session, part=part, serial_number=serial, location_id=w1.id)
        _receive(db_session, part, w1, 1, serialized_unit_id=unit.id)
        units.append(unit)

    with pytest.raises(ValidationFailed):
        services.transfer_stock(
            db_session,
            part_id=part.id,
            from_location_id=w1.id,
            to_location_id=w2.id,
            quantity=2,
            serialized_unit_ids=[units[0].id],
            actor_id="store-1",
        )

    movements = services.transfer_stock(
        db_session,
        part_id=part.id,
        from_location_id=w1.id,
        to_location_id=w2.id,
        quantity=2,
        serialized_unit_ids=[u.id for u in units],
        actor_id="store-1",
    )
    db_session.commit()
    assert len(movements) == 2
    assert all(m.quantity == 1 for m in movements)
    assert {u.current_location_id for u in units} == {w2.id}
    assert _on_hand(db_session, part, w2) == 2


def test_pickup_without_vehicle_moves_neither_item(db_session, make_part, staging):
    coil = make_part("TXV-41")
    filt = make_part("FLT-41")
    first = _stage(db_session, coil, staging, 2, technician_id="tech-2")
    second = _stage(db_session, filt, staging, 1, technician_id="tech-2")
    movements_before = db_session.query(inventory_models.InventoryMovement).count()

    with pytest.raises(ConflictError):
        services.pickup_parts_for_ticket(db_session, ticket_id="T-700", actor_id="tech-2")
    db_session.rollback()

    assert db_session.query(inventory_models.InventoryMovement).count() == movements_before
    assert db_session.get(models.StagedPartItem, first.id).picked_up is False
    assert db_session.get(models.StagedPartItem, second.id).picked_up is False
    assert (_on_hand(db_session, coil, staging), _on_hand(db_session, filt, staging)) == (2, 1)
    assert len(services.pick_list(db_session, ticket_id="T-700").items) == 2


def test_pickup_moves_staged_stock_to_vehicle(db_session, make_part, staging, van):
    part = make_part("TXV-42")
    item = _stage(db_session, part, staging, 2)

    result = services.pickup_parts_for_ticket(db_session, ticket_id="T-700", actor_id="tech-1")
    db_session.commit()

    assert (result.destination_location_id, result.items_transferred) == (van.id, 1)
    assert (_on_hand(db_session, part, staging), _on_hand(db_session, part, van)) == (0, 2)
    assert item.picked_up is True
    assert item.picked_up_by_id == "tech-1"
    assert item.picked_up_to_location_id == van.id
    assert inventory_services.reserved_quantity(db_session, part_id=part.id, location_id=staging.id) == 0
    audit = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.action == "parts_picked_up")
        .one()
    )
    assert audit.entity_id == "T-700"

    with pytest.raises(NotFoundError):
        services.pickup_parts_for_ticket(db_session, ticket_id="T-700", actor_id="tech-1")


def test_pickup_carries_serialized_units(db_session, make_part, staging, van):
    part = make_part("CMP-31", is_serialized=True)
    unit = inventory_services.create_serialized_unit(db_session, part=part, serial_number="SN-9", location_id=staging.id)
    _stage(db_session, part, staging, 1, unit=unit)

    with pytest.raises(ConflictError):
        services.transfer_stock(
            db_session,
            part_id=part.id,
            from_location_id=staging.id,
            to_location_id=van.id,
            quantity=1,
            serialized_unit_ids=[unit.id],
            actor_id="store-1",
        )

    services.pickup_parts_for_ticket(db_session, ticket_id="T-700", actor_id="tech-1")
    db_session.commit()
    assert unit.current_location_id == van.id


def test_pickup_destination_must_be_a_vehicle(db_session, make_part, make_location, staging, van):
    part = make_part("TXV-43")
    w1 = make_location("W1")
    _stage(db_session, part, staging, 1)
    with pytest.raises(ValidationFailed):
        services.pickup_parts_for_ticket(
            db_session,
            ticket_id="T-700",
            actor_id="tech-1",
            destination_location_id=w1.id,
        )


def test_release_returns_staged_stock(db_session, make_part, make_location, staging):
    part = make_part("TXV-44")
    w1 = make_location("W1")
    item = _stage(db_session, part, staging, 3)

    with pytest.raises(ValidationFailed):
        services.release_staged_items(db_session, ticket_id="T-700", to_location_id=staging.id, actor_id="dispatch-1")

    result = services.release_staged_items(db_session, ticket_id="T-700", to_location_id=w1.id, actor_id="dispatch-1")
    db_session.commit()
    assert result.items_released == 1
    assert item.released is True
    assert (_on_hand(db_session, part, staging), _on_hand(db_session, part, w1)) == (0, 3)
    last = inventory_services.history(db_session, part_id=part.id)[0]
    assert last.movement_type == MovementType.RETURN

    with pytest.raises(NotFoundError):
        services.pick_list(db_session, ticket_id="T-700")


def test_pick_list_and_ready_for_pickup(db_session, make_part, staging, van):
    coil = make_part("COIL-1")
    filt = make_part("FLT-23")
    _stage(db_session, coil, staging, 1, ticket_id="T-1")
    _stage(db_session, filt, staging, 4, ticket_id="T-1")
    _stage(db_session, filt, staging, 2, ticket_id="T-2", technician_id="tech-2")

    pick = services.pick_list(db_session, ticket_id="T-1")
    assert pick.total_items == 2
    assert pick.total_quantity == 5
    assert pick.assigned_technician_ids == ["tech-1"]
    assert [i.part_number for i in pick.items] == ["COIL-1", "FLT-23"]

    everyone = services.parts_ready_for_pickup(db_session)
    assert [p.ticket_id for p in everyone] == ["T-1", "T-2"]
    mine = services.parts_ready_for_pickup(db_session, technician_id="tech-2")
    assert [p.ticket_id for p in mine] == ["T-2"]

    services.pickup_parts_for_ticket(db_session, ticket_id="T-1", actor_id="tech-1")
    db_session.commit()
    picked = services.pick_list(db_session, ticket_id="T-1")
    assert (picked.picked_items, picked.total_quantity) == (2, 0)
    assert [p.ticket_id for p in services.parts_ready_for_pickup(db_session)] == ["T-2"]


def test_staged_units_cannot_leave_staging_outside_pickup(db_session, make_part, make_location, staging, van):
    part = make_part("CMP-33", is_serialized=True)
    w1 = make_location("W1")
    unit_a = inventory_services.create_serialized_unit(db_session, part=part, serial_number="A", location_id=staging.id)
    unit_c = inventory_services.create_serialized_unit(db_session, part=part, serial_number="C", location_id=staging.id)
    _stage(db_session, part, staging, 1, ticket_id="T-1", unit=unit_a)
    _stage(db_session, part, staging, 1, ticket_id="T-2", unit=unit_c)

    with pytest.raises(ConflictError):
        inventory_services.relocate_unit(db_session, unit_id=unit_a.id, to_location_id=w1.id, actor_id="store-1")
    db_session.rollback()
    with pytest.raises(ConflictError):
        inventory_services.set_unit_status(
            db_session,
            unit_id=unit_a.id,
            new_status=inventory_models.SerializedUnitStatusEnum.DEFECTIVE,
            actor_id="store-1",
        )
    db_session.rollback()

    services.pickup_parts_for_ticket(db_session, ticket_id="T-1", actor_id="tech-1")
    db_session.commit()

    def units_at(location):
        return (
            db_session.query(inventory_models.SerializedUnit)
            .filter(inventory_models.SerializedUnit.current_location_id == location.id)
            .count()
        )

    for location in (staging, van, w1):
        assert _on_hand(db_session, part, location) == units_at(location)
    assert db_session.get(inventory_models.SerializedUnit, unit_a.id).current_location_id == van.id
    assert db_session.get(inventory_models.SerializedUnit, unit_c.id).current_location_id == staging.id


def test_ledger_refuses_to_drain_reserved_bulk_stock(db_session, make_part, make_location, staging, van):
    part = make_part("FLT-42")
    w1 = make_location("W1")
    _stage(db_session, part, staging, 2, ticket_id="T-1")
    _receive(db_session, part, staging, 1)

    with pytest.raises(ConflictError) as excinfo:
        inventory_services.post_movement(
            db_session,
            movement_type=MovementType.TRANSFER,
            part_id=part.id,
            quantity=2,
            from_location_id=staging.id,
            to_location_id=w1.id,
            actor_id="store-1",
        )
    db_session.rollback()
    assert "reserved" in excinfo.value.message

    inventory_services.post_movement(
        db_session,
        movement_type=MovementType.ADJUSTMENT,
        part_id=part.id,
        quantity=1,
        from_location_id=staging.id,
        actor_id="store-1",
    )
    db_session.commit()
    assert _on_hand(db_session, part, staging) == 2

    result = services.pickup_parts_for_ticket(db_session, ticket_id="T-1", actor_id="tech-1")
    db_session.commit()
    assert result.items_transferred == 1
    assert (_on_hand(db_session, part, staging), _on_hand(db_session, part, van)) == (0, 2)


def test_pickup_of_several_items_for_one_part(db_session, make_part, staging, van):
    part = make_part("FLT-43")
    _stage(db_session, part, staging, 2, ticket_id="T-1")
    _stage(db_session, part, staging, 3, ticket_id="T-1")
    _stage(db_session, part, staging, 4, ticket_id="T-2", technician_id="tech-2")

    result = services.pickup_parts_for_ticket(db_session, ticket_id="T-1", actor_id="tech-1")
    db_session.commit()
    assert result.items_transferred == 2
    assert (_on_hand(db_session, part, staging), _on_hand(db_session, part, van)) == (4, 5)
    assert inventory_services.reserved_quantity(db_session, part_id=part.id, location_id=staging.id) == 4


def test_router_registers_transfer_endpoints():
    routes = {(route.path, tuple(sorted(route.methods))) for route in router.routes}
    assert ("/transfers/", ("POST",)) in routes
    assert ("/transfers/ready-for-pickup", ("GET",)) in routes
    assert ("/transfers/tickets/{ticket_id}/pick-list", ("GET",)) in routes
    assert ("/transfers/tickets/{ticket_id}/pickup", ("POST",)) in routes
    assert ("/transfers/tickets/{ticket_id}/release", ("POST",)) in routes
