from __future__ import annotations

import importlib
from datetime import date, timedelta

import pytest

from partsdb.apps.inventory import models as inventory_models
from partsdb.apps.inventory import services as inventory_services
from partsdb.errors import ConflictError, ValidationFailed

# The package re-exports the APIRouter as `router`, shadowing the submodule.
inventory_router = importlib.import_module("partsdb.apps.inventory.router")

Movement = inventory_models.MovementTypeEnum
UnitStatus = inventory_models.SerializedUnitStatusEnum


def _stocked_unit(db, part, location, serial, **kwargs):
    unit = inventory_services.create_serialized_unit(
        db,
        part=part,
        serial_number=serial,
        location_id=location.id,
        **kwargs,
    )
    inventory_services.post_movement(
        db,
        movement_type=Movement.RECEIPT,
        part_id=part.id,
        quantity=1,
        to_location_id=location.id,
        serialized_unit_id=unit.id,
        actor_id="store-1",
    )
    db.commit()
    return unit


def _on_hand(db, part, location):
    return inventory_services.quantity_at(db, part_id=part.id, location_id=location.id)


def test_install_then_return_keeps_ledger_and_location_in_step(db_session, make_part, make_location):
    part = make_part("CMP-200", is_serialized=True)
    warehouse = make_location("W1")
    unit = _stocked_unit(db_session, part, warehouse, "SN-001")

    inventory_services.set_unit_status(
        db_session,
        unit_id=unit.id,
        new_status=UnitStatus.INSTALLED,
        equipment_id="RTU-7",
        actor_id="tech-1",
    )
    db_session.commit()
    assert unit.current_location_id is None
    assert unit.installed_on_equipment_id == "RTU-7"
    assert _on_hand(db_session, part, warehouse) == 0

    inventory_services.set_unit_status(
        db_session,
        unit_id=unit.id,
        new_status=UnitStatus.IN_STOCK,
        location_id=warehouse.id,
        actor_id="tech-1",
    )
    db_session.commit()
    assert unit.current_location_id == warehouse.id
    assert unit.installed_on_equipment_id is None
    assert _on_hand(db_session, part, warehouse) == 1

    types = [m.movement_type for m in inventory_services.history(db_session, serialized_unit_id=unit.id)]
    assert types == [Movement.RETURN, Movement.INSTALLATION, Movement.RECEIPT]


def test_install_requires_equipment_reference(db_session, make_part, make_location):
    part = make_part("CMP-201", is_serialized=True)
    warehouse = make_location("W1")
    unit = _stocked_unit(db_session, part, warehouse, "SN-002")

    with pytest.raises(ConflictError) as excinfo:
        inventory_services.set_unit_status(
            db_session,
            unit_id=unit.id,
            new_status=UnitStatus.INSTALLED,
            actor_id="tech-1",
        )
    assert excinfo.value.field == "equipment_id"
    assert _on_hand(db_session, part, warehouse) == 1


def test_removal_requires_return_location(db_session, make_part, make_location):
    part = make_part("CMP-202", is_serialized=True)
    warehouse = make_location("W1")
    unit = _stocked_unit(db_session, part, warehouse, "SN-003")
    inventory_services.set_unit_status(
        db_session,
        unit_id=unit.id,
        new_status=UnitStatus.INSTALLED,
        equipment_id="AHU-1",
        actor_id="tech-1",
    )
    db_session.commit()

    with pytest.raises(ConflictError) as excinfo:
        inventory_services.set_unit_status(
            db_session,
            unit_id=unit.id,
            new_status=UnitStatus.DEFECTIVE,
            actor_id="tech-1",
        )
    assert excinfo.value.field == "location_id"


def test_returned_to_vendor_is_terminal_and_disposes_stock(db_session, make_part, make_location):
    part = make_part("CMP-203", is_serialized=True)
    warehouse = make_location("W1")
    unit = _stocked_unit(db_session, part, warehouse, "SN-004")

    inventory_services.set_unit_status(db_session, unit_id=unit.id, new_status=UnitStatus.DEFECTIVE, actor_id="s")
    inventory_services.set_unit_status(db_session, unit_id=unit.id, new_status=UnitStatus.RETURNED, actor_id="s")
    db_session.commit()
    assert _on_hand(db_session, part, warehouse) == 0
    assert unit.current_location_id is None

    with pytest.raises(ConflictError):
        inventory_services.set_unit_status(
            db_session,
            unit_id=unit.id,
            new_status=UnitStatus.IN_STOCK,
            location_id=warehouse.id,
            actor_id="s",
        )


def test_relocate_moves_one_unit(db_session, make_part, make_location):
    part = make_part("CMP-204", is_serialized=True)
    warehouse = make_location("W1")
    van = make_location("V1", location_type=inventory_models.LocationTypeEnum.VEHICLE)
    unit = _stocked_unit(db_session, part, warehouse, "SN-005")

    movement = inventory_services.relocate_unit(db_session, unit_id=unit.id, to_location_id=van.id, actor_id="s")
    db_session.commit()
    assert movement.movement_type == Movement.TRANSFER
    assert unit.current_location_id == van.id
    assert _on_hand(db_session, part, warehouse) == 0
    assert _on_hand(db_session, part, van) == 1

    with pytest.raises(ValidationFailed):
        inventory_services.relocate_unit(db_session, unit_id=unit.id, to_location_id=van.id, actor_id="s")


def test_list_units_available_and_search(db_session, make_part, make_location):
    part = make_part("CMP-205", is_serialized=True, name="Scroll compressor")
    warehouse = make_location("W1")
    first = _stocked_unit(db_session, part, warehouse, "SN-A")
    second = _stocked_unit(db_session, part, warehouse, "SN-B")
    inventory_services.set_unit_status(
        db_session,
        unit_id=second.id,
        new_status=UnitStatus.INSTALLED,
        equipment_id="RTU-1",
        actor_id="tech-1",
    )
    db_session.commit()

    assert [u.id for u in inventory_services.list_units(db_session, status="available")] == [first.id]
    assert {u.id for u in inventory_services.list_units(db_session, search="scroll")} == {first.id, second.id}
    with pytest.raises(ValidationFailed):
        inventory_services.list_units(db_session, status="lost")


def test_warranty_status_windows(db_session, make_part, make_location):
    part = make_part("CMP-206", is_serialized=True)
    warehouse = make_location("W1")
    today = date(2026, 3, 1)
    expiring = _stocked_unit(db_session, part, warehouse, "SN-W1", warranty_end_date=today + timedelta(days=10))
    active = _stocked_unit(db_session, part, warehouse, "SN-W2", warranty_end_date=today + timedelta(days=200))
    expired = _stocked_unit(db_session, part, warehouse, "SN-W3", warranty_end_date=today - timedelta(days=1))
    none = _stocked_unit(db_session, part, warehouse, "SN-W4")

    assert inventory_services.warranty_status(expiring, today) == "expiring"
    assert inventory_services.warranty_status(active, today) == "active"
    assert inventory_services.warranty_status(expired, today) == "expired"
    assert inventory_services.warranty_status(none, today) == "none"

    rows = inventory_services.list_expiring_warranties(db_session, today=today)
    assert [u.serial_number for u in rows] == ["SN-W1"]


def test_inventory_router_registers_unit_routes():
    routes = {(route.path, tuple(sorted(route.methods or []))) for route in inventory_router.router.routes}
    assert ("/inventory/units", ("GET",)) in routes
    assert ("/inventory/units/expiring-warranties", ("GET",)) in routes
    assert ("/inventory/units/{unit_id}/status", ("POST",)) in routes
    assert ("/inventory/movements", ("POST",)) in routes
    assert ("/inventory/balances/recalculate", ("POST",)) in routes
