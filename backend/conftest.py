from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

import partsdb  # noqa: E402,F401  registers every table
from partsdb.database import Base  # noqa: E402
from partsdb.apps.inventory import models as inventory_models  # noqa: E402
from partsdb.apps.purchasing import models as purchasing_models  # noqa: E402
from partsdb.security import Actor, ActorRole  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def make_location(db_session):
    def _make(code: str, *, location_type=inventory_models.LocationTypeEnum.WAREHOUSE, **kwargs):
        location = inventory_models.StockLocation(
            code=code,
            name=kwargs.pop("name", code),
            location_type=location_type,
            is_active=kwargs.pop("is_active", True),
            is_staging=kwargs.pop("is_staging", False),
            **kwargs,
        )
        db_session.add(location)
        db_session.commit()
        db_session.refresh(location)
        return location

    return _make


@pytest.fixture()
def make_part(db_session):
    def _make(part_number: str, *, is_serialized: bool = False, unit_cost: str = "10.00", **kwargs):
        part = inventory_models.Part(
            part_number=part_number,
            name=kwargs.pop("name", f"Part {part_number}"),
            unit_cost=Decimal(unit_cost),
            is_serialized=is_serialized,
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(part)
        db_session.commit()
        db_session.refresh(part)
        return part

    return _make


@pytest.fixture()
def make_vendor(db_session):
    def _make(code: str = "ACME", **kwargs):
        vendor = purchasing_models.Vendor(
            code=code,
            name=kwargs.pop("name", f"{code} Supply"),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(vendor)
        db_session.commit()
        db_session.refresh(vendor)
        return vendor

    return _make


@pytest.fixture()
def dispatcher():
    return Actor(id="dispatch-1", role=ActorRole.DISPATCHER, name="Dana Dispatch")


@pytest.fixture()
def technician():
    return Actor(id="tech-1", role=ActorRole.TECHNICIAN, name="Toni Tech")
