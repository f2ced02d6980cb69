# backend/partsdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- Cross-app relationship() strings resolve no matter which app loads first.

The actual model classes are kept in partsdb/apps/*/models.py.
"""

from .apps.audit import models as audit_models                        # audit trail
from .apps.inventory import models as inventory_models                # parts, locations, ledger, units
from .apps.purchasing import models as purchasing_models              # vendors + purchase orders
from .apps.parts_requests import models as parts_requests_models      # technician requests
from .apps.transfers import models as transfers_models                # job staging

__all__ = [
    "audit_models",
    "inventory_models",
    "purchasing_models",
    "parts_requests_models",
    "transfers_models",
]
