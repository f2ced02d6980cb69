"""
Inventory module.

Parts catalog, stock locations, the movement ledger with its balance cache,
and serialized unit tracking.
"""

from .router import router  # noqa: F401
from . import models  # noqa: F401
