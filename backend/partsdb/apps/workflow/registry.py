from __future__ import annotations

from .guards import (
    guard_po_approve,
    guard_po_submit,
    guard_unit_installed,
    guard_unit_removed,
)

WORKFLOWS = {
    "purchase_order": {
        "transitions": {
            "draft": {
                "submitted": [guard_po_submit],
                "cancelled": [],
            },
            "submitted": {
                "approved": [guard_po_approve],
                "cancelled": [],
            },
            "approved": {
                "partial": [],
                "received": [],
                "cancelled": [],
            },
            "partial": {
                "partial": [],
                "received": [],
                "cancelled": [],
            },
            "received": {
                "partial": [],
            },
            "cancelled": {},
        }
    },
    "parts_request": {
        "transitions": {
            "open": {"ordered": [], "cancelled": []},
            "ordered": {"received": [], "cancelled": []},
            "received": {},
            "cancelled": {},
        }
    },
    "serialized_unit": {
        "transitions": {
            "in_stock": {
                "in_transit": [],
                "installed": [guard_unit_installed],
                "returned": [],
                "defective": [],
                "warranty_claim": [],
            },
            "in_transit": {
                "in_stock": [],
                "installed": [guard_unit_installed],
                "defective": [],
            },
            "installed": {
                "in_stock": [guard_unit_removed],
                "defective": [guard_unit_removed],
                "warranty_claim": [guard_unit_removed],
            },
            "defective": {
                "in_stock": [],
                "warranty_claim": [],
                "returned": [],
            },
            "warranty_claim": {
                "in_stock": [],
                "returned": [],
            },
            "returned": {},
        }
    },
}
