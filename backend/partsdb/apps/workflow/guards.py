from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_po_submit(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "vendor_id"):
        missing.append({"field": "vendor_id", "reason": "vendor required"})
    if not _get_value(after_obj, "line_count"):
        missing.append({"field": "lines", "reason": "at least one line required"})
    return missing


def guard_po_approve(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "approved_by_id"):
        missing.append({"field": "approved_by_id", "reason": "approver required"})
    if not _get_value(after_obj, "approved_at"):
        missing.append({"field": "approved_at", "reason": "approval timestamp required"})
    return missing


def guard_unit_installed(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "installed_on_equipment_id"):
        return [{"field": "equipment_id", "reason": "equipment reference required"}]
    return []


def guard_unit_removed(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "current_location_id"):
        return [{"field": "location_id", "reason": "return location required"}]
    return []
