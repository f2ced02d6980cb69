from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from partsdb.apps.audit import services as audit_services
from partsdb.errors import ConflictError

from .registry import WORKFLOWS

logger = logging.getLogger(__name__)


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]

    def describe(self) -> str:
        return "; ".join(f"{item['field']}: {item['reason']}" for item in self.detail)


def can_transition(entity_type: str, from_state: str, to_state: str) -> bool:
    workflow = WORKFLOWS.get(entity_type) or {}
    return to_state in workflow.get("transitions", {}).get(from_state, {})


def apply_transition(
    db: Session,
    *,
    actor_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: str,
    to_state: str,
    before_obj: Any,
    after_obj: Any,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_state, {})
    guards = allowed.get(to_state)

    if guards is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_state} to {to_state}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)

    before_payload: Dict[str, Any] = {"status": from_state}
    after_payload: Dict[str, Any] = {"status": to_state}
    if isinstance(before_obj, dict):
        before_payload.update(before_obj)
    if isinstance(after_obj, dict):
        after_payload.update(after_obj)

    audit_services.log_event(
        db,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action="transition",
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )


def transition_or_conflict(db: Session, **kwargs: Any) -> None:
    """
    Run ``apply_transition`` and surface a rejected move as a ``ConflictError``.
    """
    try:
        apply_transition(db, **kwargs)
    except TransitionError as exc:
        logger.warning(
            "Rejected status transition",
            extra={
                "entity_type": kwargs.get("entity_type"),
                "entity_id": kwargs.get("entity_id"),
                "from_state": kwargs.get("from_state"),
                "to_state": kwargs.get("to_state"),
                "code": exc.code,
            },
        )
        raise ConflictError(exc.describe(), field=exc.detail[0]["field"] if exc.detail else None) from exc
