"""Audit logging service.

Writes audit entries for admin and staff actions. From the caller's point of
view this is fire-and-forget: the entry is written in its own short-lived
session after the primary operation has committed, and a failure is logged
and swallowed so it can never undo or block the operation being audited.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from grocery.db.session import SessionLocal
from grocery.models.audit import AuditLogEntry

logger = logging.getLogger("audit")


def log_action(
    action: str,
    entity_type: str,
    entity_id: Optional[Any] = None,
    user_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> None:
    """Write an audit log entry.

    Args:
        action: The action performed (stock_receive, pick_task_create, ...)
        entity_type: Type of entity affected (warehouse_stock, pick_task, order, courier)
        entity_id: ID of the affected entity
        user_id: ID of the user performing the action
        details: Additional details
        session_factory: Session factory to use; defaults to the application's.
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        entry = AuditLogEntry(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details or {},
            created_at=datetime.now(timezone.utc),
        )
        db.add(entry)
        db.commit()
    except Exception:
        logger.exception("Failed to write audit log entry: %s %s %s", action, entity_type, entity_id)
        db.rollback()
    finally:
        db.close()


class AuditSink:
    """Audit recorder bound to a session factory.

    Routes receive one through the ``Audit`` dependency, so tests can point
    audit writes at the test database.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self.session_factory = session_factory

    def record(
        self,
        actor_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        log_action(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=actor_id,
            details=details,
            session_factory=self.session_factory,
        )


def get_audit_sink(request: Request) -> AuditSink:
    """Audit sink configured on the application (see ``create_app``)."""
    sink = getattr(request.app.state, "audit_sink", None)
    return sink if sink is not None else AuditSink()


Audit = Annotated[AuditSink, Depends(get_audit_sink)]
