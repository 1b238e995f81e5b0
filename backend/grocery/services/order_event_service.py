"""Order event log - append-only trail of order status changes."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from grocery.models.order import OrderEvent
from grocery.models.user import User


class OrderEventService:
    """Writes and reads order events. Events are never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        order_id: int,
        status: str,
        comment: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> OrderEvent:
        """Append an event in the caller's transaction (flushed, not committed)."""
        event = OrderEvent(
            order_id=order_id,
            status=status,
            comment=comment,
            created_by=actor_id,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def history(self, order_id: int) -> List[dict]:
        """Events oldest first, each with the actor's display name."""
        rows = self.db.execute(
            select(OrderEvent, User.full_name, User.email)
            .outerjoin(User, User.id == OrderEvent.created_by)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.created_at.asc(), OrderEvent.id.asc())
        ).all()

        return [
            {
                "id": event.id,
                "status": event.status,
                "comment": event.comment,
                "created_by": event.created_by,
                "created_by_name": full_name or email,
                "created_at": event.created_at,
            }
            for event, full_name, email in rows
        ]
