"""
Audit Log Sink

Append-only writer used by the order engine. Entries join the caller's
open transaction, so an entry exists exactly when the change it describes
was committed.
"""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tableside.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: AsyncSession,
    action: AuditAction,
    order_id: str,
    *,
    actor_id: Optional[str] = None,
    **details: Any,
) -> AuditLog:
    """
    Stage one audit entry on the session.

    Args:
        db: Session with an open transaction
        action: What happened
        order_id: Order the action applies to
        actor_id: Staff member or guest session that acted, if known
        **details: JSON-serialisable context (statuses, counts, table code)

    Returns:
        The pending AuditLog row
    """
    entry = AuditLog(
        action=action,
        order_id=order_id,
        actor_id=actor_id,
        details=details,
    )
    db.add(entry)
    logger.debug(f"Audit {action.value} staged for order {order_id}")
    return entry
