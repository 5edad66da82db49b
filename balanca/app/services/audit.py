"""
Audit logging service for money-affecting actions.

Audit rows are written inside the caller's unit of work: ``log_event``
only flushes, so a failed audit write rolls back the change it describes.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from balanca.app.models.audit_log import AuditLog


class AuditEntity:
    """Audited entity types."""
    TRANSACTION = "transaction"
    PLANNED_EXPENSE = "planned_expense"


class AuditAction:
    """Standardized audit action constants."""
    CREATE = "create"
    UPDATE = "update"

    # Group funding
    TRANSFER_TO_GROUP = "transfer_to_group"
    RECEIVE_FROM_MEMBER = "receive_from_member"
    RECORD_EXTERNAL_INCOME = "record_external_income"

    # Planned expense workflow
    MARK_AS_PAID = "mark_as_paid"
    MARK_AS_CANCELLED = "mark_as_cancelled"


def diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Build a change set from two snapshots of the same fields.

    Returns:
        {"field": {"before": x, "after": y}} for every field in ``after``
    """
    return {
        field: {"before": before.get(field), "after": value}
        for field, value in after.items()
    }


async def log_event(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    performed_by: int,
    changes: Optional[Dict[str, Any]] = None,
    group_id: Optional[int] = None
) -> AuditLog:
    """
    Record an action against an entity.

    Args:
        db: Database session, already inside a transaction
        entity_type: AuditEntity constant
        entity_id: ID of the affected entity
        action: AuditAction constant
        performed_by: ID of the acting user
        changes: Before/after change set, JSON-serializable
        group_id: Group context for group actions

    Returns:
        Created AuditLog instance (flushed, not committed)
    """
    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        changes=changes,
        performed_by=performed_by,
        group_id=group_id
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def find_by_entity(
    db: AsyncSession,
    entity_type: str,
    entity_id: int
) -> List[AuditLog]:
    """Audit trail of one entity, oldest first."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.performed_at, AuditLog.id)
    )
    return list(result.scalars().all())


async def get_audit_trail(
    db: AsyncSession,
    group_id: Optional[int] = None,
    performed_by: Optional[int] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100
) -> List[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        group_id: Filter by group context
        performed_by: Filter by acting user
        action: Filter by action type
        start: Inclusive lower bound on performed_at
        end: Exclusive upper bound on performed_at
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.performed_at), desc(AuditLog.id))

    if group_id is not None:
        query = query.where(AuditLog.group_id == group_id)

    if performed_by is not None:
        query = query.where(AuditLog.performed_by == performed_by)

    if action:
        query = query.where(AuditLog.action == action)

    if start is not None:
        query = query.where(AuditLog.performed_at >= start)

    if end is not None:
        query = query.where(AuditLog.performed_at < end)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
