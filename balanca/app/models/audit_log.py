"""
Audit Log Database Model.

Tracks every money-affecting action and planned-expense change for
compliance review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from balanca.app.db.session import Base
from balanca.app.models.timestamps import utcnow


class AuditLog(Base):
    """
    Audit log model.

    ``changes`` holds a before/after diff: {"field": {"before": x, "after": y}}.
    Rows are append-only and are written inside the same unit of work as the
    change they describe.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What was affected
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=False, index=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)
    changes = Column(JSON, nullable=True)

    # Who performed the action
    performed_by = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Group context for group actions
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=True, index=True)

    # Timestamp
    performed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
