"""Business logic services."""

from app.services.audit import (
    AuditService,
    AuditSink,
    DatabaseAuditSink,
    LoggingAuditSink,
    emit_audit,
)
from app.services.dispensation import DispensationEligibilityEngine
from app.services.locks import KeyedLocks
from app.services.session_booking import SessionCapacityManager

__all__ = [
    "AuditService",
    "AuditSink",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "emit_audit",
    "DispensationEligibilityEngine",
    "KeyedLocks",
    "SessionCapacityManager",
]
