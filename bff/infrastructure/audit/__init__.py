"""
Audit logging infrastructure for onboarding and tenant operations.
"""

from bff.infrastructure.audit.audit_logger import (
    AuditAction,
    AuditEntry,
    AuditLogger,
    AuditResource,
    AuditSeverity,
    AuditSink,
    SupabaseAuditSink,
)

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLogger",
    "AuditResource",
    "AuditSeverity",
    "AuditSink",
    "SupabaseAuditSink",
]
