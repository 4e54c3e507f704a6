"""
AuditLogger - Audit trail for onboarding and tenant operations.

Every onboarding route records one audit event per outcome (success,
validation rejection, upstream failure). Events go to:
1. Structured logs (stdout) - real-time monitoring
2. An audit sink - by default the Supabase RPC that stores audit rows

Usage:
    from bff.infrastructure.audit import AuditEntry

    await audit_logger.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_STEP_SKIP,
            resource=AuditResource.ONBOARDING,
            success=False,
            error="Validation failed: Cannot skip required step",
            metadata={"operation": "skip_step", "tenantId": tenant_id},
        ),
    )

Design Principles:
- Never fail the request if audit logging fails
- Capture request context (tenant, IP, user agent, correlation id)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

import httpx
from fastapi import Request

from bff.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditAction(str, Enum):
    ONBOARDING_STATUS_VIEW = "ONBOARDING_STATUS_VIEW"
    ONBOARDING_INITIALIZE = "ONBOARDING_INITIALIZE"
    ONBOARDING_STEP_COMPLETE = "ONBOARDING_STEP_COMPLETE"
    ONBOARDING_STEP_SKIP = "ONBOARDING_STEP_SKIP"
    ONBOARDING_PROGRESS_UPDATE = "ONBOARDING_PROGRESS_UPDATE"
    ONBOARDING_COMPLETE = "ONBOARDING_COMPLETE"
    TENANT_CREATE = "TENANT_CREATE"
    USER_CREATE = "USER_CREATE"


class AuditResource(str, Enum):
    ONBOARDING = "ONBOARDING"
    TENANT = "TENANT"
    AUTH = "AUTH"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class AuditEntry:
    action: AuditAction | str
    resource: AuditResource | str
    success: bool = True
    resource_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    severity: AuditSeverity | None = None


class AuditSink(Protocol):
    async def write(self, row: dict[str, Any]) -> None: ...


class SupabaseAuditSink:
    """Ships audit rows to a Supabase RPC function."""

    def __init__(self, client: httpx.AsyncClient, rpc_url: str, api_key: str, timeout: float = 5.0):
        self._client = client
        self._rpc_url = rpc_url
        self._api_key = api_key
        self._timeout = timeout

    async def write(self, row: dict[str, Any]) -> None:
        response = await self._client.post(
            self._rpc_url,
            json={"logs": [row]},
            headers={
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )
        response.raise_for_status()


def _value(item: Enum | str | None) -> str | None:
    if isinstance(item, Enum):
        return item.value
    return item


class AuditLogger:
    """
    Audit logging service.

    The sink is optional; without one the logger only emits structured logs.
    With ``background=True`` sink writes run as tracked tasks so a slow audit
    store never delays the response; ``drain()`` waits for them on shutdown.
    """

    def __init__(self, sink: AuditSink | None = None, background: bool = False):
        self.sink = sink
        self.background = background
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def log_audit(self, request: Request, entry: AuditEntry) -> bool:
        """
        Record an audit event for the given request.

        Returns:
            True if the event reached the sink, was handed to a background
            write, or no sink is configured. False if writing failed.
            Never raises.
        """
        try:
            row = self._build_row(request, entry)
        except Exception as e:
            logger.error("Failed to build audit row", error=str(e), action=_value(entry.action))
            return False

        logger.info(
            "Audit event",
            audit_action=row["action"],
            resource=row["resource"],
            tenant_id=row["tenant_id"],
            success=row["success"],
            severity=row["severity"],
            correlation_id=row["correlation_id"],
        )

        if self.sink is None:
            return True

        if self.background:
            task = asyncio.create_task(self._write(row))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return True

        return await self._write(row)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight background writes; give up after ``timeout`` seconds."""
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if still_pending:
            logger.warning("Audit writes still pending at shutdown", pending=len(still_pending))
            for task in still_pending:
                task.cancel()

    async def _write(self, row: dict[str, Any]) -> bool:
        try:
            await self.sink.write(row)
            return True
        except Exception as e:
            # NEVER fail the request due to audit logging failure
            logger.error(
                "Failed to write audit log",
                error=str(e),
                error_type=type(e).__name__,
                action=row["action"],
                tenant_id=row["tenant_id"],
                fallback_data=row,
            )
            return False

    @staticmethod
    def _build_row(request: Request, entry: AuditEntry) -> dict[str, Any]:
        state = request.state
        severity = entry.severity or (AuditSeverity.INFO if entry.success else AuditSeverity.ERROR)
        client_host = request.client.host if request.client else None

        return {
            "tenant_id": request.headers.get("x-tenant-id") or "unknown",
            "action": _value(entry.action),
            "resource": _value(entry.resource),
            "resource_id": entry.resource_id,
            "metadata": {**entry.metadata, "api_layer": True},
            "ip_address": getattr(state, "ip_address", None) or client_host or "unknown",
            "user_agent": getattr(state, "user_agent", None) or "unknown",
            "session_id": request.headers.get("x-session-id"),
            "success": entry.success,
            "error_message": entry.error,
            "severity": _value(severity),
            "correlation_id": getattr(state, "request_id", None) or str(uuid4()),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
