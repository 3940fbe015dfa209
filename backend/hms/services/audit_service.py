"""
Audit Service — hash-chained trail of permission changes.

Every grant upsert or reset writes an entry whose hash covers its own
content plus the previous entry's hash, so any later tampering with the
permission history is detectable by ``verify_chain_integrity``.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "permission_granted", "permission_reset"
            actor: e.g. "ADMIN:12", "system"
            action: Human-readable description
            resource_type: "permission", "notification", ...
            resource_id: The ID of the affected resource, e.g. "DOCTOR:PATIENTS"
            details: Full event details as dict
        """
        previous_hash = await self._get_latest_hash()

        entry_details = details or {}
        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": entry_details,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_permission_granted(self, role: str, module: str, before: dict | None,
                                     after: dict, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="permission_granted",
            actor=actor,
            action=f"Permissions for {role} on {module} set explicitly",
            resource_type="permission",
            resource_id=f"{role}:{module}",
            details={"before": before, "after": after},
        )

    async def log_permission_reset(self, role: str, module: str, before: dict, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="permission_reset",
            actor=actor,
            action=f"Permissions for {role} on {module} reset to defaults",
            resource_type="permission",
            resource_id=f"{role}:{module}",
            details={"before": before},
        )

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc())
        )
        entries = list(result.scalars())

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            content = {
                "event_type": entry.event_type,
                "actor": entry.actor,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "details": entry.details,
            }
            if entry.current_hash != self._calculate_hash(content, entry.previous_hash):
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    async def permission_history(self, role: str | None = None, module: str | None = None,
                                 limit: int = 50, offset: int = 0) -> list[AuditLog]:
        """Grant changes, newest first, optionally narrowed to a role and/or module."""
        query = select(AuditLog).where(AuditLog.resource_type == "permission")
        if role and module:
            query = query.where(AuditLog.resource_id == f"{role}:{module}")
        elif role:
            query = query.where(AuditLog.resource_id.startswith(f"{role}:", autoescape=True))
        elif module:
            query = query.where(AuditLog.resource_id.endswith(f":{module}", autoescape=True))
        query = query.order_by(AuditLog.id.desc()).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())


def entry_to_dict(entry: AuditLog) -> dict:
    return {
        "event_id": entry.event_id,
        "event_type": entry.event_type,
        "actor": entry.actor,
        "action": entry.action,
        "resource_id": entry.resource_id,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
