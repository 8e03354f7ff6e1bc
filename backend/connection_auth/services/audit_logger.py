import json
import logging
from typing import Any, Dict, List, Optional

from connection_auth.auth.identity import RequestContext
from connection_auth.core.clock import Clock, from_db, to_db, utcnow
from connection_auth.db.database import connect
from connection_auth.models.audit import AuditAction, AuditEvent, AuditLogEntry, AuditStatus

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only security event log.

    ``record`` never raises: a failed audit write is reported to the
    operational log and the audited request carries on.
    """

    def __init__(self, db_path: str, clock: Clock = utcnow):
        self.db_path = db_path
        self.clock = clock

    async def record(self, event: AuditEvent) -> None:
        try:
            details = json.dumps(event.details, default=str)
            async with connect(self.db_path) as db:
                await db.execute("""
                    INSERT INTO audit_logs (
                        user_id, username, action, entity_type, entity_id, status,
                        ip_address, user_agent, details, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    event.user_id,
                    event.username,
                    AuditAction(event.action).value,
                    event.entity_type,
                    event.entity_id,
                    AuditStatus(event.status).value,
                    event.ip_address,
                    event.user_agent,
                    details,
                    to_db(self.clock()),
                ))
                await db.commit()
        except Exception as e:
            logger.error(f"Failed to write audit log ({event.action}): {e}")

    async def log(
        self,
        action: AuditAction,
        ctx: Optional[RequestContext] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        **details: Any,
    ) -> None:
        """Convenience wrapper that fills client fields from the request context"""
        await self.record(AuditEvent(
            action=action,
            status=status,
            user_id=user_id,
            username=username,
            entity_type=entity_type,
            entity_id=entity_id,
            ip_address=ctx.ip_address if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
            details=details,
        ))

    async def list_entries(
        self,
        limit: int = 100,
        action: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> List[AuditLogEntry]:
        """Newest first"""
        query = "SELECT * FROM audit_logs"
        conditions = []
        params: List[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        async with connect(self.db_path) as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            return [self._to_entry(dict(row)) for row in rows]

    @staticmethod
    def _to_entry(row: Dict[str, Any]) -> AuditLogEntry:
        try:
            details = json.loads(row["details"]) if row["details"] else {}
        except json.JSONDecodeError:
            details = {"raw": row["details"]}
        return AuditLogEntry(
            id=row["id"],
            action=row["action"],
            status=row["status"],
            created_at=from_db(row["created_at"]),
            user_id=row["user_id"],
            username=row["username"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            details=details,
        )
