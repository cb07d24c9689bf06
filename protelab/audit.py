"""
Append-only audit log.
"""

from typing import Any, Dict, List, Optional

from protelab.database import audit_logs, dump_json, fetch_all, insert_row, load_json, new_id, utcnow_iso
from protelab.models import AuditLogEntry


def append_entry(
    conn,
    entity_type: str,
    entity_id: str,
    action: str,
    user_id: Optional[str],
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> AuditLogEntry:
    """Write one entry on *conn*; the caller owns the transaction."""
    entry = AuditLogEntry(
        id=new_id(),
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        old_values=old_values,
        new_values=new_values,
        created_at=utcnow_iso(),
    )
    insert_row(conn, audit_logs, {
        "id": entry.id,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "user_id": entry.user_id,
        "old_values": dump_json(entry.old_values),
        "new_values": dump_json(entry.new_values),
        "created_at": entry.created_at,
    })
    return entry


def list_entries(conn, entity_type: str, entity_id: str) -> List[AuditLogEntry]:
    """All entries for one entity, oldest first."""
    rows = fetch_all(
        conn,
        """
        SELECT id, entity_type, entity_id, action, user_id, old_values, new_values, created_at
        FROM audit_logs
        WHERE entity_type = :etype AND entity_id = :eid
        ORDER BY created_at ASC, seq ASC
        """,
        {"etype": entity_type, "eid": entity_id},
    )
    return [
        AuditLogEntry(
            id=r["id"],
            entity_type=r["entity_type"],
            entity_id=r["entity_id"],
            action=r["action"],
            user_id=r["user_id"],
            old_values=load_json(r["old_values"]),
            new_values=load_json(r["new_values"]),
            created_at=r["created_at"],
        )
        for r in rows
    ]


def entry_as_row(entry: AuditLogEntry) -> Dict[str, Any]:
    """Shape published on the realtime hub after commit."""
    return {
        "id": entry.id,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "user_id": entry.user_id,
        "created_at": entry.created_at,
    }
