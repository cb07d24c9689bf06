"""
Per-actor notifications.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import text

from protelab.database import fetch_all, fetch_one, insert_row, new_id, notifications, utcnow_iso
from protelab.errors import NotFound
from protelab.models import AccessContext, Role


def create_notification(
    conn,
    user_id: str,
    title: str,
    message: str,
    type_: str,
    related_order_id: Optional[str] = None,
) -> Dict[str, Any]:
    row = {
        "id": new_id(),
        "user_id": user_id,
        "title": title,
        "message": message,
        "type": type_,
        "related_order_id": related_order_id,
        "read": False,
        "created_at": utcnow_iso(),
    }
    insert_row(conn, notifications, row)
    return row


def notify_role(conn, role: Role, title: str, message: str, type_: str,
                related_order_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Notify every active actor holding *role*."""
    recipients = fetch_all(
        conn,
        "SELECT id FROM profiles WHERE role_extended = :role AND ativo = :active",
        {"role": role.value, "active": True},
    )
    return [
        create_notification(conn, r["id"], title, message, type_, related_order_id)
        for r in recipients
    ]


def list_notifications(engine, ctx: AccessContext, unread_only: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM notifications WHERE user_id = :uid"
    if unread_only:
        sql += " AND read = :unread"
    sql += " ORDER BY created_at DESC"
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, {"uid": ctx.user_id, "unread": False})
    for r in rows:
        r["read"] = bool(r["read"])
    return rows


def mark_notification_read(engine, ctx: AccessContext, notification_id: str, hub=None) -> Dict[str, Any]:
    with engine.begin() as conn:
        row = fetch_one(
            conn,
            "SELECT * FROM notifications WHERE id = :nid AND user_id = :uid",
            {"nid": notification_id, "uid": ctx.user_id},
        )
        if not row:
            raise NotFound("Notification not found.")
        conn.execute(
            text("UPDATE notifications SET read = :read WHERE id = :nid"),
            {"read": True, "nid": notification_id},
        )
    row["read"] = True
    if hub is not None:
        hub.publish("notifications", row)
    return row
