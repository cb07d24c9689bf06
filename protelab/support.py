"""
Support chat between practice users and the laboratory's admin_master tier.

A user holds at most one active conversation. Each side keeps its own unread
counter, reset when that side marks the conversation read.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from protelab.config import SUPPORT_MESSAGE_MAX_LENGTH
from protelab.database import (
    fetch_all, fetch_one, insert_row, new_id, support_chat_messages, support_conversations,
    utcnow_iso,
)
from protelab.errors import Conflict, NotFound, PermissionDenied, ValidationError
from protelab.models import AccessContext
from protelab.permissions import is_super_admin, require_capability, require_super_admin

logger = logging.getLogger(__name__)

ACTIVE = "active"
CLOSED = "closed"
DENTIST_SIDE = "dentist"
ADMIN_SIDE = "admin"


def _as_conversation(row: Dict[str, Any]) -> Dict[str, Any]:
    row["unread_by_admin"] = int(row["unread_by_admin"] or 0)
    row["unread_by_dentist"] = int(row["unread_by_dentist"] or 0)
    return row


def _as_message(row: Dict[str, Any]) -> Dict[str, Any]:
    row["read_by_admin"] = bool(row["read_by_admin"])
    row["read_by_dentist"] = bool(row["read_by_dentist"])
    return row


def _load(conn, ctx: AccessContext, conversation_id: str):
    """Conversation row and the side *ctx* speaks for in it."""
    row = fetch_one(conn, "SELECT * FROM support_conversations WHERE id = :cid",
                    {"cid": conversation_id})
    if not row:
        raise NotFound(f"Conversation {conversation_id} not found.")
    if row["dentist_id"] == ctx.user_id:
        return row, DENTIST_SIDE
    if is_super_admin(ctx.role):
        return row, ADMIN_SIDE
    raise PermissionDenied(f"Conversation {conversation_id} belongs to another user.")


def open_conversation(engine, ctx: AccessContext) -> Dict[str, Any]:
    """The caller's active conversation, started on first use."""
    require_capability("contato", ctx.role)
    if is_super_admin(ctx.role):
        raise PermissionDenied("admin_master answers conversations from the support inbox.")
    with engine.begin() as conn:
        row = fetch_one(
            conn,
            "SELECT * FROM support_conversations WHERE dentist_id = :uid AND status = :active "
            "ORDER BY created_at DESC",
            {"uid": ctx.user_id, "active": ACTIVE},
        )
        if row:
            return _as_conversation(row)
        now = utcnow_iso()
        row = {
            "id": new_id(),
            "dentist_id": ctx.user_id,
            "dentist_name": ctx.display_name,
            "status": ACTIVE,
            "unread_by_admin": 0,
            "unread_by_dentist": 0,
            "last_message_at": now,
            "created_at": now,
        }
        insert_row(conn, support_conversations, row)
    logger.info("Support conversation %s opened by %s", row["id"], ctx.user_id)
    return row


def list_conversations(engine, ctx: AccessContext, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Support inbox, most recent activity first."""
    require_capability("supportAdmin", ctx.role)
    sql = "SELECT * FROM support_conversations"
    params: Dict[str, Any] = {}
    if status is not None:
        sql += " WHERE status = :status"
        params["status"] = status
    sql += " ORDER BY last_message_at DESC"
    with engine.connect() as conn:
        return [_as_conversation(r) for r in fetch_all(conn, sql, params)]


def list_messages(engine, ctx: AccessContext, conversation_id: str) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        _load(conn, ctx, conversation_id)
        rows = fetch_all(
            conn,
            "SELECT * FROM support_chat_messages WHERE conversation_id = :cid "
            "ORDER BY created_at ASC",
            {"cid": conversation_id},
        )
    return [_as_message(r) for r in rows]


def send_message(engine, ctx: AccessContext, conversation_id: str, message: str,
                 hub=None) -> Dict[str, Any]:
    """Append a message and bump the other side's unread counter."""
    body = str(message or "").strip()
    if not body:
        raise ValidationError("message is required.", "message")
    if len(body) > SUPPORT_MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"message is longer than {SUPPORT_MESSAGE_MAX_LENGTH} characters.", "message")

    now = utcnow_iso()
    with engine.begin() as conn:
        conversation, side = _load(conn, ctx, conversation_id)
        if conversation["status"] != ACTIVE:
            raise Conflict(f"Conversation {conversation_id} is closed.")
        row = {
            "id": new_id(),
            "conversation_id": conversation_id,
            "user_id": ctx.user_id,
            "sender_type": side,
            "message": body,
            "read_by_admin": side == ADMIN_SIDE,
            "read_by_dentist": side == DENTIST_SIDE,
            "created_at": now,
        }
        insert_row(conn, support_chat_messages, row)
        counter = "unread_by_admin" if side == DENTIST_SIDE else "unread_by_dentist"
        conn.execute(
            text(f"UPDATE support_conversations SET {counter} = {counter} + 1, "
                 "last_message_at = :now WHERE id = :cid"),
            {"now": now, "cid": conversation_id},
        )

    if hub is not None:
        hub.publish("support_chat_messages", row)
    return row


def mark_conversation_read(engine, ctx: AccessContext, conversation_id: str) -> Dict[str, Any]:
    """Mark the other side's messages read for the caller's side and reset its counter."""
    with engine.begin() as conn:
        _, side = _load(conn, ctx, conversation_id)
        if side == ADMIN_SIDE:
            flag, counter, sender = "read_by_admin", "unread_by_admin", DENTIST_SIDE
        else:
            flag, counter, sender = "read_by_dentist", "unread_by_dentist", ADMIN_SIDE
        conn.execute(
            text(f"UPDATE support_chat_messages SET {flag} = :read "
                 "WHERE conversation_id = :cid AND sender_type = :sender"),
            {"read": True, "cid": conversation_id, "sender": sender},
        )
        conn.execute(text(f"UPDATE support_conversations SET {counter} = 0 WHERE id = :cid"),
                     {"cid": conversation_id})
        row = fetch_one(conn, "SELECT * FROM support_conversations WHERE id = :cid",
                        {"cid": conversation_id})
    return _as_conversation(row)


def close_conversation(engine, ctx: AccessContext, conversation_id: str) -> Dict[str, Any]:
    require_super_admin(ctx.role, "closing support conversations")
    with engine.begin() as conn:
        _load(conn, ctx, conversation_id)
        conn.execute(text("UPDATE support_conversations SET status = :closed WHERE id = :cid"),
                     {"closed": CLOSED, "cid": conversation_id})
        row = fetch_one(conn, "SELECT * FROM support_conversations WHERE id = :cid",
                        {"cid": conversation_id})
    logger.info("Support conversation %s closed by %s", conversation_id, ctx.user_id)
    return _as_conversation(row)
