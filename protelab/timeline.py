"""
Order timeline: replays an order's audit log into lifecycle events.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import bindparam, text

from protelab.audit import list_entries
from protelab.models import AccessContext, AuditLogEntry, TimelineEvent
from protelab.permissions import is_super_admin
from protelab.rbac import build_policy
from protelab.scoped_queries import ensure_order_visible
from protelab.status_catalog import INITIAL_STATUS, get_status_label

logger = logging.getLogger(__name__)


def project_timeline(
    entries: Iterable[AuditLogEntry],
    viewer_is_super_admin: bool,
    names: Optional[Dict[str, str]] = None,
) -> List[TimelineEvent]:
    """
    Turn audit entries (oldest first) into timeline events.

    A `create` entry always yields an event. An `update` entry yields a
    `status_change` event only when its snapshots carry different statuses.
    Viewers below the super-admin tier get the `create` event alone.
    """
    names = names or {}
    events: List[TimelineEvent] = []

    for entry in entries:
        old = entry.old_values or {}
        new = entry.new_values or {}

        if entry.action == "create":
            action = "create"
            status = new.get("status") or INITIAL_STATUS
        elif entry.action == "update" and new.get("status") is not None \
                and old.get("status") != new.get("status"):
            action = "status_change"
            status = new["status"]
        else:
            continue

        events.append(TimelineEvent(
            id=entry.id,
            action=action,
            status=status,
            label=get_status_label(status, viewer_is_super_admin),
            created_at=entry.created_at,
            user_id=entry.user_id,
            user_name=names.get(entry.user_id) if entry.user_id else None,
        ))

    if not viewer_is_super_admin:
        events = [e for e in events if e.action == "create"]
    return events


def resolve_actor_names(conn, user_ids: Iterable[Optional[str]]) -> Dict[str, str]:
    """Best-effort id → display name lookup; failures yield no names."""
    ids = sorted({uid for uid in user_ids if uid})
    if not ids:
        return {}
    try:
        stmt = text(
            "SELECT id, name, nome_completo FROM profiles WHERE id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        rows = conn.execute(stmt, {"ids": ids}).mappings().all()
    except Exception as e:
        logger.warning("Could not resolve actor names for timeline: %s", e)
        return {}
    return {
        str(r["id"]): r["nome_completo"] or r["name"]
        for r in rows
        if r["nome_completo"] or r["name"]
    }


def load_order_timeline(engine, ctx: AccessContext, order_id: str) -> List[TimelineEvent]:
    """Fetch and project the full timeline of one order for *ctx*."""
    policy = build_policy(ctx)
    with engine.connect() as conn:
        ensure_order_visible(conn, policy, order_id)
        entries = list_entries(conn, "order", order_id)
        names = resolve_actor_names(conn, (e.user_id for e in entries))
    return project_timeline(entries, is_super_admin(ctx.role), names)


def watch_order_timeline(hub, engine, ctx: AccessContext, order_id: str,
                         on_update: Callable[[List[TimelineEvent]], None]):
    """
    Re-run the projection whenever an audit entry for *order_id* is published.

    Returns the hub subscription; call `unsubscribe()` to stop watching.
    """
    def _rerun(_row):
        on_update(load_order_timeline(engine, ctx, order_id))

    return hub.subscribe("audit_logs", {"entity_type": "order", "entity_id": order_id}, _rerun)
