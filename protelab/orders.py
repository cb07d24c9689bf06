"""
Order submission and item maintenance.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from protelab.audit import append_entry, entry_as_row
from protelab.database import (
    dump_json, fetch_all, fetch_one, insert_row, new_id, order_items, orders, utcnow_iso,
)
from protelab.errors import NotFound, PermissionDenied, ValidationError
from protelab.models import AccessContext, OrderItem, Role, normalize_teeth
from protelab.notifications import notify_role
from protelab.permissions import is_super_admin, require_capability
from protelab.rbac import build_policy
from protelab.scoped_queries import ensure_order_visible, row_visible
from protelab.status_catalog import INITIAL_STATUS

logger = logging.getLogger(__name__)

PRIORITIES = ("baixa", "normal", "alta", "urgente")


def _parse_items(raw_items: Optional[List[Dict[str, Any]]]) -> List[OrderItem]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list.", "items")
    return [OrderItem.from_dict(item) for item in raw_items]


def _insert_items(conn, order_id: str, items: List[OrderItem], now: str) -> None:
    for item in items:
        values = asdict(item)
        values["selected_teeth"] = dump_json(values["selected_teeth"])
        insert_row(conn, order_items, {
            "id": new_id(), "order_id": order_id, "created_at": now, "updated_at": now, **values,
        })


def create_order(engine, ctx: AccessContext, data: Dict[str, Any], hub=None) -> Dict[str, Any]:
    """
    Submit a new order for a patient visible to *ctx*.

    The order starts at the initial status, inherits the creator's branch and
    clinic, and its `create` audit entry is written in the same transaction.
    Every active admin_master is notified.
    """
    require_capability("pedidos", ctx.role)
    policy = build_policy(ctx)

    patient_id = data.get("patient_id")
    if not patient_id:
        raise ValidationError("patient_id is required.", "patient_id")
    priority = str(data.get("priority") or "normal").strip().lower()
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(PRIORITIES)}.", "priority")
    deadline = str(data.get("deadline") or "").strip()
    if not deadline:
        raise ValidationError("deadline is required.", "deadline")

    items = _parse_items(data.get("items"))
    teeth = normalize_teeth(data.get("selected_teeth"))
    prosthesis_type = data.get("prosthesis_type")
    if not items and not prosthesis_type:
        raise ValidationError("An order needs at least one item.", "items")

    order_id = new_id()
    now = utcnow_iso()
    with engine.begin() as conn:
        patient = fetch_one(conn, "SELECT * FROM patients WHERE id = :pid", {"pid": patient_id})
        if not patient:
            raise NotFound(f"Patient {patient_id} not found.")
        if not row_visible(policy, "patients", patient):
            raise PermissionDenied(f"Patient {patient_id} is outside your scope.")

        clinica_id = ctx.clinica_id or patient.get("clinica_id")
        filial_id = ctx.filial_id or patient.get("filial_id")
        if filial_id is None and clinica_id is not None:
            clinic = fetch_one(conn, "SELECT filial_id FROM clinicas WHERE id = :cid",
                               {"cid": clinica_id})
            filial_id = clinic["filial_id"] if clinic else None

        row = {
            "id": order_id,
            "user_id": ctx.user_id,
            "dentist": data.get("dentist") or ctx.display_name,
            "patient_id": patient_id,
            "clinica_id": clinica_id,
            "filial_id": filial_id,
            "prosthesis_type": prosthesis_type,
            "material": data.get("material"),
            "color": data.get("color"),
            "selected_teeth": dump_json(teeth),
            "priority": priority,
            "deadline": deadline,
            "delivery_address": data.get("delivery_address"),
            "observations": data.get("observations"),
            "status": INITIAL_STATUS,
            "created_at": now,
            "updated_at": now,
        }
        insert_row(conn, orders, row)
        _insert_items(conn, order_id, items, now)

        entry = append_entry(conn, "order", order_id, "create", ctx.user_id,
                             new_values={"status": INITIAL_STATUS, "patient_id": patient_id,
                                         "priority": priority, "item_count": len(items)})
        sent = notify_role(conn, Role.ADMIN_MASTER, "Novo pedido",
                           f"{row['dentist']} enviou um novo pedido.", "new_order", order_id)

    logger.info("Order %s created by %s with %d item(s)", order_id, ctx.user_id, len(items))
    if hub is not None:
        hub.publish("audit_logs", entry_as_row(entry))
        hub.publish("orders", {"id": order_id, "status": INITIAL_STATUS, "user_id": ctx.user_id})
        for notification in sent:
            hub.publish("notifications", notification)

    row["items"] = [asdict(i) for i in items]
    row["selected_teeth"] = teeth
    return row


def replace_items(engine, ctx: AccessContext, order_id: str,
                  raw_items: List[Dict[str, Any]], hub=None) -> List[Dict[str, Any]]:
    """
    Replace an order's item set.

    Allowed for the order's creator and for admin_master. The audit entry
    carries no status, so it never shows up on the timeline.
    """
    items = _parse_items(raw_items)
    if not items:
        raise ValidationError("An order needs at least one item.", "items")
    policy = build_policy(ctx)

    now = utcnow_iso()
    with engine.begin() as conn:
        order = ensure_order_visible(conn, policy, order_id)
        if order["user_id"] != ctx.user_id and not is_super_admin(ctx.role):
            raise PermissionDenied("Only the ordering dentist or admin_master may edit items.")

        previous = fetch_all(conn, "SELECT product_name FROM order_items WHERE order_id = :oid",
                             {"oid": order_id})
        conn.execute(text("DELETE FROM order_items WHERE order_id = :oid"), {"oid": order_id})
        _insert_items(conn, order_id, items, now)
        conn.execute(text("UPDATE orders SET updated_at = :now WHERE id = :oid"),
                     {"now": now, "oid": order_id})
        entry = append_entry(conn, "order", order_id, "update", ctx.user_id,
                             old_values={"items": [p["product_name"] for p in previous]},
                             new_values={"items": [i.product_name for i in items]})

    if hub is not None:
        hub.publish("audit_logs", entry_as_row(entry))
    return [asdict(i) for i in items]
