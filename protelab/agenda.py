"""
Delivery agenda: visible orders grouped by deadline day.
"""

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import bindparam, text

from protelab.config import AGENDA_MAX_DAYS
from protelab.database import fetch_all
from protelab.errors import ValidationError
from protelab.models import AccessContext
from protelab.permissions import is_super_admin, require_capability
from protelab.rbac import build_policy
from protelab.scoped_queries import present_order, scope_clause
from protelab.status_catalog import DISPLAY_GROUP_LABELS, display_group


def parse_day(value: Optional[str], name: str) -> date:
    try:
        return date.fromisoformat(str(value or "")[:10])
    except ValueError:
        raise ValidationError(f"{name} must be a date (YYYY-MM-DD).", name) from None


def _item_types(conn, order_ids: List[str]) -> Dict[str, set]:
    types: Dict[str, set] = {oid: set() for oid in order_ids}
    if not order_ids:
        return types
    stmt = text(
        "SELECT order_id, prosthesis_type FROM order_items WHERE order_id IN :ids"
    ).bindparams(bindparam("ids", expanding=True))
    for row in conn.execute(stmt, {"ids": order_ids}).mappings():
        types[row["order_id"]].add(row["prosthesis_type"])
    return types


def load_agenda(engine, ctx: AccessContext, start: date, end: date,
                prosthesis_types: Optional[Iterable[str]] = None,
                search: Optional[str] = None) -> Dict[str, Any]:
    """
    Orders whose deadline falls in [start, end], grouped by day.

    Only days with at least one order are listed. Each order carries the
    prosthesis types of its items (or its legacy inline type). `summary`
    counts orders per coarse display group; below the super-admin tier every
    order counts as pending because statuses are masked.
    """
    require_capability("agenda", ctx.role)
    if end < start:
        raise ValidationError("end must not be before start.", "end")
    if (end - start).days + 1 > AGENDA_MAX_DAYS:
        raise ValidationError(f"The agenda spans at most {AGENDA_MAX_DAYS} days.", "end")

    super_admin = is_super_admin(ctx.role)
    where, params = scope_clause(build_policy(ctx), "orders")
    params.update({"start": start.isoformat(), "stop": (end + timedelta(days=1)).isoformat()})
    sql = (
        "SELECT o.*, p.nome_completo AS patient_name FROM orders o "
        "LEFT JOIN patients p ON p.id = o.patient_id "
        f"WHERE {where} AND o.deadline >= :start AND o.deadline < :stop "
        "ORDER BY o.deadline ASC, o.created_at ASC"
    )
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)
        item_types = _item_types(conn, [r["id"] for r in rows])

    wanted = {t for t in (prosthesis_types or []) if t}
    term = (search or "").strip().lower()
    all_types = set()
    days: Dict[str, List[Dict[str, Any]]] = {}
    summary = {group: 0 for group in DISPLAY_GROUP_LABELS}

    for row in rows:
        types = set(item_types[row["id"]])
        if row.get("prosthesis_type"):
            types.add(row["prosthesis_type"])
        all_types |= types
        if wanted and not types & wanted:
            continue
        if term and term not in f"{row.get('patient_name') or ''} {row['dentist']}".lower():
            continue

        order = present_order(row, super_admin)
        order["prosthesis_types"] = sorted(types)
        days.setdefault(row["deadline"][:10], []).append(order)
        group = display_group(order["status"])
        if group is not None:
            summary[group] += 1

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "days": [{"date": day, "orders": orders} for day, orders in sorted(days.items())],
        "summary": {"total": sum(len(o) for o in days.values()), **summary},
        "prosthesis_types": sorted(all_types),
    }
