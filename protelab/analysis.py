"""
Dashboard analytics over the caller's visible orders.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from protelab.config import ANALYTICS_WINDOW_DAYS
from protelab.database import fetch_all
from protelab.models import AccessContext
from protelab.permissions import is_super_admin
from protelab.rbac import build_policy
from protelab.scoped_queries import scope_clause
from protelab.status_catalog import (
    CANCELLED, DELIVERED, DISPLAY_GROUP_LABELS, INITIAL_STATUS, STATUSES, TERMINAL_STATUSES,
    display_group, get_status_color, get_status_label, normalize_status,
)

ORDER_COLUMNS = ["id", "status", "priority", "prosthesis_type", "created_at"]
ITEM_COLUMNS = ["order_id", "prosthesis_type", "quantity"]


# ── Loading ──────────────────────────────────────────────────────────

def load_frames(engine, ctx: AccessContext):
    """
    Scoped orders and their items as DataFrames.

    Statuses are normalised to the canonical vocabulary, then masked to the
    initial status for viewers below the super-admin tier.
    """
    where, params = scope_clause(build_policy(ctx), "orders")
    with engine.connect() as conn:
        order_rows = fetch_all(
            conn,
            f"SELECT o.id, o.status, o.priority, o.prosthesis_type, o.created_at "
            f"FROM orders o WHERE {where}",
            params,
        )
        item_rows = fetch_all(
            conn,
            f"SELECT i.order_id, i.prosthesis_type, i.quantity FROM order_items i "
            f"JOIN orders o ON o.id = i.order_id WHERE {where}",
            params,
        )

    orders = pd.DataFrame(order_rows, columns=ORDER_COLUMNS)
    items = pd.DataFrame(item_rows, columns=ITEM_COLUMNS)
    if not orders.empty:
        orders["created_at"] = pd.to_datetime(orders["created_at"], utc=True, format="ISO8601")
        if is_super_admin(ctx.role):
            orders["status"] = orders["status"].map(lambda s: normalize_status(s) or s)
        else:
            orders["status"] = INITIAL_STATUS
    return orders, items


# ── Aggregations ─────────────────────────────────────────────────────

def orders_per_day(orders: pd.DataFrame, window_days: int = ANALYTICS_WINDOW_DAYS,
                   today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Order counts for each of the last *window_days* days, zero-filled."""
    today = today or datetime.now(timezone.utc).date()
    days = pd.date_range(end=pd.Timestamp(today), periods=window_days, freq="D").date
    if orders.empty:
        counts = pd.Series(0, index=days)
    else:
        counts = orders["created_at"].dt.date.value_counts().reindex(days, fill_value=0)
    return [{"date": d.isoformat(), "count": int(n)} for d, n in counts.items()]


def status_distribution(orders: pd.DataFrame, super_admin: bool) -> List[Dict[str, Any]]:
    counts = orders["status"].value_counts() if not orders.empty else pd.Series(dtype=int)
    result = []
    for definition in STATUSES:
        n = int(counts.get(definition.code, 0))
        if n == 0:
            continue
        result.append({
            "status": definition.code,
            "label": get_status_label(definition.code, super_admin),
            "color": get_status_color(definition.code),
            "count": n,
        })
    unknown = int(counts[~counts.index.isin([s.code for s in STATUSES])].sum()) if len(counts) else 0
    if unknown:
        result.append({"status": None, "label": get_status_label(None, super_admin),
                       "color": get_status_color(None), "count": unknown})
    return result


def display_group_distribution(orders: pd.DataFrame) -> List[Dict[str, Any]]:
    if orders.empty:
        return []
    groups = orders["status"].map(display_group).dropna().value_counts()
    return [
        {"group": group, "label": DISPLAY_GROUP_LABELS[group], "count": int(groups[group])}
        for group in DISPLAY_GROUP_LABELS
        if group in groups.index
    ]


def prosthesis_type_distribution(orders: pd.DataFrame, items: pd.DataFrame) -> List[Dict[str, Any]]:
    """Item prosthesis types, plus the inline type of orders that have no items."""
    itemised = set(items["order_id"]) if not items.empty else set()
    legacy = orders[~orders["id"].isin(itemised)]["prosthesis_type"] if not orders.empty \
        else pd.Series(dtype=object)
    types = pd.concat([items["prosthesis_type"], legacy], ignore_index=True).dropna()
    if types.empty:
        return []
    vc = types.value_counts()
    return [{"type": t, "count": int(n)} for t, n in vc.items()]


def priority_distribution(orders: pd.DataFrame) -> List[Dict[str, Any]]:
    if orders.empty:
        return []
    vc = orders["priority"].fillna("normal").value_counts()
    return [{"priority": p, "count": int(n)} for p, n in vc.items()]


def monthly_counts(orders: pd.DataFrame) -> List[Dict[str, Any]]:
    if orders.empty:
        return []
    months = orders["created_at"].dt.strftime("%Y-%m").value_counts().sort_index()
    return [{"month": m, "count": int(n)} for m, n in months.items()]


def headline_counters(orders: pd.DataFrame, today: Optional[date] = None) -> Dict[str, int]:
    today = today or datetime.now(timezone.utc).date()
    if orders.empty:
        return {"total": 0, "this_month": 0, "in_progress": 0, "delivered": 0, "cancelled": 0}
    created = orders["created_at"].dt
    this_month = (created.year == today.year) & (created.month == today.month)
    return {
        "total": int(len(orders)),
        "this_month": int(this_month.sum()),
        "in_progress": int((~orders["status"].isin(TERMINAL_STATUSES)).sum()),
        "delivered": int((orders["status"] == DELIVERED).sum()),
        "cancelled": int((orders["status"] == CANCELLED).sum()),
    }


def build_dashboard(engine, ctx: AccessContext, window_days: int = ANALYTICS_WINDOW_DAYS,
                    today: Optional[date] = None) -> Dict[str, Any]:
    orders, items = load_frames(engine, ctx)
    super_admin = is_super_admin(ctx.role)
    return {
        "counters": headline_counters(orders, today),
        "orders_per_day": orders_per_day(orders, window_days, today),
        "status_distribution": status_distribution(orders, super_admin),
        "display_groups": display_group_distribution(orders),
        "prosthesis_types": prosthesis_type_distribution(orders, items),
        "priorities": priority_distribution(orders),
        "monthly": monthly_counts(orders),
    }


# ── Text rendering ───────────────────────────────────────────────────

def format_dashboard(dashboard: Dict[str, Any]) -> str:
    """Markdown tables for the console."""
    pieces = ["Counters\n" + pd.DataFrame([dashboard["counters"]]).to_markdown(index=False)]
    for title, key in (("Status", "status_distribution"), ("Prosthesis types", "prosthesis_types"),
                       ("Priorities", "priorities"), ("Monthly", "monthly")):
        rows = dashboard[key]
        if not rows:
            pieces.append(f"{title}\n(no data)")
            continue
        frame = pd.DataFrame(rows)
        if key == "status_distribution":
            frame = frame[["label", "count"]]
        pieces.append(f"{title}\n" + frame.to_markdown(index=False))
    return "\n\n".join(pieces)
