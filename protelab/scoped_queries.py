"""
Scoped list/detail queries.

Every read is bounded by the caller's Policy: admin_master sees all rows,
branch and clinic admins see rows of their own branch or clinic, dentists see
only what they created. Store-side row security is expected to agree; this
layer does not rely on it.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from protelab.config import MAX_RESULTS_RETURN
from protelab.database import fetch_all, fetch_one, load_json
from protelab.errors import NotFound, PermissionDenied
from protelab.models import AccessContext, Policy
from protelab.permissions import is_super_admin, require_capability
from protelab.rbac import build_policy
from protelab.status_catalog import INITIAL_STATUS, get_status_color, get_status_label

logger = logging.getLogger(__name__)

# Column bounding each entity for each policy scope; None means the scope
# grants no rows of that entity.
SCOPE_COLUMNS: Dict[str, Dict[str, Optional[str]]] = {
    "orders":   {"filial": "o.filial_id", "clinica": "o.clinica_id", "own": "o.user_id"},
    "patients": {"filial": "filial_id", "clinica": "clinica_id", "own": "dentist_id"},
    "profiles": {"filial": "filial_id", "clinica": "clinica_id", "own": "id"},
    "clinicas": {"filial": "c.filial_id", "clinica": "c.id", "own": None},
    "filiais":  {"filial": "id", "clinica": None, "own": None},
}


def scope_clause(policy: Policy, entity: str) -> Tuple[str, Dict[str, Any]]:
    """SQL predicate and parameters restricting *entity* rows to *policy*."""
    if policy.scope == "global":
        return "1 = 1", {}
    column = SCOPE_COLUMNS[entity].get(policy.scope)
    if column is None:
        raise PermissionDenied(f"Role {policy.role.value} cannot list {entity}.")
    return f"{column} = :scope_value", {"scope_value": policy.scope_value}


def row_visible(policy: Policy, entity: str, row: Dict[str, Any]) -> bool:
    """Same rule as scope_clause, evaluated on an already-fetched row."""
    if policy.scope == "global":
        return True
    column = SCOPE_COLUMNS[entity].get(policy.scope)
    if column is None:
        return False
    return row.get(column.split(".")[-1]) == policy.scope_value


def clamp_limit(limit) -> int:
    """Row cap for list queries, between 1 and MAX_RESULTS_RETURN."""
    return max(1, min(int(limit), MAX_RESULTS_RETURN))


# ── Orders ───────────────────────────────────────────────────────────

_ORDER_SELECT = """
    SELECT o.*, p.nome_completo AS patient_name
    FROM orders o
    LEFT JOIN patients p ON p.id = o.patient_id
"""


def present_order(row: Dict[str, Any], super_admin: bool) -> Dict[str, Any]:
    """Shape an order row for a viewer, hiding internal stages when required."""
    order = dict(row)
    order["selected_teeth"] = load_json(order.get("selected_teeth")) or []
    if not super_admin:
        # Pipeline moves bump updated_at, so it is pinned to creation time here.
        order["status"] = INITIAL_STATUS
        order["updated_at"] = order.get("created_at")
    order["status_label"] = get_status_label(order["status"], super_admin)
    order["status_color"] = get_status_color(order["status"])
    return order


def list_orders(engine, ctx: AccessContext, status: Optional[str] = None,
                patient_id: Optional[str] = None, dentist_id: Optional[str] = None,
                limit: int = MAX_RESULTS_RETURN) -> List[Dict[str, Any]]:
    policy = build_policy(ctx)
    super_admin = is_super_admin(ctx.role)
    if status is not None and not super_admin:
        raise PermissionDenied("Filtering orders by status requires admin_master.")

    where, params = scope_clause(policy, "orders")
    clauses = [where]
    if status is not None:
        clauses.append("o.status = :status")
        params["status"] = status
    if patient_id is not None:
        clauses.append("o.patient_id = :patient_id")
        params["patient_id"] = patient_id
    if dentist_id is not None:
        clauses.append("o.user_id = :dentist_id")
        params["dentist_id"] = dentist_id
    params["limit"] = clamp_limit(limit)

    sql = (_ORDER_SELECT + " WHERE " + " AND ".join(clauses)
           + " ORDER BY o.created_at DESC LIMIT :limit")
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)
    return [present_order(r, super_admin) for r in rows]


def ensure_order_visible(conn, policy: Policy, order_id: str) -> Dict[str, Any]:
    """Return the raw order row, or raise NotFound / PermissionDenied."""
    row = fetch_one(conn, _ORDER_SELECT + " WHERE o.id = :oid", {"oid": order_id})
    if not row:
        raise NotFound(f"Order {order_id} not found.")
    if not row_visible(policy, "orders", row):
        raise PermissionDenied(f"Order {order_id} is outside your scope.")
    return row


def get_order(engine, ctx: AccessContext, order_id: str) -> Dict[str, Any]:
    """Order detail with its items and images."""
    policy = build_policy(ctx)
    with engine.connect() as conn:
        row = ensure_order_visible(conn, policy, order_id)
        items = fetch_all(
            conn,
            "SELECT * FROM order_items WHERE order_id = :oid ORDER BY created_at ASC",
            {"oid": order_id},
        )
        images = fetch_all(
            conn,
            "SELECT id, image_url, annotations, created_at FROM order_images "
            "WHERE order_id = :oid ORDER BY created_at ASC",
            {"oid": order_id},
        )
    order = present_order(row, is_super_admin(ctx.role))
    for item in items:
        item["selected_teeth"] = load_json(item["selected_teeth"]) or []
    for image in images:
        image["annotations"] = load_json(image["annotations"])
    order["items"] = items
    order["images"] = images
    return order


# ── Patients ─────────────────────────────────────────────────────────

def list_patients(engine, ctx: AccessContext, search: Optional[str] = None,
                  limit: int = MAX_RESULTS_RETURN) -> List[Dict[str, Any]]:
    require_capability("pacientes", ctx.role)
    where, params = scope_clause(build_policy(ctx), "patients")
    sql = f"SELECT * FROM patients WHERE {where}"
    if search:
        sql += " AND (lower(nome_completo) LIKE :term OR cpf LIKE :term)"
        params["term"] = f"%{search.strip().lower()}%"
    sql += " ORDER BY nome_completo ASC LIMIT :limit"
    params["limit"] = clamp_limit(limit)
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)
    for r in rows:
        r["ativo"] = bool(r["ativo"])
    return rows


def get_patient(engine, ctx: AccessContext, patient_id: str) -> Dict[str, Any]:
    policy = build_policy(ctx)
    with engine.connect() as conn:
        row = fetch_one(conn, "SELECT * FROM patients WHERE id = :pid", {"pid": patient_id})
    if not row:
        raise NotFound(f"Patient {patient_id} not found.")
    if not row_visible(policy, "patients", row):
        raise PermissionDenied(f"Patient {patient_id} is outside your scope.")
    row["ativo"] = bool(row["ativo"])
    return row


# ── Dentists ─────────────────────────────────────────────────────────

def count_dentist_orders(engine, dentist_id: str) -> int:
    with engine.connect() as conn:
        row = fetch_one(conn, "SELECT COUNT(*) AS n FROM orders WHERE user_id = :uid",
                        {"uid": dentist_id})
    return int(row["n"]) if row else 0


def list_dentists(engine, ctx: AccessContext) -> List[Dict[str, Any]]:
    """Dentist directory; a plain dentist gets their own profile only."""
    policy = build_policy(ctx)
    where, params = scope_clause(policy, "profiles")
    sql = ("SELECT id, name, nome_completo, email, cro, telefone, role_extended, "
           "filial_id, clinica_id, ativo, created_at, updated_at FROM profiles "
           f"WHERE {where}")
    if policy.scope != "own":
        sql += " AND role_extended = :dentist_role"
        params["dentist_role"] = "dentist"
    sql += " ORDER BY nome_completo ASC, name ASC"
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)

    for r in rows:
        r["ativo"] = bool(r["ativo"])
        try:
            r["order_count"] = count_dentist_orders(engine, r["id"])
        except Exception as e:
            logger.warning("Order count failed for dentist %s: %s", r["id"], e)
            r["order_count"] = 0
    return rows


# ── Clinics / branches ───────────────────────────────────────────────

def count_clinic_members(engine, clinic_id: str) -> Dict[str, int]:
    with engine.connect() as conn:
        dentists = fetch_one(
            conn,
            "SELECT COUNT(*) AS n FROM profiles WHERE clinica_id = :cid AND role_extended = :role",
            {"cid": clinic_id, "role": "dentist"},
        )
        patients = fetch_one(conn, "SELECT COUNT(*) AS n FROM patients WHERE clinica_id = :cid",
                             {"cid": clinic_id})
    return {"qntd_dentistas": int(dentists["n"]), "qntd_pacientes": int(patients["n"])}


def count_branch_members(engine, branch_id: str) -> Dict[str, int]:
    with engine.connect() as conn:
        clinics = fetch_one(conn, "SELECT COUNT(*) AS n FROM clinicas WHERE filial_id = :fid",
                            {"fid": branch_id})
        patients = fetch_one(conn, "SELECT COUNT(*) AS n FROM patients WHERE filial_id = :fid",
                             {"fid": branch_id})
    return {"qntd_clinicas": int(clinics["n"]), "qntd_pacientes": int(patients["n"])}


def list_clinics(engine, ctx: AccessContext) -> List[Dict[str, Any]]:
    """Clinics in scope, each with dentist/patient counts (zero when a count fails)."""
    require_capability("clinicas", ctx.role)
    where, params = scope_clause(build_policy(ctx), "clinicas")
    sql = ("SELECT c.*, f.nome_completo AS filial_nome FROM clinicas c "
           "LEFT JOIN filiais f ON f.id = c.filial_id "
           f"WHERE {where} "
           "ORDER BY c.nome_completo ASC")
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)

    for r in rows:
        r["ativo"] = bool(r["ativo"])
        try:
            r.update(count_clinic_members(engine, r["id"]))
        except Exception as e:
            logger.warning("Member counts failed for clinic %s: %s", r["id"], e)
            r.update({"qntd_dentistas": 0, "qntd_pacientes": 0})
    return rows


def list_branches(engine, ctx: AccessContext) -> List[Dict[str, Any]]:
    """Branches in scope, each with clinic/patient counts (zero when a count fails)."""
    require_capability("filiais", ctx.role)
    where, params = scope_clause(build_policy(ctx), "filiais")
    sql = f"SELECT * FROM filiais WHERE {where} ORDER BY nome_completo ASC"
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, params)

    for r in rows:
        r["ativo"] = bool(r["ativo"])
        try:
            r.update(count_branch_members(engine, r["id"]))
        except Exception as e:
            logger.warning("Member counts failed for branch %s: %s", r["id"], e)
            r.update({"qntd_clinicas": 0, "qntd_pacientes": 0})
    return rows
