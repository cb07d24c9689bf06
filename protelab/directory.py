"""
Organisational directory writes: clinics, branches and patients.
"""

import logging
from typing import Any, Dict

from sqlalchemy import text

from protelab.database import clinicas, fetch_one, insert_row, new_id, patients, utcnow_iso
from protelab.errors import Conflict, NotFound, PermissionDenied, ValidationError
from protelab.models import AccessContext, Role
from protelab.permissions import (
    can_manage_clinics_in, is_super_admin, require_capability, require_super_admin,
)
from protelab.rbac import build_policy
from protelab.scoped_queries import row_visible

logger = logging.getLogger(__name__)

CLINIC_FIELDS = ("nome_completo", "cnpj", "endereco", "telefone", "email", "cep",
                 "cidade", "estado", "numero", "complemento", "ativo")
BRANCH_FIELDS = ("nome_completo", "endereco", "telefone", "email", "cnpj", "cep",
                 "cidade", "estado", "numero", "complemento", "ativo")
PATIENT_FIELDS = ("nome_completo", "cpf", "telefone_contato", "email_contato", "observacoes", "ativo")


def _require_fields(data: Dict[str, Any], names) -> None:
    for name in names:
        if not str(data.get(name) or "").strip():
            raise ValidationError(f"{name} is required.", name)


def _update(conn, table: str, row_id: str, data: Dict[str, Any], allowed) -> Dict[str, Any]:
    updates = {k: v for k, v in data.items() if k in allowed}
    if not updates:
        raise ValidationError("No updatable field was provided.")
    updates["updated_at"] = utcnow_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    conn.execute(text(f"UPDATE {table} SET {assignments} WHERE id = :row_id"),
                 {**updates, "row_id": row_id})
    return fetch_one(conn, f"SELECT * FROM {table} WHERE id = :row_id", {"row_id": row_id})


# ── Clinics ──────────────────────────────────────────────────────────

def create_clinic(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create a clinic; branch admins may only create inside their own branch."""
    _require_fields(data, ("nome_completo", "cnpj", "telefone", "email"))
    filial_id = data.get("filial_id")
    if ctx.role is Role.ADMIN_FILIAL and filial_id is None:
        filial_id = ctx.filial_id
    if not can_manage_clinics_in(ctx.role, ctx.filial_id, filial_id):
        raise PermissionDenied("You cannot create clinics in this branch.")

    now = utcnow_iso()
    row = {k: data.get(k) for k in CLINIC_FIELDS}
    row.update({"id": new_id(), "filial_id": filial_id, "ativo": data.get("ativo", True),
                "created_at": now, "updated_at": now})
    with engine.begin() as conn:
        if filial_id is not None and not fetch_one(conn, "SELECT id FROM filiais WHERE id = :fid",
                                                   {"fid": filial_id}):
            raise NotFound(f"Branch {filial_id} not found.")
        insert_row(conn, clinicas, row)
    logger.info("Clinic %s created by %s", row["id"], ctx.user_id)
    return row


def _load_managed_clinic(conn, ctx: AccessContext, clinic_id: str) -> Dict[str, Any]:
    clinic = fetch_one(conn, "SELECT * FROM clinicas WHERE id = :cid", {"cid": clinic_id})
    if not clinic:
        raise NotFound(f"Clinic {clinic_id} not found.")
    if not can_manage_clinics_in(ctx.role, ctx.filial_id, clinic["filial_id"]):
        raise PermissionDenied("You cannot manage this clinic.")
    return clinic


def update_clinic(engine, ctx: AccessContext, clinic_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Edit clinic fields; the branch link is not editable here."""
    with engine.begin() as conn:
        _load_managed_clinic(conn, ctx, clinic_id)
        return _update(conn, "clinicas", clinic_id, data, CLINIC_FIELDS)


def delete_clinic(engine, ctx: AccessContext, clinic_id: str) -> None:
    with engine.begin() as conn:
        _load_managed_clinic(conn, ctx, clinic_id)
        members = fetch_one(
            conn,
            "SELECT (SELECT COUNT(*) FROM profiles WHERE clinica_id = :cid) + "
            "(SELECT COUNT(*) FROM patients WHERE clinica_id = :cid) AS n",
            {"cid": clinic_id},
        )
        if members and members["n"]:
            raise Conflict("Clinic still has dentists or patients linked to it.")
        conn.execute(text("DELETE FROM clinicas WHERE id = :cid"), {"cid": clinic_id})
    logger.info("Clinic %s deleted by %s", clinic_id, ctx.user_id)


# ── Branches (creation is a privileged operation, see admin_ops) ─────

def update_branch(engine, ctx: AccessContext, branch_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "branch updates")
    with engine.begin() as conn:
        if not fetch_one(conn, "SELECT id FROM filiais WHERE id = :fid", {"fid": branch_id}):
            raise NotFound(f"Branch {branch_id} not found.")
        return _update(conn, "filiais", branch_id, data, BRANCH_FIELDS)


def delete_branch(engine, ctx: AccessContext, branch_id: str) -> None:
    require_super_admin(ctx.role, "branch deletion")
    with engine.begin() as conn:
        if not fetch_one(conn, "SELECT id FROM filiais WHERE id = :fid", {"fid": branch_id}):
            raise NotFound(f"Branch {branch_id} not found.")
        clinics = fetch_one(conn, "SELECT COUNT(*) AS n FROM clinicas WHERE filial_id = :fid",
                            {"fid": branch_id})
        if clinics["n"]:
            raise Conflict("Branch still has clinics.")
        conn.execute(text("DELETE FROM filiais WHERE id = :fid"), {"fid": branch_id})


# ── Patients ─────────────────────────────────────────────────────────

def _patient_clinic(conn, ctx: AccessContext, policy, clinic_id):
    """Clinic row a new patient is bound to, checked against the caller's scope."""
    if clinic_id is None:
        return None
    clinic = fetch_one(conn, "SELECT * FROM clinicas WHERE id = :cid", {"cid": clinic_id})
    if not clinic:
        raise NotFound(f"Clinic {clinic_id} not found.")
    if clinic_id != ctx.clinica_id and not row_visible(policy, "clinicas", clinic):
        raise PermissionDenied(f"Clinic {clinic_id} is outside your scope.")
    return clinic


def _patient_dentist(conn, policy, dentist_id, clinic):
    """Dentist profile a new patient is assigned to, checked against the caller's scope."""
    if dentist_id is None:
        return None
    dentist = fetch_one(conn, "SELECT * FROM profiles WHERE id = :did", {"did": dentist_id})
    if not dentist or dentist["role_extended"] != Role.DENTIST.value:
        raise NotFound(f"Dentist {dentist_id} not found.")
    if not row_visible(policy, "profiles", dentist):
        raise PermissionDenied(f"Dentist {dentist_id} is outside your scope.")
    if clinic is not None and dentist["clinica_id"] not in (None, clinic["id"]):
        raise ValidationError("The dentist does not work at the patient's clinic.", "dentist_id")
    return dentist


def create_patient(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Register a patient inside the creator's scope.

    The clinic comes from the creator's own clinic link when there is one,
    otherwise from the request, and must be visible to the creator. The branch
    always follows the clinic. Dentists own the patients they register; other
    tiers may assign a dentist they can see.
    """
    require_capability("pacientes", ctx.role)
    _require_fields(data, ("nome_completo", "cpf", "telefone_contato", "email_contato"))
    policy = build_policy(ctx)

    with engine.begin() as conn:
        clinic = _patient_clinic(conn, ctx, policy, ctx.clinica_id or data.get("clinica_id"))
        if ctx.role is Role.DENTIST:
            dentist_id = ctx.user_id
        else:
            dentist = _patient_dentist(conn, policy, data.get("dentist_id"), clinic)
            dentist_id = dentist["id"] if dentist else None

        if clinic is not None:
            filial_id = clinic["filial_id"]
        elif is_super_admin(ctx.role):
            filial_id = data.get("filial_id")
            if filial_id is not None and not fetch_one(
                    conn, "SELECT id FROM filiais WHERE id = :fid", {"fid": filial_id}):
                raise NotFound(f"Branch {filial_id} not found.")
        else:
            filial_id = ctx.filial_id

        now = utcnow_iso()
        row = {k: data.get(k) for k in PATIENT_FIELDS}
        row.update({
            "id": new_id(),
            "dentist_id": dentist_id,
            "clinica_id": clinic["id"] if clinic else None,
            "filial_id": filial_id,
            "ativo": data.get("ativo", True),
            "created_at": now,
            "updated_at": now,
        })
        insert_row(conn, patients, row)
    logger.info("Patient %s created by %s", row["id"], ctx.user_id)
    return row
