"""
Privileged account and organisation operations.

Each function re-checks that the caller is admin_master before touching the
identity table, no matter what the API layer already verified.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from werkzeug.security import generate_password_hash

from protelab.config import MIN_PASSWORD_LENGTH, USER_LINK_FIELDS
from protelab.database import (
    auth_users, fetch_all, fetch_one, filiais, insert_row, new_id, profiles, utcnow_iso,
)
from protelab.errors import Conflict, NotFound, ValidationError
from protelab.models import AccessContext, Role
from protelab.permissions import require_super_admin

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email is required.", "email")
    return email


def _check_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must have at least {MIN_PASSWORD_LENGTH} characters.", "password"
        )
    return password


def _check_links(conn, role: Role, filial_id: Optional[str], clinica_id: Optional[str]) -> Optional[str]:
    """Validate the organisational links a role needs; returns the effective filial_id."""
    if role is Role.ADMIN_FILIAL and not filial_id:
        raise ValidationError("admin_filial accounts need a filial_id.", "filial_id")
    if role in (Role.ADMIN_CLINICA, Role.DENTIST) and not clinica_id:
        raise ValidationError(f"{role.value} accounts need a clinica_id.", "clinica_id")

    if clinica_id:
        clinic = fetch_one(conn, "SELECT filial_id FROM clinicas WHERE id = :cid", {"cid": clinica_id})
        if not clinic:
            raise NotFound(f"Clinic {clinica_id} not found.")
        filial_id = filial_id or clinic["filial_id"]
    if filial_id and not fetch_one(conn, "SELECT id FROM filiais WHERE id = :fid", {"fid": filial_id}):
        raise NotFound(f"Branch {filial_id} not found.")
    return filial_id


# ── Organisation ─────────────────────────────────────────────────────

def create_branch(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "branch creation")
    for name in ("nome_completo", "endereco"):
        if not str(data.get(name) or "").strip():
            raise ValidationError(f"{name} is required.", name)
    email = data.get("email")
    if email:
        email = _clean_email(email)

    now = utcnow_iso()
    row = {
        "id": new_id(),
        "nome_completo": data["nome_completo"].strip(),
        "endereco": data["endereco"].strip(),
        "telefone": data.get("telefone"),
        "email": email,
        "cnpj": data.get("cnpj"),
        "cep": data.get("cep"),
        "cidade": data.get("cidade"),
        "estado": data.get("estado"),
        "numero": data.get("numero"),
        "complemento": data.get("complemento"),
        "ativo": True,
        "created_at": now,
        "updated_at": now,
    }
    with engine.begin() as conn:
        insert_row(conn, filiais, row)
    logger.info("Branch %s created by %s", row["id"], ctx.user_id)
    return row


# ── Accounts ─────────────────────────────────────────────────────────

def create_user(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Provision an identity plus its profile.

    When an identity already exists for the email it is reused: the password
    is reset to the one supplied and the profile is created or overwritten.
    The result reports ``reused`` so callers can tell the two cases apart.
    """
    require_super_admin(ctx.role, "account creation")
    email = _clean_email(data.get("email"))
    password = _check_password(data.get("password"))
    try:
        role = Role.parse(data.get("role_extended") or data.get("role"))
    except ValueError as e:
        raise ValidationError(str(e), "role_extended") from None
    nome = str(data.get("nome_completo") or data.get("name") or "").strip()
    if not nome:
        raise ValidationError("nome_completo is required.", "nome_completo")

    now = utcnow_iso()
    with engine.begin() as conn:
        filial_id = _check_links(conn, role, data.get("filial_id"), data.get("clinica_id"))

        existing = fetch_one(conn, "SELECT id FROM auth_users WHERE lower(email) = :email",
                             {"email": email})
        if existing:
            user_id = existing["id"]
            conn.execute(
                text("UPDATE auth_users SET password_hash = :ph WHERE id = :uid"),
                {"ph": generate_password_hash(password), "uid": user_id},
            )
            logger.warning("Reusing existing identity %s for %s", user_id, email)
        else:
            user_id = new_id()
            insert_row(conn, auth_users, {
                "id": user_id,
                "email": email,
                "password_hash": generate_password_hash(password),
                "email_confirmed_at": now,
                "created_at": now,
            })

        profile = {
            "name": nome,
            "nome_completo": nome,
            "email": email,
            "role_extended": role.value,
            "filial_id": filial_id,
            "clinica_id": data.get("clinica_id"),
            "telefone": data.get("telefone"),
            "documento": data.get("documento"),
            "cro": data.get("cro"),
            "cpf": data.get("cpf"),
            "ativo": True,
            "updated_at": now,
        }
        if fetch_one(conn, "SELECT id FROM profiles WHERE id = :uid", {"uid": user_id}):
            assignments = ", ".join(f"{k} = :{k}" for k in profile)
            conn.execute(text(f"UPDATE profiles SET {assignments} WHERE id = :uid"),
                         {**profile, "uid": user_id})
        else:
            insert_row(conn, profiles, {"id": user_id, "created_at": now, **profile})

    logger.info("Account %s (%s) provisioned by %s", user_id, role.value, ctx.user_id)
    return {"user_id": user_id, "email": email, "role": role.value, "reused": bool(existing)}


def update_user_links(engine, ctx: AccessContext, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Update whitelisted profile fields; unknown keys are ignored."""
    require_super_admin(ctx.role, "account updates")
    updates = {k: v for k, v in data.items() if k in USER_LINK_FIELDS}
    if not updates:
        raise ValidationError("No updatable field was provided.")
    if "email" in updates:
        updates["email"] = _clean_email(updates["email"])

    with engine.begin() as conn:
        current = fetch_one(conn, "SELECT * FROM profiles WHERE id = :uid", {"uid": user_id})
        if not current:
            raise NotFound(f"User {user_id} not found.")
        if "role_extended" in updates:
            try:
                updates["role_extended"] = Role.parse(updates["role_extended"]).value
            except ValueError as e:
                raise ValidationError(str(e), "role_extended") from None
        role = Role.parse(updates.get("role_extended", current["role_extended"]))
        # A new clinic without an explicit branch takes the clinic's branch.
        if "clinica_id" in updates and "filial_id" not in updates:
            filial_id = None
        else:
            filial_id = updates.get("filial_id", current["filial_id"])
        updates["filial_id"] = _check_links(
            conn, role, filial_id,
            updates.get("clinica_id", current["clinica_id"]),
        )
        updates["updated_at"] = utcnow_iso()
        assignments = ", ".join(f"{k} = :{k}" for k in updates)
        conn.execute(text(f"UPDATE profiles SET {assignments} WHERE id = :uid"),
                     {**updates, "uid": user_id})
        if "email" in updates:
            conn.execute(text("UPDATE auth_users SET email = :email WHERE id = :uid"),
                         {"email": updates["email"], "uid": user_id})
        return fetch_one(conn, "SELECT * FROM profiles WHERE id = :uid", {"uid": user_id})


def delete_user(engine, ctx: AccessContext, user_id: str) -> None:
    """Remove an account; refused while the account still owns orders."""
    require_super_admin(ctx.role, "account deletion")
    if user_id == ctx.user_id:
        raise Conflict("You cannot delete your own account.")

    with engine.begin() as conn:
        profile = fetch_one(conn, "SELECT id FROM profiles WHERE id = :uid", {"uid": user_id})
        identity = fetch_one(conn, "SELECT id FROM auth_users WHERE id = :uid", {"uid": user_id})
        if not profile and not identity:
            raise NotFound(f"User {user_id} not found.")
        owned = fetch_one(conn, "SELECT COUNT(*) AS n FROM orders WHERE user_id = :uid", {"uid": user_id})
        if owned["n"]:
            raise Conflict(f"User has {owned['n']} order(s) and cannot be deleted.")

        conn.execute(text("DELETE FROM notifications WHERE user_id = :uid"), {"uid": user_id})
        conn.execute(text("UPDATE patients SET dentist_id = NULL WHERE dentist_id = :uid"), {"uid": user_id})
        conn.execute(text("DELETE FROM profiles WHERE id = :uid"), {"uid": user_id})
        conn.execute(text("DELETE FROM auth_users WHERE id = :uid"), {"uid": user_id})
    logger.info("Account %s deleted by %s", user_id, ctx.user_id)


def change_password(engine, ctx: AccessContext, user_id: str, new_password: str) -> None:
    require_super_admin(ctx.role, "password resets")
    _check_password(new_password)
    with engine.begin() as conn:
        result = conn.execute(
            text("UPDATE auth_users SET password_hash = :ph WHERE id = :uid"),
            {"ph": generate_password_hash(new_password), "uid": user_id},
        )
        if result.rowcount != 1:
            raise NotFound(f"User {user_id} not found.")
    logger.info("Password for %s reset by %s", user_id, ctx.user_id)


def confirm_email(engine, ctx: AccessContext, user_id: str) -> str:
    require_super_admin(ctx.role, "email confirmation")
    with engine.begin() as conn:
        identity = fetch_one(conn, "SELECT email_confirmed_at FROM auth_users WHERE id = :uid",
                             {"uid": user_id})
        if not identity:
            raise NotFound(f"User {user_id} not found.")
        if identity["email_confirmed_at"]:
            return identity["email_confirmed_at"]
        confirmed_at = utcnow_iso()
        conn.execute(text("UPDATE auth_users SET email_confirmed_at = :ts WHERE id = :uid"),
                     {"ts": confirmed_at, "uid": user_id})
    return confirmed_at


def list_users(engine, ctx: AccessContext) -> List[Dict[str, Any]]:
    """Every profile joined with its identity's verification state."""
    require_super_admin(ctx.role, "account listing")
    with engine.connect() as conn:
        rows = fetch_all(conn, """
            SELECT p.*, a.email_confirmed_at
            FROM profiles p
            LEFT JOIN auth_users a ON a.id = p.id
            ORDER BY p.created_at DESC
        """)
    for r in rows:
        r["email_verified"] = bool(r["email_confirmed_at"])
        r["ativo"] = bool(r["ativo"])
    return rows


def cleanup_orphaned_user(engine, ctx: AccessContext, email: str) -> str:
    """Delete an identity that has no profile row; returns the removed id."""
    require_super_admin(ctx.role, "orphan cleanup")
    email = _clean_email(email)
    with engine.begin() as conn:
        identity = fetch_one(conn, "SELECT id FROM auth_users WHERE lower(email) = :email",
                             {"email": email})
        if not identity:
            raise NotFound(f"No identity registered for {email}.")
        if fetch_one(conn, "SELECT id FROM profiles WHERE id = :uid", {"uid": identity["id"]}):
            raise Conflict(f"{email} has a profile; use account deletion instead.")
        conn.execute(text("DELETE FROM auth_users WHERE id = :uid"), {"uid": identity["id"]})
    logger.info("Orphaned identity %s removed by %s", identity["id"], ctx.user_id)
    return identity["id"]
