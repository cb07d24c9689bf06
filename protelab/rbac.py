"""
Role-Based Access Control – loading actor context and building row policies.
"""

from werkzeug.security import check_password_hash

from protelab.database import fetch_one
from protelab.errors import Unauthenticated, ValidationError
from protelab.models import AccessContext, Policy, Role

_PROFILE_SQL = """
    SELECT id, name, nome_completo, email, role_extended, filial_id, clinica_id, ativo
    FROM profiles
    WHERE id = :uid
"""


def _context_from_row(row) -> AccessContext:
    if not row["ativo"]:
        raise Unauthenticated("Account is inactive.")
    try:
        role = Role.parse(row["role_extended"])
    except ValueError:
        raise Unauthenticated(f"Unsupported role '{row['role_extended']}' in profiles.") from None
    return AccessContext(
        user_id=str(row["id"]),
        display_name=str(row["nome_completo"] or row["name"] or row["email"] or row["id"]),
        role=role,
        filial_id=row["filial_id"],
        clinica_id=row["clinica_id"],
        active=bool(row["ativo"]),
    )


def load_access_context(engine, user_id: str) -> AccessContext:
    """Resolve a trusted actor id (from the session) to its AccessContext."""
    with engine.connect() as conn:
        row = fetch_one(conn, _PROFILE_SQL, {"uid": user_id})
    if not row:
        raise Unauthenticated("No profile found for this account.")
    return _context_from_row(row)


def authenticate(engine, email: str, password: str) -> AccessContext:
    """Check email/password against the identity table and load the profile."""
    with engine.connect() as conn:
        account = fetch_one(
            conn,
            "SELECT id, password_hash FROM auth_users WHERE lower(email) = lower(:email)",
            {"email": email.strip()},
        )
        if not account or not check_password_hash(account["password_hash"], password):
            raise Unauthenticated("Invalid email or password.")
        row = fetch_one(conn, _PROFILE_SQL, {"uid": account["id"]})
    if not row:
        raise Unauthenticated("No profile found for this account.")
    return _context_from_row(row)


def build_policy(ctx: AccessContext) -> Policy:
    """Derive the row-visibility Policy from an AccessContext."""

    if ctx.role is Role.ADMIN_MASTER:
        return Policy(
            role=ctx.role,
            scope="global",
            scope_value=None,
            notes="Admin master sees every branch, clinic, dentist and order.",
        )

    if ctx.role is Role.ADMIN_FILIAL:
        if ctx.filial_id is None:
            raise ValidationError("Branch admin must have filial_id set in profiles.", "filial_id")
        return Policy(
            role=ctx.role,
            scope="filial",
            scope_value=ctx.filial_id,
            notes="Branch admin sees rows belonging to their own branch.",
        )

    if ctx.role is Role.ADMIN_CLINICA:
        if ctx.clinica_id is None:
            raise ValidationError("Clinic admin must have clinica_id set in profiles.", "clinica_id")
        return Policy(
            role=ctx.role,
            scope="clinica",
            scope_value=ctx.clinica_id,
            notes="Clinic admin sees rows belonging to their own clinic.",
        )

    if ctx.role is Role.DENTIST:
        return Policy(
            role=ctx.role,
            scope="own",
            scope_value=ctx.user_id,
            notes="Dentist sees only the orders and patients they created.",
        )

    raise ValueError(f"Unknown role: {ctx.role}")
