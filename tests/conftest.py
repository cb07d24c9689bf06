"""
Shared fixtures: an in-memory SQLite store seeded with two branches.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from protelab.database import (
    auth_users, clinicas, create_schema, filiais, insert_row, new_id, patients, profiles,
    utcnow_iso,
)
from protelab.orders import create_order
from protelab.rbac import load_access_context
from protelab.realtime import RealtimeHub

PASSWORD = "secret123"


# ── Seed helpers ─────────────────────────────────────────────────────

def add_branch(conn, name):
    now = utcnow_iso()
    row_id = new_id()
    insert_row(conn, filiais, {"id": row_id, "nome_completo": name, "endereco": "Rua 1",
                               "ativo": True, "created_at": now, "updated_at": now})
    return row_id


def add_clinic(conn, name, filial_id):
    now = utcnow_iso()
    row_id = new_id()
    insert_row(conn, clinicas, {"id": row_id, "nome_completo": name, "cnpj": "00.000/0001-00",
                                "telefone": "1199999", "email": f"{row_id[:8]}@clinic.test",
                                "filial_id": filial_id, "ativo": True,
                                "created_at": now, "updated_at": now})
    return row_id


def add_actor(conn, name, role, filial_id=None, clinica_id=None, password=PASSWORD, active=True):
    now = utcnow_iso()
    row_id = new_id()
    email = f"{name.lower().replace(' ', '.')}@lab.test"
    insert_row(conn, auth_users, {"id": row_id, "email": email,
                                  "password_hash": generate_password_hash(password),
                                  "email_confirmed_at": now, "created_at": now})
    insert_row(conn, profiles, {"id": row_id, "name": name, "nome_completo": name, "email": email,
                                "role_extended": role, "filial_id": filial_id,
                                "clinica_id": clinica_id, "ativo": active,
                                "created_at": now, "updated_at": now})
    return row_id


def add_patient(conn, name, dentist_id, clinica_id, filial_id):
    now = utcnow_iso()
    row_id = new_id()
    insert_row(conn, patients, {"id": row_id, "nome_completo": name, "cpf": "123.456.789-00",
                                "telefone_contato": "1188888", "email_contato": "p@x.test",
                                "dentist_id": dentist_id, "clinica_id": clinica_id,
                                "filial_id": filial_id, "ativo": True,
                                "created_at": now, "updated_at": now})
    return row_id


def order_payload(patient_id, **overrides):
    data = {
        "patient_id": patient_id,
        "priority": "normal",
        "deadline": "2030-01-15",
        "items": [{"product_name": "Coroa", "prosthesis_type": "coroa", "material": "zirconia",
                   "color": "A2", "selected_teeth": ["11", "21"], "quantity": 1}],
    }
    data.update(overrides)
    return data


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def world(engine):
    """Branches A and B, one clinic each, admins at every tier, two dentists."""
    with engine.begin() as conn:
        branch_a = add_branch(conn, "Matriz A")
        branch_b = add_branch(conn, "Matriz B")
        clinic_a = add_clinic(conn, "Clinica A1", branch_a)
        clinic_b = add_clinic(conn, "Clinica B1", branch_b)
        master = add_actor(conn, "Master", "admin_master")
        admin_a = add_actor(conn, "Admin A", "admin_filial", filial_id=branch_a)
        admin_b = add_actor(conn, "Admin B", "admin_matriz", filial_id=branch_b)
        clinic_admin_a = add_actor(conn, "Clinic Admin A", "admin_clinica",
                                   filial_id=branch_a, clinica_id=clinic_a)
        dentist_a = add_actor(conn, "Dentist A", "dentist", filial_id=branch_a, clinica_id=clinic_a)
        dentist_b = add_actor(conn, "Dentist B", "dentist", filial_id=branch_b, clinica_id=clinic_b)
        patient_a = add_patient(conn, "Paciente A", dentist_a, clinic_a, branch_a)
        patient_b = add_patient(conn, "Paciente B", dentist_b, clinic_b, branch_b)

    w = SimpleNamespace(
        branch_a=branch_a, branch_b=branch_b, clinic_a=clinic_a, clinic_b=clinic_b,
        patient_a=patient_a, patient_b=patient_b,
    )
    for attr, uid in (("master", master), ("admin_a", admin_a), ("admin_b", admin_b),
                      ("clinic_admin_a", clinic_admin_a), ("dentist_a", dentist_a),
                      ("dentist_b", dentist_b)):
        setattr(w, attr, load_access_context(engine, uid))

    w.order_a = create_order(engine, w.dentist_a, order_payload(patient_a))["id"]
    w.order_b = create_order(engine, w.dentist_b, order_payload(patient_b, priority="urgente"))["id"]
    return w
