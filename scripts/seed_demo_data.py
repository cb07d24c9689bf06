"""
Populate a ProteLab database with demo branches, clinics, accounts, patients
and orders spread along the production pipeline.

    DB_URI=sqlite:///protelab.db python scripts/seed_demo_data.py
"""

import random

from faker import Faker
from werkzeug.security import generate_password_hash

from protelab.database import (
    auth_users, clinicas, create_schema, cores, filiais, init_engine, insert_row, new_id,
    patients, products, profiles, utcnow_iso,
)
from protelab.orders import PRIORITIES, create_order
from protelab.rbac import load_access_context
from protelab.state_machine import OrderStateMachine

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
NUM_BRANCHES = 2
CLINICS_PER_BRANCH = 3
DENTISTS_PER_CLINIC = 2
PATIENTS_PER_DENTIST = 4
ORDERS_PER_PATIENT = (0, 3)  # min, max
DEMO_PASSWORD = "protelab123"

PRODUCTS = [
    ("Coroa de zircônia", "coroa"),
    ("Coroa metalocerâmica", "coroa"),
    ("Ponte fixa", "ponte"),
    ("Faceta de porcelana", "faceta"),
    ("Protocolo", "protocolo"),
    ("Placa miorrelaxante", "placa"),
]
SHADES = ["A1", "A2", "A3", "A3.5", "B1", "B2", "C1", "D2"]
TEETH = [f"{q}{n}" for q in range(1, 5) for n in range(1, 9)]

# --------------------------------------------------------------------
# SETUP
# --------------------------------------------------------------------
fake = Faker("pt_BR")
random.seed(42)
Faker.seed(42)


# --------------------------------------------------------------------
# HELPERS
# --------------------------------------------------------------------
def stamp():
    now = utcnow_iso()
    return {"created_at": now, "updated_at": now}


def add_account(conn, name, email, role, filial_id=None, clinica_id=None):
    user_id = new_id()
    insert_row(conn, auth_users, {
        "id": user_id,
        "email": email,
        "password_hash": generate_password_hash(DEMO_PASSWORD),
        "email_confirmed_at": utcnow_iso(),
        "created_at": utcnow_iso(),
    })
    insert_row(conn, profiles, {
        "id": user_id, "name": name, "nome_completo": name, "email": email,
        "role_extended": role, "filial_id": filial_id, "clinica_id": clinica_id,
        "telefone": fake.phone_number(), "cro": str(fake.random_int(10000, 99999))
        if role == "dentist" else None,
        "ativo": True, **stamp(),
    })
    return user_id


# --------------------------------------------------------------------
# SEED FUNCTIONS
# --------------------------------------------------------------------
def seed_catalog(conn):
    for name, category in PRODUCTS:
        insert_row(conn, products, {"nome_produto": name, "categoria": category, "ativo": True,
                                    **stamp()})
    for code in SHADES:
        insert_row(conn, cores, {"codigo_cor": code, "nome_cor": f"Vita {code}",
                                 "escala": "Vita Classical", "grupo": code[0], **stamp()})


def seed_organisation(conn):
    """Returns (master_id, [dentist ids], {dentist_id: [patient ids]})."""
    master_id = add_account(conn, "Administrador Master", "master@protelab.test", "admin_master")
    dentist_ids = []
    patients_by_dentist = {}

    for b in range(NUM_BRANCHES):
        branch_id = new_id()
        insert_row(conn, filiais, {
            "id": branch_id, "nome_completo": f"Matriz {fake.city()}",
            "endereco": fake.street_address(), "telefone": fake.phone_number(),
            "email": fake.company_email(), "cidade": fake.city(), "estado": fake.estado_sigla(),
            "ativo": True, **stamp(),
        })
        add_account(conn, fake.name(), f"admin.filial{b + 1}@protelab.test", "admin_filial",
                    filial_id=branch_id)

        for c in range(CLINICS_PER_BRANCH):
            clinic_id = new_id()
            insert_row(conn, clinicas, {
                "id": clinic_id, "nome_completo": f"Clínica {fake.last_name()}",
                "cnpj": fake.cnpj(), "telefone": fake.phone_number(), "email": fake.company_email(),
                "endereco": fake.street_address(), "filial_id": branch_id, "ativo": True, **stamp(),
            })
            add_account(conn, fake.name(), f"admin.clinica{b + 1}{c + 1}@protelab.test",
                        "admin_clinica", filial_id=branch_id, clinica_id=clinic_id)

            for d in range(DENTISTS_PER_CLINIC):
                dentist_id = add_account(conn, f"Dr(a). {fake.name()}",
                                         f"dentista{b + 1}{c + 1}{d + 1}@protelab.test", "dentist",
                                         filial_id=branch_id, clinica_id=clinic_id)
                dentist_ids.append(dentist_id)
                patients_by_dentist[dentist_id] = []
                for _ in range(PATIENTS_PER_DENTIST):
                    patient_id = new_id()
                    insert_row(conn, patients, {
                        "id": patient_id, "nome_completo": fake.name(), "cpf": fake.cpf(),
                        "telefone_contato": fake.phone_number(), "email_contato": fake.email(),
                        "dentist_id": dentist_id, "clinica_id": clinic_id, "filial_id": branch_id,
                        "ativo": True, **stamp(),
                    })
                    patients_by_dentist[dentist_id].append(patient_id)

    return master_id, dentist_ids, patients_by_dentist


def seed_orders(engine, master_id, dentist_ids, patients_by_dentist):
    machine = OrderStateMachine(engine)
    master = load_access_context(engine, master_id)
    created = 0
    for dentist_id in dentist_ids:
        ctx = load_access_context(engine, dentist_id)
        for patient_id in patients_by_dentist[dentist_id]:
            for _ in range(random.randint(*ORDERS_PER_PATIENT)):
                name, kind = random.choice(PRODUCTS)
                order = create_order(engine, ctx, {
                    "patient_id": patient_id,
                    "priority": random.choice(PRIORITIES),
                    "deadline": fake.date_between(start_date="+3d", end_date="+45d").isoformat(),
                    "observations": fake.sentence(),
                    "items": [{
                        "product_name": name,
                        "prosthesis_type": kind,
                        "color": random.choice(SHADES),
                        "selected_teeth": random.sample(TEETH, random.randint(1, 3)),
                    }],
                })
                created += 1
                if random.random() < 0.1:
                    machine.cancel(master, order["id"])
                    continue
                for _ in range(random.randint(0, 5)):
                    machine.advance(master, order["id"])
    return created


# --------------------------------------------------------------------
# MAIN
# --------------------------------------------------------------------
def main():
    engine = init_engine()
    create_schema(engine)

    with engine.begin() as conn:
        print("Seeding catalog...")
        seed_catalog(conn)

        print("Seeding branches, clinics, accounts and patients...")
        master_id, dentist_ids, patients_by_dentist = seed_organisation(conn)

    print("Seeding orders...")
    n = seed_orders(engine, master_id, dentist_ids, patients_by_dentist)

    print(f"Done! {n} orders created. Every demo account uses the password '{DEMO_PASSWORD}'.")


if __name__ == "__main__":
    main()
