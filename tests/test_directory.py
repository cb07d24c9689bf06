"""
Tests for clinic, branch and patient writes.
"""

import pytest

from protelab.directory import (
    create_clinic, create_patient, delete_branch, delete_clinic, update_branch, update_clinic,
)
from protelab.errors import Conflict, NotFound, PermissionDenied, ValidationError
from protelab.scoped_queries import list_clinics, list_patients


def clinic_data(**overrides):
    data = {"nome_completo": "Clinica Nova", "cnpj": "11.111/0001-11",
            "telefone": "1133334444", "email": "nova@clinic.test"}
    data.update(overrides)
    return data


# ── Tests: clinics ───────────────────────────────────────────────────

def test_branch_admin_creates_clinic_in_own_branch(engine, world):
    row = create_clinic(engine, world.admin_a, clinic_data())
    assert row["filial_id"] == world.branch_a
    assert row["id"] in {c["id"] for c in list_clinics(engine, world.admin_a)}


def test_branch_admin_cannot_create_in_other_branch(engine, world):
    with pytest.raises(PermissionDenied):
        create_clinic(engine, world.admin_a, clinic_data(filial_id=world.branch_b))


@pytest.mark.parametrize("who", ["clinic_admin_a", "dentist_a"])
def test_lower_tiers_cannot_create_clinics(engine, world, who):
    with pytest.raises(PermissionDenied):
        create_clinic(engine, getattr(world, who), clinic_data(filial_id=world.branch_a))


def test_master_creates_anywhere_and_validates(engine, world):
    row = create_clinic(engine, world.master, clinic_data(filial_id=world.branch_b))
    assert row["filial_id"] == world.branch_b
    with pytest.raises(ValidationError) as e:
        create_clinic(engine, world.master, clinic_data(cnpj=""))
    assert e.value.field == "cnpj"
    with pytest.raises(NotFound):
        create_clinic(engine, world.master, clinic_data(filial_id="ghost"))


def test_update_clinic_keeps_branch(engine, world):
    row = update_clinic(engine, world.admin_a, world.clinic_a,
                        {"telefone": "1100000000", "filial_id": world.branch_b})
    assert row["telefone"] == "1100000000"
    assert row["filial_id"] == world.branch_a
    with pytest.raises(PermissionDenied):
        update_clinic(engine, world.admin_a, world.clinic_b, {"telefone": "1"})


def test_delete_clinic_with_members_conflicts(engine, world):
    with pytest.raises(Conflict):
        delete_clinic(engine, world.master, world.clinic_a)
    empty = create_clinic(engine, world.admin_a, clinic_data())
    delete_clinic(engine, world.admin_a, empty["id"])
    with pytest.raises(NotFound):
        delete_clinic(engine, world.admin_a, empty["id"])


# ── Tests: branches ──────────────────────────────────────────────────

def test_branch_writes_are_master_only(engine, world):
    with pytest.raises(PermissionDenied):
        update_branch(engine, world.admin_a, world.branch_a, {"telefone": "1"})
    row = update_branch(engine, world.master, world.branch_a, {"cidade": "Campinas"})
    assert row["cidade"] == "Campinas"
    with pytest.raises(Conflict):
        delete_branch(engine, world.master, world.branch_a)


# ── Tests: patients ──────────────────────────────────────────────────

def test_dentist_creates_own_patient(engine, world):
    row = create_patient(engine, world.dentist_a, {
        "nome_completo": "Novo Paciente", "cpf": "999.999.999-99",
        "telefone_contato": "11977776666", "email_contato": "novo@x.test",
        "dentist_id": world.dentist_b.user_id,
    })
    assert row["dentist_id"] == world.dentist_a.user_id
    assert row["clinica_id"] == world.clinic_a
    assert row["filial_id"] == world.branch_a
    assert row["id"] in {p["id"] for p in list_patients(engine, world.dentist_a)}


def test_create_patient_requires_fields(engine, world):
    with pytest.raises(ValidationError) as e:
        create_patient(engine, world.dentist_a, {"nome_completo": "X"})
    assert e.value.field == "cpf"


def patient_data(**overrides):
    data = {"nome_completo": "Paciente Novo", "cpf": "888.888.888-88",
            "telefone_contato": "11955554444", "email_contato": "pn@x.test"}
    data.update(overrides)
    return data


def test_branch_admin_cannot_place_patient_in_foreign_clinic(engine, world):
    with pytest.raises(PermissionDenied):
        create_patient(engine, world.admin_a, patient_data(clinica_id=world.clinic_b))
    assert [p["id"] for p in list_patients(engine, world.admin_b)] == [world.patient_b]
    assert {p["nome_completo"] for p in list_patients(engine, world.master)} == {
        "Paciente A", "Paciente B",
    }


def test_branch_admin_patient_follows_clinic_branch(engine, world):
    row = create_patient(engine, world.admin_a,
                         patient_data(clinica_id=world.clinic_a, filial_id=world.branch_b))
    assert row["clinica_id"] == world.clinic_a
    assert row["filial_id"] == world.branch_a

    bare = create_patient(engine, world.admin_a, patient_data(filial_id=world.branch_b))
    assert bare["clinica_id"] is None
    assert bare["filial_id"] == world.branch_a


def test_master_patient_takes_branch_from_clinic(engine, world):
    row = create_patient(engine, world.master,
                         patient_data(clinica_id=world.clinic_b, dentist_id=world.dentist_b.user_id))
    assert row["filial_id"] == world.branch_b
    assert row["id"] in {p["id"] for p in list_patients(engine, world.dentist_b)}
    with pytest.raises(NotFound):
        create_patient(engine, world.master, patient_data(clinica_id="ghost"))


def test_dentist_assignment_is_scoped(engine, world):
    with pytest.raises(PermissionDenied):
        create_patient(engine, world.clinic_admin_a,
                       patient_data(dentist_id=world.dentist_b.user_id))
    assert all(p["nome_completo"] != "Paciente Novo" for p in list_patients(engine, world.dentist_b))

    with pytest.raises(NotFound):
        create_patient(engine, world.clinic_admin_a,
                       patient_data(dentist_id=world.admin_a.user_id))

    row = create_patient(engine, world.clinic_admin_a,
                         patient_data(dentist_id=world.dentist_a.user_id))
    assert row["clinica_id"] == world.clinic_a
    assert row["id"] in {p["id"] for p in list_patients(engine, world.dentist_a)}


def test_master_cannot_mix_clinic_and_dentist(engine, world):
    with pytest.raises(ValidationError) as e:
        create_patient(engine, world.master,
                       patient_data(clinica_id=world.clinic_a, dentist_id=world.dentist_b.user_id))
    assert e.value.field == "dentist_id"
