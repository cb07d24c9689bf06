"""
Tests for scope-bounded list and detail queries.
"""

import pytest

from protelab import scoped_queries
from protelab.errors import NotFound, PermissionDenied
from protelab.scoped_queries import (
    get_order, get_patient, list_branches, list_clinics, list_dentists, list_orders,
    list_patients, scope_clause,
)
from protelab.rbac import build_policy
from protelab.state_machine import OrderStateMachine


# ── Tests: branch isolation ──────────────────────────────────────────

def test_branch_admin_never_sees_other_branch(engine, world):
    ctx = world.admin_a
    assert {o["id"] for o in list_orders(engine, ctx)} == {world.order_a}
    assert {p["id"] for p in list_patients(engine, ctx)} == {world.patient_a}
    assert {d["id"] for d in list_dentists(engine, ctx)} == {world.dentist_a.user_id}
    assert {c["id"] for c in list_clinics(engine, ctx)} == {world.clinic_a}
    assert {b["id"] for b in list_branches(engine, ctx)} == {world.branch_a}


def test_master_sees_both_branches(engine, world):
    ctx = world.master
    assert {o["id"] for o in list_orders(engine, ctx)} == {world.order_a, world.order_b}
    assert {p["id"] for p in list_patients(engine, ctx)} == {world.patient_a, world.patient_b}
    assert {d["id"] for d in list_dentists(engine, ctx)} == {
        world.dentist_a.user_id, world.dentist_b.user_id,
    }
    assert {c["id"] for c in list_clinics(engine, ctx)} == {world.clinic_a, world.clinic_b}
    assert {b["id"] for b in list_branches(engine, ctx)} == {world.branch_a, world.branch_b}


def test_dentist_sees_own_rows_only(engine, world):
    ctx = world.dentist_a
    assert [o["id"] for o in list_orders(engine, ctx)] == [world.order_a]
    assert [p["id"] for p in list_patients(engine, ctx)] == [world.patient_a]
    assert [d["id"] for d in list_dentists(engine, ctx)] == [ctx.user_id]
    with pytest.raises(PermissionDenied):
        list_clinics(engine, ctx)


def test_clinic_admin_scope(engine, world):
    ctx = world.clinic_admin_a
    assert [o["id"] for o in list_orders(engine, ctx)] == [world.order_a]
    assert [c["id"] for c in list_clinics(engine, ctx)] == [world.clinic_a]
    with pytest.raises(PermissionDenied):
        list_branches(engine, ctx)


def test_scope_clause_global_is_unbounded(world):
    assert scope_clause(build_policy(world.master), "orders") == ("1 = 1", {})
    clause, params = scope_clause(build_policy(world.admin_a), "orders")
    assert clause == "o.filial_id = :scope_value"
    assert params == {"scope_value": world.branch_a}


# ── Tests: detail reads ──────────────────────────────────────────────

def test_detail_outside_scope_is_denied_not_missing(engine, world):
    with pytest.raises(PermissionDenied):
        get_order(engine, world.admin_b, world.order_a)
    with pytest.raises(NotFound):
        get_order(engine, world.admin_b, "no-such-order")
    with pytest.raises(PermissionDenied):
        get_patient(engine, world.dentist_b, world.patient_a)


def test_order_detail_includes_items(engine, world):
    order = get_order(engine, world.dentist_a, world.order_a)
    assert order["patient_name"] == "Paciente A"
    assert order["items"][0]["selected_teeth"] == ["11", "21"]
    assert order["images"] == []


# ── Tests: status disclosure ─────────────────────────────────────────

def test_listed_status_is_masked_below_super_admin(engine, world):
    machine = OrderStateMachine(engine)
    machine.advance(world.master, world.order_a)
    machine.advance(world.master, world.order_a)

    dentist_row = list_orders(engine, world.dentist_a)[0]
    assert dentist_row["status"] == "pedido_solicitado"
    assert dentist_row["status_label"] == "Pedido Solicitado"

    admin_row = get_order(engine, world.admin_a, world.order_a)
    assert admin_row["status"] == "pedido_solicitado"

    master_row = get_order(engine, world.master, world.order_a)
    assert master_row["status"] == "projeto_realizado"
    assert master_row["status_label"] == "Projeto Realizado"


def test_pipeline_moves_leave_no_trace_below_super_admin(engine, world):
    OrderStateMachine(engine).advance(world.master, world.order_a)

    for ctx in (world.dentist_a, world.admin_a):
        row = get_order(engine, ctx, world.order_a)
        assert row["updated_at"] == row["created_at"]
        listed = list_orders(engine, ctx)[0]
        assert listed["updated_at"] == listed["created_at"]

    master_row = get_order(engine, world.master, world.order_a)
    assert master_row["updated_at"] > master_row["created_at"]


@pytest.mark.parametrize("limit", [-1, 0])
def test_non_positive_limit_is_clamped_to_one(engine, world, limit):
    assert len(list_orders(engine, world.master, limit=limit)) == 1
    assert len(list_patients(engine, world.master, limit=limit)) == 1


def test_status_filter_requires_super_admin(engine, world):
    with pytest.raises(PermissionDenied):
        list_orders(engine, world.admin_a, status="entregue")
    assert [o["id"] for o in list_orders(engine, world.master, status="pedido_solicitado",
                                         patient_id=world.patient_b)] == [world.order_b]


# ── Tests: partial-failure resilience ────────────────────────────────

def test_clinic_count_failure_defaults_to_zero(engine, world, monkeypatch):
    real = scoped_queries.count_clinic_members

    def flaky(eng, clinic_id):
        if clinic_id == world.clinic_b:
            raise RuntimeError("count timed out")
        return real(eng, clinic_id)

    monkeypatch.setattr(scoped_queries, "count_clinic_members", flaky)
    rows = {c["id"]: c for c in list_clinics(engine, world.master)}
    assert set(rows) == {world.clinic_a, world.clinic_b}
    assert rows[world.clinic_b]["qntd_dentistas"] == 0
    assert rows[world.clinic_b]["qntd_pacientes"] == 0
    assert rows[world.clinic_a]["qntd_dentistas"] == 1
    assert rows[world.clinic_a]["qntd_pacientes"] == 1


def test_dentist_order_count_failure_defaults_to_zero(engine, world, monkeypatch):
    def broken(eng, dentist_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(scoped_queries, "count_dentist_orders", broken)
    rows = list_dentists(engine, world.master)
    assert len(rows) == 2
    assert all(r["order_count"] == 0 for r in rows)


def test_dentist_order_counts(engine, world):
    rows = {r["id"]: r for r in list_dentists(engine, world.master)}
    assert rows[world.dentist_a.user_id]["order_count"] == 1
