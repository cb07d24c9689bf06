"""
Tests for the order lifecycle state machine.
"""

import pytest
from sqlalchemy import text

from protelab.audit import list_entries
from protelab.errors import Conflict, NotFound, PermissionDenied, TransitionError
from protelab.state_machine import OrderStateMachine, next_status, validate_transition
from protelab.status_catalog import FORWARD_CHAIN


# ── Helpers ──────────────────────────────────────────────────────────

def stored_status(engine, order_id):
    with engine.connect() as conn:
        return conn.execute(text("SELECT status FROM orders WHERE id = :oid"),
                            {"oid": order_id}).scalar_one()


# ── Tests: transition table ──────────────────────────────────────────

def test_next_status_walks_chain():
    for current, expected in zip(FORWARD_CHAIN, FORWARD_CHAIN[1:]):
        assert next_status(current) == expected


@pytest.mark.parametrize("status", ["entregue", "cancelado"])
def test_next_status_terminal(status):
    with pytest.raises(TransitionError, match="terminal"):
        next_status(status)


def test_next_status_legacy_alias():
    assert next_status("pending") == "baixado_verificado"


def test_validate_transition_rules():
    assert validate_transition("pedido_solicitado", "baixado_verificado") == "pedido_solicitado"
    assert validate_transition("projeto_realizado", "cancelado") == "projeto_realizado"
    with pytest.raises(TransitionError) as e:
        validate_transition("pedido_solicitado", "projeto_realizado")
    assert e.value.current_status == "pedido_solicitado"
    assert e.value.target_status == "projeto_realizado"
    with pytest.raises(TransitionError, match="Unrecognized target"):
        validate_transition("pedido_solicitado", "em_analise")
    with pytest.raises(TransitionError, match="terminal"):
        validate_transition("cancelado", "cancelado")


# ── Tests: OrderStateMachine ─────────────────────────────────────────

def test_five_advances_reach_delivered_then_reject(engine, world):
    machine = OrderStateMachine(engine)
    for expected in FORWARD_CHAIN[1:]:
        result = machine.advance(world.master, world.order_a)
        assert result["status"] == expected
    assert stored_status(engine, world.order_a) == "entregue"

    with pytest.raises(TransitionError):
        machine.advance(world.master, world.order_a)
    assert stored_status(engine, world.order_a) == "entregue"


@pytest.mark.parametrize("who", ["admin_a", "clinic_admin_a", "dentist_a"])
def test_non_super_admin_cannot_advance(engine, world, who):
    machine = OrderStateMachine(engine)
    with pytest.raises(PermissionDenied):
        machine.advance(getattr(world, who), world.order_a)
    with pytest.raises(PermissionDenied):
        machine.cancel(getattr(world, who), world.order_a)
    assert stored_status(engine, world.order_a) == "pedido_solicitado"


def test_transition_writes_audit_in_same_unit(engine, world):
    OrderStateMachine(engine).advance(world.master, world.order_a)
    with engine.connect() as conn:
        entries = list_entries(conn, "order", world.order_a)
    assert [e.action for e in entries] == ["create", "update"]
    assert entries[1].old_values == {"status": "pedido_solicitado"}
    assert entries[1].new_values == {"status": "baixado_verificado"}
    assert entries[1].user_id == world.master.user_id


def test_rejected_transition_writes_nothing(engine, world):
    machine = OrderStateMachine(engine)
    with pytest.raises(TransitionError):
        machine.transition(world.master, world.order_a, "entregue")
    with engine.connect() as conn:
        assert len(list_entries(conn, "order", world.order_a)) == 1


def test_cancel_from_mid_chain_then_terminal(engine, world):
    machine = OrderStateMachine(engine)
    machine.advance(world.master, world.order_a)
    result = machine.cancel(world.master, world.order_a)
    assert result["previous_status"] == "baixado_verificado"
    assert result["status"] == "cancelado"
    with pytest.raises(TransitionError):
        machine.advance(world.master, world.order_a)


def test_stale_expected_status_is_a_conflict(engine, world):
    machine = OrderStateMachine(engine)
    machine.advance(world.master, world.order_a, expected_status="pedido_solicitado")
    # A blind retry with the old status must not skip a stage.
    with pytest.raises(Conflict, match="Reload"):
        machine.advance(world.master, world.order_a, expected_status="pedido_solicitado")
    assert stored_status(engine, world.order_a) == "baixado_verificado"


def test_unknown_order(engine, world):
    with pytest.raises(NotFound):
        OrderStateMachine(engine).advance(world.master, "missing")


def test_transition_publishes_after_commit(engine, world, hub):
    seen = []
    hub.subscribe("audit_logs", {"entity_id": world.order_a},
                  lambda row: seen.append(stored_status(engine, world.order_a)))
    OrderStateMachine(engine, hub).advance(world.master, world.order_a)
    assert seen == ["baixado_verificado"]
