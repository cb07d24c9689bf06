"""
Tests for order submission, item replacement and notifications.
"""

import pytest

from protelab.audit import list_entries
from protelab.errors import NotFound, PermissionDenied, ValidationError
from protelab.notifications import list_notifications, mark_notification_read
from protelab.orders import create_order, replace_items
from protelab.scoped_queries import get_order
from protelab.timeline import load_order_timeline


def payload(patient_id, **overrides):
    data = {
        "patient_id": patient_id,
        "priority": "alta",
        "deadline": "2030-02-01",
        "items": [
            {"product_name": "Coroa", "prosthesis_type": "coroa", "selected_teeth": [21, "11", 21]},
            {"product_name": "Ponte", "prosthesis_type": "ponte", "quantity": 2},
        ],
    }
    data.update(overrides)
    return data


# ── Tests: create_order ──────────────────────────────────────────────

def test_create_order_starts_at_initial_status(engine, world):
    order = create_order(engine, world.dentist_a, payload(world.patient_a))
    assert order["status"] == "pedido_solicitado"
    assert order["filial_id"] == world.branch_a
    assert order["clinica_id"] == world.clinic_a
    assert order["items"][0]["selected_teeth"] == ["11", "21"]

    with engine.connect() as conn:
        entries = list_entries(conn, "order", order["id"])
    assert len(entries) == 1
    assert entries[0].action == "create"
    assert entries[0].new_values["status"] == "pedido_solicitado"
    assert entries[0].new_values["item_count"] == 2


def test_legacy_single_prosthesis_order(engine, world):
    order = create_order(engine, world.dentist_a, payload(
        world.patient_a, items=None, prosthesis_type="protocolo", material="resina",
        selected_teeth=["36", "35"],
    ))
    assert order["items"] == []
    assert order["selected_teeth"] == ["35", "36"]


@pytest.mark.parametrize("overrides, field", [
    ({"patient_id": None}, "patient_id"),
    ({"priority": "imediata"}, "priority"),
    ({"deadline": ""}, "deadline"),
    ({"items": []}, "items"),
    ({"items": "coroa"}, "items"),
    ({"selected_teeth": "11"}, "selected_teeth"),
])
def test_create_order_validation(engine, world, overrides, field):
    data = payload(world.patient_a)
    data.update(overrides)
    with pytest.raises(ValidationError) as e:
        create_order(engine, world.dentist_a, data)
    assert e.value.field == field


def test_create_order_rejects_bad_item(engine, world):
    with pytest.raises(ValidationError, match="quantity"):
        create_order(engine, world.dentist_a, payload(world.patient_a, items=[
            {"product_name": "Coroa", "prosthesis_type": "coroa", "quantity": 0},
        ]))
    with pytest.raises(ValidationError) as e:
        create_order(engine, world.dentist_a, payload(world.patient_a, items=[
            {"product_name": "Coroa", "prosthesis_type": "coroa", "selected_teeth": "11"},
        ]))
    assert e.value.field == "selected_teeth"


def test_create_order_for_foreign_patient_denied(engine, world):
    with pytest.raises(PermissionDenied):
        create_order(engine, world.dentist_a, payload(world.patient_b))
    with pytest.raises(NotFound):
        create_order(engine, world.dentist_a, payload("ghost"))


def test_new_order_notifies_master_only(engine, world, hub):
    delivered = []
    hub.subscribe("notifications", {"user_id": world.master.user_id}, delivered.append)
    order = create_order(engine, world.dentist_a, payload(world.patient_a), hub)

    notes = [n for n in list_notifications(engine, world.master)
             if n["related_order_id"] == order["id"]]
    assert len(notes) == 1
    assert notes[0]["type"] == "new_order"
    assert [d["related_order_id"] for d in delivered] == [order["id"]]
    assert list_notifications(engine, world.dentist_a) == []


def test_mark_notification_read(engine, world):
    note = list_notifications(engine, world.master, unread_only=True)[0]
    mark_notification_read(engine, world.master, note["id"])
    assert all(n["id"] != note["id"] for n in list_notifications(engine, world.master, True))
    with pytest.raises(NotFound):
        mark_notification_read(engine, world.dentist_a, note["id"])


# ── Tests: replace_items ─────────────────────────────────────────────

def test_replace_items_by_creator(engine, world):
    replace_items(engine, world.dentist_a, world.order_a,
                  [{"product_name": "Faceta", "prosthesis_type": "faceta"}])
    order = get_order(engine, world.dentist_a, world.order_a)
    assert [i["product_name"] for i in order["items"]] == ["Faceta"]

    # Item edits leave the timeline untouched.
    assert len(load_order_timeline(engine, world.master, world.order_a)) == 1


def test_replace_items_permissions(engine, world):
    items = [{"product_name": "Faceta", "prosthesis_type": "faceta"}]
    with pytest.raises(PermissionDenied):
        replace_items(engine, world.admin_a, world.order_a, items)
    with pytest.raises(PermissionDenied):
        replace_items(engine, world.dentist_b, world.order_a, items)
    replace_items(engine, world.master, world.order_a, items)
    with pytest.raises(ValidationError):
        replace_items(engine, world.master, world.order_a, [])
