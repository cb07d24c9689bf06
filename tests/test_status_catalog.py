"""
Unit tests for the status catalog and its role-gated labels.
"""

import pytest

from protelab.status_catalog import (
    FORWARD_CHAIN, INITIAL_STATUS, STATUSES, UNKNOWN_COLOR, UNKNOWN_LABEL, display_group,
    get_status_color, get_status_label, get_status_options, normalize_status,
)

ALL_CODES = [s.code for s in STATUSES]


def test_forward_chain_order():
    assert FORWARD_CHAIN == [
        "pedido_solicitado", "baixado_verificado", "projeto_realizado",
        "projeto_modelo_realizado", "aguardando_entrega", "entregue",
    ]
    assert "cancelado" in ALL_CODES and "cancelado" not in FORWARD_CHAIN


@pytest.mark.parametrize("status", ALL_CODES + ["pending", "whatever", "", None])
def test_non_super_viewer_always_sees_initial_label(status):
    assert get_status_label(status, False) == get_status_label(INITIAL_STATUS, True)
    assert get_status_label(status, False) == "Pedido Solicitado"


def test_super_viewer_sees_true_labels():
    for definition in STATUSES:
        assert get_status_label(definition.code, True) == definition.label
    assert get_status_label("projeto_realizado", True) == "Projeto Realizado"


@pytest.mark.parametrize("status", ["producao", "xyz", None])
def test_super_viewer_unknown_label(status):
    assert get_status_label(status, True) == UNKNOWN_LABEL == "Desconhecido"


def test_status_color_fallback():
    assert get_status_color("cancelado") == "bg-red-100 text-red-800"
    assert get_status_color("nope") == UNKNOWN_COLOR
    assert get_status_color(None) == UNKNOWN_COLOR


def test_status_options_gated():
    assert [s.code for s in get_status_options(True)] == ALL_CODES
    assert [s.code for s in get_status_options(False)] == [INITIAL_STATUS]


def test_legacy_vocabulary_is_derived():
    assert normalize_status("pending") == "pedido_solicitado"
    assert normalize_status("pronto") == "aguardando_entrega"
    assert normalize_status("garbage") is None
    assert display_group("projeto_realizado") == "producao"
    assert display_group("producao") == "producao"
    assert display_group("entregue") == "entregue"
    assert display_group("garbage") is None
