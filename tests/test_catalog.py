"""
Tests for the laboratory catalog.
"""

import pytest

from protelab import catalog
from protelab.errors import Conflict, NotFound, PermissionDenied, ValidationError


def test_master_maintains_products(engine, world):
    coroa = catalog.create_product(engine, world.master, {"nome_produto": "Coroa", "categoria": "fixa"})
    catalog.create_product(engine, world.master, {"nome_produto": "Placa", "categoria": "aparelho",
                                                  "ativo": False})
    assert isinstance(coroa["id"], int)

    names = [p["nome_produto"] for p in catalog.list_products(engine)]
    assert names == ["Placa", "Coroa"]
    assert [p["nome_produto"] for p in catalog.list_products(engine, active_only=True)] == ["Coroa"]

    updated = catalog.update_product(engine, world.master, coroa["id"], {"categoria": "protese"})
    assert updated["categoria"] == "protese"
    with pytest.raises(NotFound):
        catalog.update_product(engine, world.master, 999, {"categoria": "x"})


def test_colors(engine, world):
    row = catalog.create_color(engine, world.master, {"codigo_cor": "A2", "nome_cor": "A2 Vita",
                                                      "escala": "Vita", "grupo": "A"})
    assert catalog.list_colors(engine)[0]["codigo_cor"] == "A2"
    assert catalog.update_color(engine, world.master, row["id"], {"grupo": "B"})["grupo"] == "B"
    with pytest.raises(ValidationError):
        catalog.create_color(engine, world.master, {"codigo_cor": "A3"})


@pytest.mark.parametrize("who", ["admin_a", "dentist_a"])
def test_catalog_writes_are_master_only(engine, world, who):
    ctx = getattr(world, who)
    with pytest.raises(PermissionDenied):
        catalog.create_product(engine, ctx, {"nome_produto": "X", "categoria": "Y"})
    with pytest.raises(PermissionDenied):
        catalog.create_color(engine, ctx, {"codigo_cor": "A1", "nome_cor": "A1"})


# ── Tests: prosthesis types, materials, compatibility ────────────────

def seed_catalog(engine, master):
    coroa = catalog.create_product(engine, master, {"nome_produto": "Coroa", "categoria": "fixa"})
    placa = catalog.create_product(engine, master, {"nome_produto": "Placa", "categoria": "aparelho"})
    shades = [catalog.create_color(engine, master, {"codigo_cor": code, "nome_cor": code,
                                                    "escala": "Vita"})
              for code in ("A1", "A2", "A3")]
    zirconia = catalog.create_material(engine, master, {
        "nome_material": "Zircônia", "tipo_material": "ceramica",
        "compativel_produtos": [coroa["id"]],
    })
    resina = catalog.create_material(engine, master, {
        "nome_material": "Resina", "tipo_material": "polimero",
    })
    return coroa, placa, shades, zirconia, resina


def test_prosthesis_types_keep_product_lists(engine, world):
    row = catalog.create_prosthesis_type(engine, world.master, {
        "nome_tipo": "Coroa unitária", "categoria_tipo": "fixa", "compativel_produtos": ["2", 1, 2],
    })
    assert row["compativel_produtos"] == [1, 2]

    catalog.create_prosthesis_type(engine, world.master, {"nome_tipo": "Protocolo",
                                                          "categoria_tipo": "implante"})
    assert [t["nome_tipo"] for t in catalog.list_prosthesis_types(engine)] == [
        "Coroa unitária", "Protocolo",
    ]

    updated = catalog.update_prosthesis_type(engine, world.master, row["id"],
                                             {"compativel_produtos": []})
    assert updated["compativel_produtos"] == []
    with pytest.raises(ValidationError) as e:
        catalog.update_prosthesis_type(engine, world.master, row["id"],
                                       {"compativel_produtos": "1,2"})
    assert e.value.field == "compativel_produtos"

    catalog.delete_prosthesis_type(engine, world.master, row["id"])
    with pytest.raises(NotFound):
        catalog.delete_prosthesis_type(engine, world.master, row["id"])


def test_materials_ordered_by_kind(engine, world):
    _, _, _, zirconia, resina = seed_catalog(engine, world.master)
    assert [m["id"] for m in catalog.list_materials(engine)] == [zirconia["id"], resina["id"]]
    with pytest.raises(ValidationError) as e:
        catalog.create_material(engine, world.master, {"nome_material": "Metal"})
    assert e.value.field == "tipo_material"


def test_product_options_follow_compatibility(engine, world):
    coroa, placa, shades, zirconia, _ = seed_catalog(engine, world.master)
    catalog.create_prosthesis_type(engine, world.master, {
        "nome_tipo": "Coroa unitária", "categoria_tipo": "fixa",
        "compativel_produtos": [coroa["id"]],
    })
    entry = catalog.create_compatibility(engine, world.master, {
        "id_produto": coroa["id"], "materiais_compativeis": [zirconia["id"]],
        "cores_compativeis": f"{shades[0]['id']}-{shades[1]['id']}",
    })

    options = catalog.product_options(engine, coroa["id"])
    assert [m["nome_material"] for m in options["materials"]] == ["Zircônia"]
    assert [c["codigo_cor"] for c in options["colors"]] == ["A1", "A2"]
    assert [t["nome_tipo"] for t in options["prosthesis_types"]] == ["Coroa unitária"]

    catalog.update_compatibility(engine, world.master, entry["id"], {"cores_compativeis": "NA"})
    assert catalog.product_options(engine, coroa["id"])["colors"] == []

    bare = catalog.product_options(engine, placa["id"])
    assert bare["materials"] == [] and bare["colors"] == []
    with pytest.raises(NotFound):
        catalog.product_options(engine, 999)


def test_compatibility_rules(engine, world):
    coroa, _, _, _, _ = seed_catalog(engine, world.master)
    with pytest.raises(ValidationError) as e:
        catalog.create_compatibility(engine, world.master,
                                     {"id_produto": coroa["id"], "cores_compativeis": "A1..A3"})
    assert e.value.field == "cores_compativeis"
    with pytest.raises(ValidationError):
        catalog.create_compatibility(engine, world.master,
                                     {"id_produto": coroa["id"], "cores_compativeis": "9-3"})
    with pytest.raises(NotFound):
        catalog.create_compatibility(engine, world.master,
                                     {"id_produto": 999, "cores_compativeis": "NA"})

    entry = catalog.create_compatibility(engine, world.master,
                                         {"id_produto": coroa["id"], "cores_compativeis": "na"})
    assert entry["cores_compativeis"] == "NA"
    with pytest.raises(Conflict):
        catalog.create_compatibility(engine, world.master,
                                     {"id_produto": coroa["id"], "cores_compativeis": "NA"})
    with pytest.raises(Conflict):
        catalog.delete_product(engine, world.master, coroa["id"])

    catalog.delete_compatibility(engine, world.master, entry["id"])
    catalog.delete_product(engine, world.master, coroa["id"])
    assert [p["nome_produto"] for p in catalog.list_products(engine)] == ["Placa"]


@pytest.mark.parametrize("who", ["admin_a", "clinic_admin_a", "dentist_a"])
def test_extended_catalog_writes_are_master_only(engine, world, who):
    ctx = getattr(world, who)
    with pytest.raises(PermissionDenied):
        catalog.create_prosthesis_type(engine, ctx, {"nome_tipo": "X", "categoria_tipo": "Y"})
    with pytest.raises(PermissionDenied):
        catalog.create_material(engine, ctx, {"nome_material": "X", "tipo_material": "Y"})
    with pytest.raises(PermissionDenied):
        catalog.create_compatibility(engine, ctx, {"id_produto": 1, "cores_compativeis": "NA"})
    with pytest.raises(PermissionDenied):
        catalog.delete_product(engine, ctx, 1)
