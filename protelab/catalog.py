"""
Laboratory catalog: products, shades, prosthesis types, materials and the
product/material/shade compatibility table.

Everyone may read the catalog; only admin_master may change it.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text

from protelab.database import (
    compatibilidade, cores, dump_json, fetch_all, fetch_one, load_json, materiais, products,
    tipos_protese, utcnow_iso,
)
from protelab.errors import Conflict, NotFound, ValidationError
from protelab.models import AccessContext
from protelab.permissions import require_super_admin

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("nome_produto", "categoria", "ativo")
COLOR_FIELDS = ("codigo_cor", "nome_cor", "escala", "grupo")
PROSTHESIS_TYPE_FIELDS = ("nome_tipo", "categoria_tipo", "compativel_produtos")
MATERIAL_FIELDS = ("nome_material", "tipo_material", "compativel_produtos")
COMPATIBILITY_FIELDS = ("materiais_compativeis", "cores_compativeis")

# Tables whose integer-list columns are stored as JSON text.
LIST_COLUMNS = {
    "tipos_protese": ("compativel_produtos",),
    "materiais": ("compativel_produtos",),
    "compatibilidade_produto_material_cor": ("materiais_compativeis",),
}

NO_COLORS = "NA"
_COLOR_RANGE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


# ── Helpers ──────────────────────────────────────────────────────────

def _required(data: Dict[str, Any], name: str) -> str:
    value = str(data.get(name) or "").strip()
    if not value:
        raise ValidationError(f"{name} is required.", name)
    return value


def _id_list(value: Any, name: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError(f"{name} must be a list of ids.", name)
    try:
        return sorted({int(v) for v in value})
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a list of ids.", name) from None


def parse_color_range(value: str) -> Optional[Tuple[int, int]]:
    """`"NA"` means no shade applies; otherwise an inclusive colour id range such as `"1-26"`."""
    if value.strip().upper() == NO_COLORS:
        return None
    match = _COLOR_RANGE.match(value)
    if not match:
        raise ValidationError("cores_compativeis must be 'NA' or a range like '1-26'.",
                              "cores_compativeis")
    start, end = int(match.group(1)), int(match.group(2))
    if start > end:
        raise ValidationError("cores_compativeis range is reversed.", "cores_compativeis")
    return start, end


def _decode(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    for column in LIST_COLUMNS.get(table, ()):
        row[column] = load_json(row[column]) or []
    return row


def _encode(table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    encoded = dict(values)
    for column in LIST_COLUMNS.get(table, ()):
        if column in encoded:
            encoded[column] = dump_json(_id_list(encoded[column], column))
    return encoded


def _list(engine, table: str, order_by: str) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = fetch_all(conn, f"SELECT * FROM {table} ORDER BY {order_by}")
    return [_decode(table, r) for r in rows]


def _insert(engine, table, values: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow_iso()
    values = {**_encode(table.name, values), "created_at": now, "updated_at": now}
    with engine.begin() as conn:
        result = conn.execute(table.insert().values(**values))
        row_id = result.inserted_primary_key[0]
        row = fetch_one(conn, f"SELECT * FROM {table.name} WHERE id = :id", {"id": row_id})
    return _decode(table.name, row)


def _update(engine, table: str, row_id: int, data: Dict[str, Any], allowed) -> Dict[str, Any]:
    updates = _encode(table, {k: v for k, v in data.items() if k in allowed})
    if not updates:
        raise ValidationError("No updatable field was provided.")
    updates["updated_at"] = utcnow_iso()
    assignments = ", ".join(f"{k} = :{k}" for k in updates)
    with engine.begin() as conn:
        result = conn.execute(text(f"UPDATE {table} SET {assignments} WHERE id = :row_id"),
                              {**updates, "row_id": row_id})
        if result.rowcount != 1:
            raise NotFound(f"{table} row {row_id} not found.")
        row = fetch_one(conn, f"SELECT * FROM {table} WHERE id = :id", {"id": row_id})
    return _decode(table, row)


def _delete(engine, table: str, row_id: int) -> None:
    with engine.begin() as conn:
        result = conn.execute(text(f"DELETE FROM {table} WHERE id = :row_id"), {"row_id": row_id})
        if result.rowcount != 1:
            raise NotFound(f"{table} row {row_id} not found.")


# ── Products ─────────────────────────────────────────────────────────

def list_products(engine, active_only: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM products"
    if active_only:
        sql += " WHERE ativo = :active"
    sql += " ORDER BY categoria, nome_produto"
    with engine.connect() as conn:
        rows = fetch_all(conn, sql, {"active": True})
    for r in rows:
        r["ativo"] = bool(r["ativo"])
    return rows


def create_product(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _insert(engine, products, {
        "nome_produto": _required(data, "nome_produto"),
        "categoria": _required(data, "categoria"),
        "ativo": bool(data.get("ativo", True)),
    })


def update_product(engine, ctx: AccessContext, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _update(engine, "products", product_id, data, PRODUCT_FIELDS)


def delete_product(engine, ctx: AccessContext, product_id: int) -> None:
    """Remove a product; refused while a compatibility row still points at it."""
    require_super_admin(ctx.role, "catalog changes")
    with engine.connect() as conn:
        linked = fetch_one(conn, "SELECT id FROM compatibilidade_produto_material_cor "
                                 "WHERE id_produto = :pid", {"pid": product_id})
    if linked:
        raise Conflict(f"Product {product_id} still has a compatibility entry.")
    _delete(engine, "products", product_id)
    logger.info("Product %s deleted by %s", product_id, ctx.user_id)


# ── Shades ───────────────────────────────────────────────────────────

def list_colors(engine) -> List[Dict[str, Any]]:
    return _list(engine, "cores", "escala, codigo_cor")


def create_color(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _insert(engine, cores, {
        "codigo_cor": _required(data, "codigo_cor"),
        "nome_cor": _required(data, "nome_cor"),
        "escala": data.get("escala"),
        "grupo": data.get("grupo"),
    })


def update_color(engine, ctx: AccessContext, color_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _update(engine, "cores", color_id, data, COLOR_FIELDS)


# ── Prosthesis types ─────────────────────────────────────────────────

def list_prosthesis_types(engine) -> List[Dict[str, Any]]:
    return _list(engine, "tipos_protese", "categoria_tipo, nome_tipo")


def create_prosthesis_type(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _insert(engine, tipos_protese, {
        "nome_tipo": _required(data, "nome_tipo"),
        "categoria_tipo": _required(data, "categoria_tipo"),
        "compativel_produtos": data.get("compativel_produtos"),
    })


def update_prosthesis_type(engine, ctx: AccessContext, type_id: int,
                           data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _update(engine, "tipos_protese", type_id, data, PROSTHESIS_TYPE_FIELDS)


def delete_prosthesis_type(engine, ctx: AccessContext, type_id: int) -> None:
    require_super_admin(ctx.role, "catalog changes")
    _delete(engine, "tipos_protese", type_id)


# ── Materials ────────────────────────────────────────────────────────

def list_materials(engine) -> List[Dict[str, Any]]:
    return _list(engine, "materiais", "tipo_material, nome_material")


def create_material(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _insert(engine, materiais, {
        "nome_material": _required(data, "nome_material"),
        "tipo_material": _required(data, "tipo_material"),
        "compativel_produtos": data.get("compativel_produtos"),
    })


def update_material(engine, ctx: AccessContext, material_id: int,
                    data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    return _update(engine, "materiais", material_id, data, MATERIAL_FIELDS)


def delete_material(engine, ctx: AccessContext, material_id: int) -> None:
    require_super_admin(ctx.role, "catalog changes")
    _delete(engine, "materiais", material_id)


# ── Compatibility ────────────────────────────────────────────────────

def list_compatibility(engine) -> List[Dict[str, Any]]:
    return _list(engine, "compatibilidade_produto_material_cor", "id_produto")


def create_compatibility(engine, ctx: AccessContext, data: Dict[str, Any]) -> Dict[str, Any]:
    """Attach materials and a shade range to a product (one entry per product)."""
    require_super_admin(ctx.role, "catalog changes")
    try:
        product_id = int(data.get("id_produto"))
    except (TypeError, ValueError):
        raise ValidationError("id_produto is required.", "id_produto") from None
    colors = _required(data, "cores_compativeis")
    if parse_color_range(colors) is None:
        colors = NO_COLORS

    with engine.connect() as conn:
        if not fetch_one(conn, "SELECT id FROM products WHERE id = :pid", {"pid": product_id}):
            raise NotFound(f"Product {product_id} not found.")
        if fetch_one(conn, "SELECT id FROM compatibilidade_produto_material_cor "
                           "WHERE id_produto = :pid", {"pid": product_id}):
            raise Conflict(f"Product {product_id} already has a compatibility entry.")
    return _insert(engine, compatibilidade, {
        "id_produto": product_id,
        "materiais_compativeis": data.get("materiais_compativeis"),
        "cores_compativeis": colors,
    })


def update_compatibility(engine, ctx: AccessContext, compatibility_id: int,
                         data: Dict[str, Any]) -> Dict[str, Any]:
    require_super_admin(ctx.role, "catalog changes")
    if "cores_compativeis" in data:
        parse_color_range(str(data["cores_compativeis"] or ""))
    return _update(engine, "compatibilidade_produto_material_cor", compatibility_id, data,
                   COMPATIBILITY_FIELDS)


def delete_compatibility(engine, ctx: AccessContext, compatibility_id: int) -> None:
    require_super_admin(ctx.role, "catalog changes")
    _delete(engine, "compatibilidade_produto_material_cor", compatibility_id)


def product_options(engine, product_id: int) -> Dict[str, Any]:
    """
    What may be ordered together with a product.

    Materials come from the product's compatibility entry, shades from its
    colour id range, prosthesis types from their own product lists. A product
    without an entry has no compatible materials or shades.
    """
    with engine.connect() as conn:
        product = fetch_one(conn, "SELECT * FROM products WHERE id = :pid", {"pid": product_id})
        if not product:
            raise NotFound(f"Product {product_id} not found.")
        entry = fetch_one(conn, "SELECT * FROM compatibilidade_produto_material_cor "
                                "WHERE id_produto = :pid", {"pid": product_id})

    material_ids, color_range = [], None
    if entry:
        material_ids = load_json(entry["materiais_compativeis"]) or []
        color_range = parse_color_range(entry["cores_compativeis"])

    materials = [m for m in list_materials(engine) if m["id"] in material_ids]
    colors = []
    if color_range is not None:
        colors = [c for c in list_colors(engine) if color_range[0] <= c["id"] <= color_range[1]]
    types = [t for t in list_prosthesis_types(engine) if product_id in t["compativel_produtos"]]

    product["ativo"] = bool(product["ativo"])
    return {"product": product, "materials": materials, "colors": colors,
            "prosthesis_types": types}
