"""
Database engine initialisation, schema, and small row helpers.
"""

import json
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Column, Float, ForeignKey, Integer, MetaData, String, Table, Text,
    create_engine, text,
)

from protelab.config import get_env

metadata = MetaData()

auth_users = Table(
    "auth_users", metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("email_confirmed_at", String(40)),
    Column("created_at", String(40), nullable=False),
)

filiais = Table(
    "filiais", metadata,
    Column("id", String(36), primary_key=True),
    Column("nome_completo", String(255), nullable=False),
    Column("endereco", String(255), nullable=False),
    Column("telefone", String(40)),
    Column("email", String(255)),
    Column("cnpj", String(20)),
    Column("cep", String(12)),
    Column("cidade", String(120)),
    Column("estado", String(2)),
    Column("numero", String(20)),
    Column("complemento", String(120)),
    Column("ativo", Boolean, nullable=False, default=True),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

clinicas = Table(
    "clinicas", metadata,
    Column("id", String(36), primary_key=True),
    Column("nome_completo", String(255), nullable=False),
    Column("cnpj", String(20), nullable=False),
    Column("telefone", String(40), nullable=False),
    Column("email", String(255), nullable=False),
    Column("endereco", String(255)),
    Column("cep", String(12)),
    Column("cidade", String(120)),
    Column("estado", String(2)),
    Column("numero", String(20)),
    Column("complemento", String(120)),
    Column("ativo", Boolean, nullable=False, default=True),
    Column("filial_id", String(36), ForeignKey("filiais.id")),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

profiles = Table(
    "profiles", metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255)),
    Column("nome_completo", String(255)),
    Column("email", String(255)),
    Column("role_extended", String(20), nullable=False),
    Column("filial_id", String(36), ForeignKey("filiais.id")),
    Column("clinica_id", String(36), ForeignKey("clinicas.id")),
    Column("telefone", String(40)),
    Column("documento", String(40)),
    Column("cro", String(40)),
    Column("cpf", String(14)),
    Column("endereco", String(255)),
    Column("cep", String(12)),
    Column("cidade", String(120)),
    Column("estado", String(2)),
    Column("numero", String(20)),
    Column("complemento", String(120)),
    Column("ativo", Boolean, nullable=False, default=True),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

patients = Table(
    "patients", metadata,
    Column("id", String(36), primary_key=True),
    Column("nome_completo", String(255), nullable=False),
    Column("cpf", String(14), nullable=False),
    Column("telefone_contato", String(40), nullable=False),
    Column("email_contato", String(255), nullable=False),
    Column("observacoes", Text),
    Column("dentist_id", String(36), ForeignKey("profiles.id")),
    Column("clinica_id", String(36), ForeignKey("clinicas.id")),
    Column("filial_id", String(36), ForeignKey("filiais.id")),
    Column("ativo", Boolean, nullable=False, default=True),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

orders = Table(
    "orders", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("profiles.id"), nullable=False),
    Column("dentist", String(255), nullable=False),
    Column("patient_id", String(36), ForeignKey("patients.id"), nullable=False),
    Column("clinica_id", String(36), ForeignKey("clinicas.id")),
    Column("filial_id", String(36), ForeignKey("filiais.id")),
    # Single inline prosthesis for orders submitted before line items existed.
    Column("prosthesis_type", String(120)),
    Column("material", String(120)),
    Column("color", String(60)),
    Column("selected_teeth", Text, nullable=False, default="[]"),
    Column("priority", String(20), nullable=False),
    Column("deadline", String(40), nullable=False),
    Column("delivery_address", String(255)),
    Column("observations", Text),
    Column("status", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

order_items = Table(
    "order_items", metadata,
    Column("id", String(36), primary_key=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False),
    Column("product_name", String(255), nullable=False),
    Column("prosthesis_type", String(120), nullable=False),
    Column("material", String(120)),
    Column("color", String(60)),
    Column("selected_teeth", Text, nullable=False, default="[]"),
    Column("quantity", Integer, nullable=False, default=1),
    Column("unit_price", Float),
    Column("observations", Text),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

order_images = Table(
    "order_images", metadata,
    Column("id", String(36), primary_key=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False),
    Column("image_url", String(512), nullable=False),
    Column("annotations", Text),
    Column("created_at", String(40), nullable=False),
)

audit_logs = Table(
    "audit_logs", metadata,
    # seq breaks ties between entries written within the same timestamp.
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(36), nullable=False, unique=True),
    Column("entity_type", String(40), nullable=False),
    Column("entity_id", String(36)),
    Column("action", String(20), nullable=False),
    Column("user_id", String(36)),
    Column("old_values", Text),
    Column("new_values", Text),
    Column("created_at", String(40), nullable=False),
)

notifications = Table(
    "notifications", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("profiles.id")),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("type", String(40), nullable=False),
    Column("related_order_id", String(36)),
    Column("read", Boolean, nullable=False, default=False),
    Column("created_at", String(40), nullable=False),
)

products = Table(
    "products", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nome_produto", String(255), nullable=False),
    Column("categoria", String(120), nullable=False),
    Column("ativo", Boolean, nullable=False, default=True),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

cores = Table(
    "cores", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("codigo_cor", String(20), nullable=False),
    Column("nome_cor", String(120), nullable=False),
    Column("escala", String(60)),
    Column("grupo", String(60)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

tipos_protese = Table(
    "tipos_protese", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nome_tipo", String(120), nullable=False),
    Column("categoria_tipo", String(120), nullable=False),
    Column("compativel_produtos", Text, nullable=False, default="[]"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

materiais = Table(
    "materiais", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nome_material", String(120), nullable=False),
    Column("tipo_material", String(120), nullable=False),
    Column("compativel_produtos", Text, nullable=False, default="[]"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

# One row per product: compatible material ids and a colour id range ("1-26") or "NA".
compatibilidade = Table(
    "compatibilidade_produto_material_cor", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("id_produto", Integer, ForeignKey("products.id"), nullable=False, unique=True),
    Column("materiais_compativeis", Text, nullable=False, default="[]"),
    Column("cores_compativeis", String(20), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

support_conversations = Table(
    "support_conversations", metadata,
    Column("id", String(36), primary_key=True),
    Column("dentist_id", String(36), ForeignKey("profiles.id"), nullable=False),
    Column("dentist_name", String(255), nullable=False),
    Column("status", String(20), nullable=False),
    Column("unread_by_admin", Integer, nullable=False, default=0),
    Column("unread_by_dentist", Integer, nullable=False, default=0),
    Column("last_message_at", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
)

support_chat_messages = Table(
    "support_chat_messages", metadata,
    Column("id", String(36), primary_key=True),
    Column("conversation_id", String(36), ForeignKey("support_conversations.id"), nullable=False),
    Column("user_id", String(36), nullable=False),
    Column("sender_type", String(20), nullable=False),
    Column("message", Text, nullable=False),
    Column("read_by_admin", Boolean, nullable=False, default=False),
    Column("read_by_dentist", Boolean, nullable=False, default=False),
    Column("created_at", String(40), nullable=False),
)


def init_engine():
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


def create_schema(engine) -> None:
    """Create every table that does not exist yet."""
    metadata.create_all(engine)


# ── Row helpers ──────────────────────────────────────────────────────

def new_id() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def dump_json(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def load_json(raw: Optional[str]) -> Any:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


def fetch_all(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return [dict(row) for row in conn.execute(text(sql), params or {}).mappings().all()]


def fetch_one(conn, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    row = conn.execute(text(sql), params or {}).mappings().first()
    return dict(row) if row else None


def insert_row(conn, table: Table, values: Dict[str, Any]) -> None:
    conn.execute(table.insert().values(**values))
