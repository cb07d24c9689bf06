"""
Order status catalog: codes, labels, colours and role-gated label disclosure.
"""

from typing import Dict, List, Optional

from protelab.models import StatusDefinition

INITIAL_STATUS = "pedido_solicitado"
DELIVERED = "entregue"
CANCELLED = "cancelado"

UNKNOWN_LABEL = "Desconhecido"
UNKNOWN_COLOR = "bg-gray-100 text-gray-800"

# Forward production chain, in order, followed by the out-of-band cancellation.
STATUSES: List[StatusDefinition] = [
    StatusDefinition("pedido_solicitado", "Pedido Solicitado", "bg-yellow-100 text-yellow-800"),
    StatusDefinition("baixado_verificado", "Baixado e verificado", "bg-blue-100 text-blue-800"),
    StatusDefinition("projeto_realizado", "Projeto Realizado", "bg-purple-100 text-purple-800"),
    StatusDefinition("projeto_modelo_realizado", "Projeto do modelo Realizado",
                     "bg-indigo-100 text-indigo-800"),
    StatusDefinition("aguardando_entrega", "Aguardando entrega", "bg-orange-100 text-orange-800"),
    StatusDefinition("entregue", "Entregue", "bg-gray-100 text-gray-800"),
    StatusDefinition("cancelado", "Cancelado", "bg-red-100 text-red-800"),
]

_BY_CODE: Dict[str, StatusDefinition] = {s.code: s for s in STATUSES}

FORWARD_CHAIN: List[str] = [s.code for s in STATUSES if s.code != CANCELLED]
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

# Coarse vocabulary used by older dashboards. Derived from the canonical
# status on read; never stored.
DISPLAY_GROUPS: Dict[str, str] = {
    "pedido_solicitado": "pending",
    "baixado_verificado": "producao",
    "projeto_realizado": "producao",
    "projeto_modelo_realizado": "producao",
    "aguardando_entrega": "pronto",
    "entregue": "entregue",
    "cancelado": "cancelado",
}

DISPLAY_GROUP_LABELS: Dict[str, str] = {
    "pending": "Pendente",
    "producao": "Produção",
    "pronto": "Pronto",
    "entregue": "Entregue",
    "cancelado": "Cancelado",
}

# Rows written with the coarse vocabulary map onto the earliest canonical
# status of their group.
LEGACY_ALIASES: Dict[str, str] = {
    "pending": "pedido_solicitado",
    "producao": "baixado_verificado",
    "pronto": "aguardando_entrega",
}


def is_known_status(status: Optional[str]) -> bool:
    return status in _BY_CODE


def normalize_status(status: Optional[str]) -> Optional[str]:
    """Return the canonical code for a stored value, or None if unrecognised."""
    if status in _BY_CODE:
        return status
    return LEGACY_ALIASES.get(status or "")


def get_status_color(status: Optional[str]) -> str:
    definition = _BY_CODE.get(status or "")
    return definition.color if definition else UNKNOWN_COLOR


def get_status_label(status: Optional[str], is_super_admin_viewer: bool = False) -> str:
    """
    Human label for a status as seen by the viewer.

    Viewers below the super-admin tier never see the lab's internal stages:
    every order reads as "Pedido Solicitado" to them, whatever is stored.
    """
    if not is_super_admin_viewer:
        return _BY_CODE[INITIAL_STATUS].label
    definition = _BY_CODE.get(status or "")
    return definition.label if definition else UNKNOWN_LABEL


def get_status_options(is_super_admin_viewer: bool) -> List[StatusDefinition]:
    if is_super_admin_viewer:
        return list(STATUSES)
    return [_BY_CODE[INITIAL_STATUS]]


def display_group(status: Optional[str]) -> Optional[str]:
    canonical = normalize_status(status)
    return DISPLAY_GROUPS.get(canonical) if canonical else None
