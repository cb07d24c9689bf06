"""
Role & permission resolver: page capabilities and status-change rights.

Every role-dependent decision in the application goes through this module;
other modules never compare role tags themselves.
"""

from typing import Callable, Dict, List, Optional, Tuple

from protelab.errors import PermissionDenied
from protelab.models import Capability, Role

ADMIN_ROLES = frozenset({Role.ADMIN_MASTER, Role.ADMIN_FILIAL, Role.ADMIN_CLINICA})

# Ordered as the navigation shows them.
_CAPABILITIES: List[Tuple[Capability, Callable[[Role], bool]]] = [
    (Capability("home", "Dashboard", "/"), lambda role: True),
    (Capability("pedidos", "Pedidos", "/pedidos"), lambda role: True),
    (Capability("pacientes", "Pacientes", "/pacientes"), lambda role: True),
    (Capability("agenda", "Agenda", "/agenda"), lambda role: True),
    (Capability("contato", "Contato", "/contato"), lambda role: True),
    (Capability("dentistas", "Dentistas", "/dentistas"), lambda role: role is not Role.DENTIST),
    (Capability("clinicas", "Clínicas", "/clinicas"), lambda role: role in ADMIN_ROLES),
    (Capability("filiais", "Matrizes", "/filiais"),
     lambda role: role in (Role.ADMIN_MASTER, Role.ADMIN_FILIAL)),
    (Capability("admin", "Admin", "/admin"), lambda role: role is Role.ADMIN_MASTER),
    (Capability("supportAdmin", "Suporte Admin", "/admin/suporte"),
     lambda role: role is Role.ADMIN_MASTER),
]

CAPABILITIES: Dict[str, Tuple[Capability, Callable[[Role], bool]]] = {
    cap.key: (cap, rule) for cap, rule in _CAPABILITIES
}


def can_access(capability: str, role: Optional[Role]) -> bool:
    """Unknown capabilities and unauthenticated callers are denied."""
    entry = CAPABILITIES.get(capability)
    if entry is None or role is None:
        return False
    return entry[1](role)


def accessible_capabilities(role: Optional[Role]) -> List[Capability]:
    if role is None:
        return []
    return [cap for cap, rule in _CAPABILITIES if rule(role)]


def is_admin(role: Optional[Role]) -> bool:
    return role in ADMIN_ROLES


def is_super_admin(role: Optional[Role]) -> bool:
    return role is Role.ADMIN_MASTER


def can_change_status(super_admin: bool) -> bool:
    """Only the super-admin tier may move an order through the pipeline."""
    return bool(super_admin)


def can_manage_clinics_in(role: Optional[Role], actor_filial_id: Optional[str],
                          target_filial_id: Optional[str]) -> bool:
    """Clinic create/edit/delete: global for master, own branch for branch admins."""
    if role is Role.ADMIN_MASTER:
        return True
    if role is Role.ADMIN_FILIAL:
        return actor_filial_id is not None and actor_filial_id == target_filial_id
    return False


def require_capability(capability: str, role: Optional[Role]) -> None:
    if not can_access(capability, role):
        raise PermissionDenied(f"Access to '{capability}' is not allowed for this role.")


def require_super_admin(role: Optional[Role], action: str = "this operation") -> None:
    if not is_super_admin(role):
        raise PermissionDenied(f"Only admin_master may perform {action}.")
