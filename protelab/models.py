"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from protelab.errors import ValidationError


class Role(str, Enum):
    """Role tier of an authenticated actor, from widest to narrowest scope."""
    ADMIN_MASTER = "admin_master"
    ADMIN_FILIAL = "admin_filial"
    ADMIN_CLINICA = "admin_clinica"
    DENTIST = "dentist"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        """Map a stored role tag to a Role; `admin_matriz` is the branch tier."""
        tag = str(value or "").strip().lower()
        if tag == "admin_matriz":
            return cls.ADMIN_FILIAL
        try:
            return cls(tag)
        except ValueError:
            raise ValueError(f"Unsupported role '{value}'.") from None


@dataclass
class AccessContext:
    """Represents the authenticated actor's identity and organisational links."""
    user_id: str
    display_name: str
    role: Role
    filial_id: Optional[str]   # branch membership
    clinica_id: Optional[str]  # clinic membership
    active: bool = True


@dataclass
class Policy:
    """Row-visibility policy derived from an AccessContext."""
    role: Role
    scope: str                  # "global", "filial", "clinica" or "own"
    scope_value: Optional[str]  # id bounding the visible rows (None for global)
    notes: str


@dataclass(frozen=True)
class StatusDefinition:
    code: str
    label: str
    color: str


@dataclass(frozen=True)
class Capability:
    key: str
    label: str
    path: str


@dataclass
class AuditLogEntry:
    """One immutable change record for an entity."""
    id: str
    entity_type: str
    entity_id: str
    action: str                          # "create" or "update"
    user_id: Optional[str]
    old_values: Optional[Dict[str, Any]]
    new_values: Optional[Dict[str, Any]]
    created_at: str


@dataclass
class TimelineEvent:
    id: str
    action: str                # "create" or "status_change"
    status: str
    label: str
    created_at: str
    user_id: Optional[str]
    user_name: Optional[str] = None


def normalize_teeth(teeth: Any, field_name: str = "selected_teeth") -> List[str]:
    """Sorted, de-duplicated tooth identifiers; a bare string is rejected."""
    if teeth is None:
        return []
    if not isinstance(teeth, (list, tuple, set)):
        raise ValidationError("selected_teeth must be a list of tooth identifiers.", field_name)
    return sorted({str(t) for t in teeth})


@dataclass
class OrderItem:
    """A line item submitted with an order."""
    product_name: str
    prosthesis_type: str
    material: Optional[str] = None
    color: Optional[str] = None
    selected_teeth: List[str] = field(default_factory=list)
    quantity: int = 1
    unit_price: Optional[float] = None
    observations: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItem":
        product_name = str(data.get("product_name") or "").strip()
        prosthesis_type = str(data.get("prosthesis_type") or "").strip()
        if not product_name or not prosthesis_type:
            raise ValidationError("product_name and prosthesis_type are required for every item.")
        try:
            quantity = int(data.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError("quantity must be an integer.") from None
        if quantity < 1:
            raise ValidationError("quantity must be at least 1.")
        teeth = normalize_teeth(data.get("selected_teeth"))
        return cls(
            product_name=product_name,
            prosthesis_type=prosthesis_type,
            material=data.get("material"),
            color=data.get("color"),
            selected_teeth=teeth,
            quantity=quantity,
            unit_price=data.get("unit_price"),
            observations=data.get("observations"),
        )
