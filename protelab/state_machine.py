"""
Order lifecycle state machine.

Orders move one step at a time along the production chain; cancellation is a
separate administrative action. Every applied transition updates the order
and appends its audit entry in the same transaction.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import text

from protelab.audit import append_entry, entry_as_row
from protelab.database import fetch_one, utcnow_iso
from protelab.errors import Conflict, NotFound, PermissionDenied, TransitionError
from protelab.models import AccessContext
from protelab.permissions import can_change_status, is_super_admin
from protelab.status_catalog import (
    CANCELLED, FORWARD_CHAIN, TERMINAL_STATUSES, is_known_status, normalize_status,
)

logger = logging.getLogger(__name__)

NEXT_STATUS: Dict[str, str] = dict(zip(FORWARD_CHAIN, FORWARD_CHAIN[1:]))


def next_status(current: Optional[str]) -> str:
    """Successor of *current* in the forward chain."""
    canonical = normalize_status(current)
    if canonical is None:
        raise TransitionError(f"Unrecognized status '{current}'.", current, None)
    if canonical in TERMINAL_STATUSES:
        raise TransitionError(f"Status '{canonical}' is terminal.", canonical, None)
    return NEXT_STATUS[canonical]


def validate_transition(current: Optional[str], target: Optional[str]) -> str:
    """Return the canonical current status if *current* → *target* is allowed."""
    if not is_known_status(target):
        raise TransitionError(f"Unrecognized target status '{target}'.", current, target)
    canonical = normalize_status(current)
    if canonical is None:
        raise TransitionError(f"Unrecognized status '{current}'.", current, target)
    if canonical in TERMINAL_STATUSES:
        raise TransitionError(f"Status '{canonical}' is terminal.", canonical, target)
    if target == CANCELLED or NEXT_STATUS.get(canonical) == target:
        return canonical
    raise TransitionError(
        f"Cannot move from '{canonical}' to '{target}'; the next status is "
        f"'{NEXT_STATUS[canonical]}'.",
        canonical,
        target,
    )


class OrderStateMachine:
    """Applies status transitions to stored orders."""

    def __init__(self, engine, hub=None):
        self.engine = engine
        self.hub = hub

    def advance(self, ctx: AccessContext, order_id: str,
                expected_status: Optional[str] = None) -> Dict[str, Any]:
        """Move the order to the next status in the chain."""
        return self._apply(ctx, order_id, None, expected_status)

    def cancel(self, ctx: AccessContext, order_id: str,
               expected_status: Optional[str] = None) -> Dict[str, Any]:
        return self._apply(ctx, order_id, CANCELLED, expected_status)

    def transition(self, ctx: AccessContext, order_id: str, target_status: str,
                   expected_status: Optional[str] = None) -> Dict[str, Any]:
        """Explicit target; only the successor or `cancelado` is accepted."""
        return self._apply(ctx, order_id, target_status, expected_status)

    def _apply(self, ctx: AccessContext, order_id: str, target: Optional[str],
               expected_status: Optional[str]) -> Dict[str, Any]:
        if not can_change_status(is_super_admin(ctx.role)):
            raise PermissionDenied("Only admin_master may change order status.")

        with self.engine.begin() as conn:
            order = fetch_one(conn, "SELECT id, status, user_id FROM orders WHERE id = :oid",
                              {"oid": order_id})
            if not order:
                raise NotFound(f"Order {order_id} not found.")

            stored = order["status"]
            if expected_status is not None and expected_status != stored:
                raise Conflict(
                    f"Order {order_id} is at '{stored}', not '{expected_status}'. "
                    "Reload the order before retrying."
                )

            if target is None:
                target = next_status(stored)
            current = validate_transition(stored, target)

            now = utcnow_iso()
            result = conn.execute(
                text("UPDATE orders SET status = :target, updated_at = :now "
                     "WHERE id = :oid AND status = :stored"),
                {"target": target, "now": now, "oid": order_id, "stored": stored},
            )
            if result.rowcount != 1:
                raise Conflict(f"Order {order_id} changed concurrently; reload and retry.")

            entry = append_entry(
                conn, "order", order_id, "update", ctx.user_id,
                old_values={"status": current},
                new_values={"status": target},
            )

        logger.info("Order %s: %s -> %s by %s", order_id, current, target, ctx.user_id)
        if self.hub is not None:
            self.hub.publish("audit_logs", entry_as_row(entry))
            self.hub.publish("orders", {"id": order_id, "status": target, "user_id": order["user_id"]})

        return {"id": order_id, "previous_status": current, "status": target, "updated_at": now}
