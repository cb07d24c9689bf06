"""
Interactive operator console for the laboratory order pipeline.
"""

import getpass

import pandas as pd

from protelab.analysis import build_dashboard, format_dashboard
from protelab.database import init_engine
from protelab.errors import LabError
from protelab.logging_config import configure_logging
from protelab.rbac import authenticate, build_policy
from protelab.scoped_queries import list_orders
from protelab.state_machine import OrderStateMachine
from protelab.timeline import load_order_timeline

MAX_PREVIEW_ROWS = 20

HELP = """Commands:
  pedidos            list visible orders
  timeline <id>      show an order's history
  avancar <id>       move an order to its next stage (admin_master)
  cancelar <id>      cancel an order (admin_master)
  painel             dashboard summary
  quit               leave"""


def _print_orders(rows):
    if not rows:
        print("(no orders)")
        return
    df = pd.DataFrame(rows)[["id", "patient_name", "dentist", "priority", "deadline", "status_label"]]
    print(df.head(MAX_PREVIEW_ROWS).to_string(index=False))
    if len(df) > MAX_PREVIEW_ROWS:
        print(f"... {len(df) - MAX_PREVIEW_ROWS} more")


def _print_timeline(events):
    if not events:
        print("(no events)")
        return
    for ev in events:
        who = ev.user_name or ev.user_id or "-"
        print(f"  {ev.created_at}  {ev.label:<30} {who}")


def main():
    print("=== ProteLab: Laboratory Order Console ===\n")
    configure_logging()

    engine = init_engine()
    machine = OrderStateMachine(engine)

    # ── Login ────────────────────────────────────────────────────────
    try:
        email = input("Email (or 'quit'): ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not email or email.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    try:
        password = getpass.getpass("Password: ")
        ctx = authenticate(engine, email, password)
        policy = build_policy(ctx)
    except (LabError, EOFError, KeyboardInterrupt) as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    print(f"\n[auth] Logged in as: {ctx.display_name} (role={ctx.role.value})")
    print(f"[auth] Policy: {policy.notes}")
    print(HELP)

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            line = input("\nprotelab> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not line:
            continue
        command, _, arg = line.partition(" ")
        command = command.lower()
        arg = arg.strip()

        if command in {"quit", "exit"}:
            print("Goodbye.")
            break

        try:
            if command == "pedidos":
                _print_orders(list_orders(engine, ctx))
            elif command == "timeline" and arg:
                _print_timeline(load_order_timeline(engine, ctx, arg))
            elif command == "avancar" and arg:
                result = machine.advance(ctx, arg)
                print(f"[ok] {result['previous_status']} -> {result['status']}")
            elif command == "cancelar" and arg:
                result = machine.cancel(ctx, arg)
                print(f"[ok] {result['previous_status']} -> {result['status']}")
            elif command == "painel":
                print(format_dashboard(build_dashboard(engine, ctx)))
            else:
                print(HELP)
        except LabError as e:
            print(f"\n[{e.code}] {e.message}")


if __name__ == "__main__":
    main()
