"""
Interactive operator console for the MedVisit access core.
Paste a bearer token, then browse the catalogs exactly as that identity sees them.
"""

from medvisit.api.app import build_services
from medvisit.database import init_engine
from medvisit.errors import AccessError
from medvisit.models import to_dict

COMMANDS = {
    "whoami": "show your effective role and profile",
    "doctors": "list doctors visible to you",
    "medications": "list medications visible to you",
    "centers": "list medical centers visible to you",
    "visits": "list your visits (all visits for admins)",
    "promote": "bootstrap: promote yourself to admin (allow-listed email only)",
    "quit": "exit",
}

CATALOG_COMMANDS = {
    "doctors": "doctors",
    "medications": "medications",
    "centers": "medical_centers",
}


def print_rows(rows, columns):
    if not rows:
        print("  (nothing visible)")
        return
    for row in rows:
        data = to_dict(row)
        print("  " + " | ".join(f"{c}={data.get(c)}" for c in columns))


def run_command(services, identity, command: str) -> bool:
    """Execute one console command. Returns False when the session should end."""
    if command in {"quit", "exit"}:
        print("Goodbye.")
        return False

    if command == "help":
        for name, desc in COMMANDS.items():
            print(f"  {name:<12} {desc}")
    elif command == "whoami":
        profile = services.reconciler.reconcile(identity)
        print(f"  {profile.external_id} role={profile.role} name={profile.name}")
        print(f"  assigned: doctors={profile.assigned_doctors} "
              f"medications={profile.assigned_medications} "
              f"centers={profile.assigned_medical_centers}")
    elif command in CATALOG_COMMANDS:
        rows = services.scoped.list(CATALOG_COMMANDS[command], identity)
        print_rows(rows, ["id", "name"])
    elif command == "visits":
        rows = services.visits.list_visits(identity)
        print_rows(rows, ["id", "date", "doctor_id", "status"])
    elif command == "promote":
        profile = services.reconciler.promote_self_if_allowlisted(identity)
        print(f"  You are now {profile.role}.")
    else:
        print(f"  Unknown command '{command}'. Type 'help'.")
    return True


def main():
    print("=== MedVisit Access Console ===\n")

    engine = init_engine()
    services = build_services(engine)

    # ── Login ────────────────────────────────────────────────────────
    try:
        token = input("Enter bearer token (or 'quit'): ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not token or token.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    try:
        identity = services.identity.resolve_token(token)
        profile = services.reconciler.reconcile(identity)
    except AccessError as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    print(f"\n[auth] Logged in as: {profile.name or identity.email or identity.external_id} "
          f"(role={profile.role})")

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            command = input("\nCommand (help for list): ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not command:
            continue

        try:
            if not run_command(services, identity, command):
                break
        except AccessError as e:
            print(f"\n[{e.kind.upper()}] {e}")


if __name__ == "__main__":
    main()
