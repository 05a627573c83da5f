"""
Create the first administrator if none exists.

Reads ADMIN_EMAIL / ADMIN_PASSWORD / ADMIN_NAME from the environment unless
given on the command line. Does nothing when an administrator already exists,
so it is safe to run on every deploy.

Usage (inside api container):
  python scripts/bootstrap_admin.py
  python scripts/bootstrap_admin.py --email head@club.be --name "Head Coach"
"""

from __future__ import annotations

import asyncio
import getpass
import os
import sys


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument("--email", type=str, default=None, help="administrator email (default: ADMIN_EMAIL)")
    parser.add_argument("--name", type=str, default=None, help="display name (default: ADMIN_NAME)")
    parser.add_argument(
        "--prompt-password",
        action="store_true",
        help="Ask for the password instead of reading ADMIN_PASSWORD.",
    )
    args = parser.parse_args()

    from core.exceptions import BootstrapError
    from core.logging import setup_logging
    from services.local_identity import CredentialDirectory, LocalIdentityGateway
    from services.membership.admin_bootstrap import AdminBootstrap
    from services.membership.profile_store import SqlProfileStore

    setup_logging()

    password = getpass.getpass("Administrator password: ") if args.prompt_password else None
    bootstrap = AdminBootstrap(
        SqlProfileStore(),
        LocalIdentityGateway(CredentialDirectory()),
        email=args.email,
        password=password,
        name=args.name,
    )
    if not bootstrap.configured:
        print("No administrator credentials: set ADMIN_EMAIL and ADMIN_PASSWORD or pass --email/--prompt-password")
        return 2

    try:
        profile = asyncio.run(bootstrap.ensure_admin())
    except BootstrapError as e:
        print(f"Bootstrap failed: {e.message}")
        return 1

    if profile is None:
        print("An administrator already exists; nothing to do.")
    else:
        print(f"Administrator ready: {profile.email} ({profile.role.value}/{profile.status.value})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
