#!/usr/bin/env python3
"""Create a portal user, typically the first admin."""
from __future__ import annotations

import argparse
import getpass

from portal.auth import ALL_ROLES
from portal.db import UserAlreadyExistsError, create_user, init_db
from portal.passwords import hash_password


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--role", choices=ALL_ROLES, default="admin")
    parser.add_argument("--password", default=None, help="Prompted for when omitted.")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        parser.error("password must be at least 8 characters")

    init_db()
    try:
        user = create_user(name=args.name, email=args.email, password_hash=hash_password(password), role=args.role)
    except UserAlreadyExistsError as exc:
        print(str(exc))
        return 1
    print(f"Created {user['role']} user {user['id']}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
