#!/usr/bin/env python3
"""Create an administrator account (first-run bootstrap).
Usage: python scripts/create_admin.py --username admin --email admin@example.com --full-name "Shop Admin"
       python scripts/create_admin.py --default   # username "test", password "test12", dev only
The password is read from ADMIN_PASSWORD or prompted for."""
import argparse
import asyncio
import getpass
import os
import sys

from repairdesk.config import settings
from repairdesk.core.errors import AuthError
from repairdesk.db.session import database
from repairdesk.models.user import Role
from repairdesk.services.credential_store import CredentialStore
from repairdesk.services.users import register_user

DEFAULT_ADMIN = {
    "username": "test",
    "email": "test@mail.com",
    "password": "test12",
    "full_name": "Default Administrator",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a RepairDesk administrator")
    parser.add_argument("--username")
    parser.add_argument("--email")
    parser.add_argument("--full-name", dest="full_name")
    parser.add_argument("--default", action="store_true", help="create the development default admin")
    return parser.parse_args(argv)


async def create_admin(username: str, email: str, password: str, full_name: str) -> int:
    await database.init()
    try:
        async with database.session() as session:
            store = CredentialStore(session)
            if await store.username_or_email_taken(username, email):
                print(f"User {username} / {email} already exists")
                return 1
            user = await register_user(
                store,
                username=username,
                email=email,
                password=password,
                full_name=full_name,
                role=Role.admin.value,
            )
            print(f"Admin created: id={user.id} username={user.username} email={user.email}")
            return 0
    except AuthError as e:
        print(f"Cannot create admin: {e.message}")
        return 1
    finally:
        await database.dispose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.default:
        if settings.app_env == "production":
            print("--default is not allowed when APP_ENV=production")
            return 1
        return asyncio.run(create_admin(**DEFAULT_ADMIN))
    if not args.username or not args.email or not args.full_name:
        print("--username, --email and --full-name are required (or use --default)")
        return 1
    password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass("Password: ")
    return asyncio.run(create_admin(args.username, args.email, password, args.full_name))


if __name__ == "__main__":
    sys.exit(main())
