#!/usr/bin/env python3
"""
ReelTalk auth -- administrative command line.

Works directly against the configured database (DATABASE_URL), so it can
bootstrap the first admin before the API has any users.

Usage:
  python main.py create-admin --email admin@example.com --username admin --password 's3cret'
  python main.py set-role someone@example.com admin
  python main.py purge-tokens

Environment variables:
  DATABASE_URL          SQLAlchemy URL of the auth database.
  ACCESS_TOKEN_SECRET   Required unless DEBUG=true (settings are validated on load).
"""

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from api.models import normalize_email_address
from auth.ledger import RefreshTokenLedger
from auth.models import Provider, Role, User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("reeltalk.cli")


def create_admin(store: UserStore, email: str, username: str, password: str) -> str:
    """Create a local admin account, or promote the existing account with that email.

    The email must pass the same check signin applies, or the account could
    never log in. Raises ValueError otherwise.
    """
    email = normalize_email_address(email)
    existing = store.get_by_email(email)
    if existing is not None:
        store.update_user(existing.id, role=Role.admin)
        print(f"  Promoted existing user {email} to admin.")
        return existing.id
    user_id = store.create_user(
        User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            provider=Provider.local,
            role=Role.admin,
        )
    )
    print(f"  Created admin {email} ({user_id}).")
    return user_id


def set_role(store: UserStore, email: str, role: str) -> None:
    user = store.get_by_email(email.strip().lower())
    if user is None:
        raise LookupError(f"no user with email '{email}'")
    store.update_user(user.id, role=Role(role))
    print(f"  {user.email} is now {role}.")


def purge_tokens(store: UserStore, ttl_seconds: int) -> int:
    removed = RefreshTokenLedger(store, ttl_seconds).purge_expired()
    print(f"  Purged {removed} expired refresh token(s).")
    return removed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reeltalk-auth",
        description="Administrative commands for the ReelTalk auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --username admin --password 's3cret'
  python main.py set-role someone@example.com user
  DATABASE_URL=sqlite:///prod.db python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create a local admin, or promote an existing account")
    admin.add_argument("--email", required=True, help="Login email of the admin")
    admin.add_argument("--username", required=True, help="Display name (ignored when promoting)")
    admin.add_argument("--password", required=True, help="Initial password (ignored when promoting)")

    role = sub.add_parser("set-role", help="Change the role of an existing account")
    role.add_argument("email", help="Login email of the account")
    role.add_argument("role", choices=[r.value for r in Role], help="New role")

    sub.add_parser("purge-tokens", help="Delete expired and revoked refresh tokens")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"  [!] Invalid configuration: {e}")
        return 1

    store = UserStore(settings.database_url)
    try:
        if args.command == "create-admin":
            create_admin(store, args.email, args.username, args.password)
        elif args.command == "set-role":
            set_role(store, args.email, args.role)
        elif args.command == "purge-tokens":
            purge_tokens(store, settings.refresh_token_expire_seconds)
    except (LookupError, ValueError) as e:
        print(f"  [!] {e}")
        return 1
    except SQLAlchemyError as e:
        logger.error("Database error during %s: %s", args.command, e)
        print(f"  [!] Database error: {e.__class__.__name__}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
