#!/usr/bin/env python3
"""
FreightDesk -- administrative commands for the authentication core.

Usage:
  python main.py create-owner --email ops@freightdesk.io --name "Ops Team"
  python main.py create-owner --email ops@freightdesk.io --name "Ops Team" --password '...'
  python main.py cleanup-tokens
  python main.py list-sessions --email dispatch@acme-freight.com
  python main.py --database-url sqlite:///other.db cleanup-tokens

Platform owners cannot self-register; create-owner is the only way to make
one. When --password is omitted it is prompted for (twice) without echo.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (overridden by --database-url).
  JWT_SECRET, JWT_REFRESH_SECRET, DEBUG
                Validated by core/config.py with the same rules as the API
                server, so the CLI runs in the server's environment.
"""

import argparse
import getpass
from datetime import datetime, timezone
from typing import Optional

from auth.accounts import create_platform_owner, normalize_email
from auth.errors import EmailInUse
from auth.models import OwnerKind
from auth.passwords import PASSWORD_MIN_LENGTH
from auth.session import SessionManager
from auth.store import AuthStore
from auth.tokens import build_token_codec
from core.config import get_settings


def _prompt_password() -> Optional[str]:
    """Prompt for a password twice. Returns None if the entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _create_owner(store: AuthStore, args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _prompt_password()
    if password is None:
        return 1
    if len(password) < PASSWORD_MIN_LENGTH:
        print(f"  [!] Password must be at least {PASSWORD_MIN_LENGTH} characters.")
        return 1
    if not args.name.strip():
        print("  [!] --name must not be empty.")
        return 1
    try:
        owner = create_platform_owner(store, email=args.email, password=password, name=args.name.strip())
    except EmailInUse:
        print(f"  [!] '{args.email}' is already registered.")
        return 1
    print(f"  Platform owner created: {owner.email} (id {owner.id})")
    return 0


def _cleanup_tokens(store: AuthStore) -> int:
    sessions = SessionManager(store, build_token_codec(get_settings()))
    removed = sessions.cleanup_expired_tokens()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def _list_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    """Print the refresh tokens one principal holds, oldest first. Token values stay hidden."""
    email = normalize_email(args.email)
    tenant = store.get_tenant_by_email(email)
    if tenant is not None:
        kind, owner_id = OwnerKind.TENANT, tenant.id
    else:
        owner = store.get_owner_by_email(email)
        if owner is None:
            print(f"  [!] No account for '{email}'.")
            return 1
        kind, owner_id = OwnerKind.PLATFORM, owner.id

    records = store.list_refresh_tokens(kind, owner_id)
    print(f"  {email} ({kind.value} {owner_id}): {len(records)} refresh token(s)")
    for record in records:
        expires = datetime.fromtimestamp(record.expires_at, tz=timezone.utc).isoformat()
        print(f"    #{record.id}  created {record.created_at}  expires {expires}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="freightdesk",
        description="FreightDesk authentication administration.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment or .env)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    owner = sub.add_parser("create-owner", help="Create a platform owner account")
    owner.add_argument("--email", required=True, help="Login email of the new owner")
    owner.add_argument("--name", required=True, help="Display name")
    owner.add_argument("--password", help="Password (prompted when omitted)")

    sub.add_parser("cleanup-tokens", help="Delete expired refresh tokens once")

    sessions = sub.add_parser("list-sessions", help="Show the refresh tokens an account holds")
    sessions.add_argument("--email", required=True, help="Login email of the account")

    args = parser.parse_args(argv)
    db_url = args.database_url or get_settings().database_url

    store = AuthStore(db_url)
    try:
        if args.command == "create-owner":
            return _create_owner(store, args)
        if args.command == "list-sessions":
            return _list_sessions(store, args)
        return _cleanup_tokens(store)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
