#!/usr/bin/env python3
"""
CredGate -- operator CLI for the credential store.

Usage:
  python main.py create-user --name "Alice Smith" --email alice@example.com --role admin
  python main.py create-user --name Bob --email bob@example.com --password-stdin < pw.txt
  python main.py list-users
  python main.py set-role 2 admin
  python main.py set-status 2 suspended
  python main.py issue-token alice@example.com
  python main.py serve --host 0.0.0.0 --port 8000

The CLI is a trusted operator tool: it talks to the store directly and is not
subject to the API's role checks. It reads the same environment as the API
(DATABASE_URL, SECRET_KEY, BCRYPT_ROUNDS, ...).

Exit codes: 0 success, 1 domain error (duplicate email, unknown user, ...),
2 usage error.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.factory import build_auth_service
from auth.models import ROLES, STATUSES, User
from auth.service import AuthService
from core.config import get_settings


def _read_password(args: argparse.Namespace) -> str:
    """Password from stdin (--password-stdin) or an interactive double prompt."""
    if args.password_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def _print_user(user: User) -> None:
    print(f"  {user.id:>5}  {user.email:<32} {user.role:<6} {user.status:<10} {user.name}")


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password(args)
    user = User(name=args.name, email=args.email, phone=args.phone, role=args.role, status=args.status)
    created = service.store.create(user, password)
    print(f"  Created user {created.id} ({created.email}, role={created.role})")
    return 0


def _cmd_list_users(service: AuthService, args: argparse.Namespace) -> int:
    users = service.store.list_users()
    if not users:
        print("  No users.")
        return 0
    for user in users:
        _print_user(user)
    return 0


def _cmd_set_role(service: AuthService, args: argparse.Namespace) -> int:
    _print_user(service.store.update_role(args.user_id, args.role))
    return 0


def _cmd_set_status(service: AuthService, args: argparse.Namespace) -> int:
    _print_user(service.store.update_status(args.user_id, args.status))
    return 0


def _cmd_issue_token(service: AuthService, args: argparse.Namespace) -> int:
    """Mint a token for an existing user without a password (operator break-glass)."""
    user = service.store.find_by_email(args.email)
    print(service.issuer.issue(user))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="credgate", description="CredGate operator CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--phone", default="")
    create.add_argument("--role", choices=ROLES, default="user")
    create.add_argument("--status", choices=STATUSES, default="active")
    create.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    sub.add_parser("list-users", help="List all users")

    role = sub.add_parser("set-role", help="Change a user's role")
    role.add_argument("user_id", type=int)
    role.add_argument("role", choices=ROLES)

    status = sub.add_parser("set-status", help="Change a user's status (suspend instead of delete)")
    status.add_argument("user_id", type=int)
    status.add_argument("status", choices=STATUSES)

    token = sub.add_parser("issue-token", help="Print a bearer token for a user")
    token.add_argument("email")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    return parser


_COMMANDS = {
    "create-user": _cmd_create_user,
    "list-users": _cmd_list_users,
    "set-role": _cmd_set_role,
    "set-status": _cmd_set_status,
    "issue-token": _cmd_issue_token,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "serve":
        return _cmd_serve(args)

    service = build_auth_service(get_settings())
    try:
        return _COMMANDS[args.command](service, args)
    except AuthError as exc:
        print(f"  [!] {exc.public_message} ({exc.reason})", file=sys.stderr)
        return 1
    finally:
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
