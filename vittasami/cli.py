"""
Administrative command line for VittaSami.

    vittasami-admin init-db
    vittasami-admin create-super-admin --email admin@example.com
    vittasami-admin generate-secret
"""

import argparse
import getpass
import secrets
import sys

from vittasami.config import MIN_CHANGE_PASSWORD
from vittasami.database import init_engine, init_schema
from vittasami.errors import ApiError
from vittasami.users import create_user


def cmd_init_db(args) -> int:
    engine = init_engine()
    tables = init_schema(engine)
    print(f"[init] Schema ready ({len(tables)} tables): {', '.join(tables)}")
    return 0


def cmd_create_super_admin(args) -> int:
    engine = init_engine()

    email = args.email or input("Email: ").strip()
    first_name = args.first_name or input("First name: ").strip()
    last_name = args.last_name or input("Last name: ").strip()
    if not email or not first_name or not last_name:
        print("[ERROR] Email, first name and last name are required.", file=sys.stderr)
        return 1

    try:
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return 1

    if password != confirm:
        print("[ERROR] Passwords do not match.", file=sys.stderr)
        return 1
    if len(password) < MIN_CHANGE_PASSWORD:
        print(f"[ERROR] Password must be at least {MIN_CHANGE_PASSWORD} characters.", file=sys.stderr)
        return 1

    try:
        user = create_user(engine, email, password, first_name, last_name, role="super_admin")
    except ApiError as e:
        print(f"[ERROR] Could not create super admin: {e.message}", file=sys.stderr)
        return 1

    print(f"[auth] Super admin created: {user['email']} (id={user['id']})")
    return 0


def cmd_generate_secret(args) -> int:
    print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
    print("Copy the line above to your .env file")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vittasami-admin", description="VittaSami administration")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create missing database tables").set_defaults(func=cmd_init_db)

    admin = sub.add_parser("create-super-admin", help="Create a platform super admin")
    admin.add_argument("--email")
    admin.add_argument("--first-name")
    admin.add_argument("--last-name")
    admin.set_defaults(func=cmd_create_super_admin)

    sub.add_parser("generate-secret", help="Print a random JWT secret").set_defaults(func=cmd_generate_secret)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
