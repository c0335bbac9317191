import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from user_api.config import load_service_config, resolve_database_path
from user_api.database import Database
from user_api.errors import Conflict


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user directly in the user database")
    parser.add_argument("username", help="Unique username used to sign in")
    parser.add_argument("--name", default=None, help="Display name (defaults to the username)")
    parser.add_argument("--email", default=None, help="Optional unique email address")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to USERAPI_DB_PATH or data/users.sqlite3)",
    )
    return parser.parse_args(argv)


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if not password:
            print("Password must not be empty.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main(argv=None) -> int:
    args = parse_args(argv)
    password = prompt_for_password()

    if args.db_path:
        db_path = resolve_database_path(args.db_path)
    else:
        db_path = load_service_config(environ=os.environ).database_path

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(args.username, password, name=args.name, email=args.email)
    except (Conflict, ValueError) as exc:
        message = exc.message if isinstance(exc, Conflict) else str(exc)
        print(f"Error: {message}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.username} <{user.email or 'no email set'}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
