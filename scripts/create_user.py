import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from acme_dashboard.config import load_settings, resolve_database_url
from acme_dashboard.database import Database
from acme_dashboard.validation import RegistrationSchema, validate_form


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an Acme dashboard user")
    parser.add_argument("username", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to DASHBOARD_DB_PATH or data/dashboard.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_registration(username: str, email: str) -> RegistrationSchema:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        result = validate_form(
            RegistrationSchema,
            {
                "username": username,
                "email": email,
                "password": password,
                "confirmPassword": confirm,
            },
        )
        if result.ok and result.value is not None:
            return result.value
        for field, messages in result.errors.items():
            for message in messages:
                print(f"{field}: {message}", file=sys.stderr)
        if "username" in result.errors or "email" in result.errors:
            raise SystemExit(1)
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    registration = prompt_for_registration(args.username.strip(), args.email.strip())

    if args.db_path:
        db_path = resolve_database_url(args.db_path, "dashboard.sqlite3")
    else:
        db_path = load_settings().database_path

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(registration.username, registration.email, registration.password)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
