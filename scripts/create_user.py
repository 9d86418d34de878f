import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from user_service.database import ConnectionPool, resolve_database_path
from user_service.errors import EmailTaken, ValidationFailed
from user_service.models import NewUser
from user_service.repository import UserRepository
from user_service.validation import PASSWORD_MIN_LENGTH


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user account")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument("--age", type=int, default=None, help="Optional age (0-150)")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to USER_SERVICE_DB_PATH or data/users.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    db_env = args.db_path or os.getenv("USER_SERVICE_DB_PATH")
    pool = ConnectionPool(resolve_database_path(db_env), size=1)
    try:
        pool.initialize()
        repository = UserRepository(pool)
        user = repository.create(NewUser(name=args.name, email=args.email, password=password, age=args.age))
    except ValidationFailed as exc:
        for message in exc.messages:
            print(f"Error: {message}", file=sys.stderr)
        return 1
    except EmailTaken as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        pool.close()

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
