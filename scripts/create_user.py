import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userdb.database import SessionProvider
from userdb.errors import StartupError, UserDBError
from userdb.repository import UserRepository, ensure_email_available
from userdb.validation import normalize_age


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user record")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--age",
        default=None,
        help="Age in years; values outside 0-150 are stored as unspecified",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a YAML connection file (defaults to USERDB_CONFIG or config/database.yaml)",
    )
    return parser.parse_args(argv)


def main(argv=None, provider: Optional[SessionProvider] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s [%(levelname)s] %(message)s")

    if provider is None:
        provider = SessionProvider.from_environment(config_path=args.config_path)

    try:
        provider.initialize()
        repository = UserRepository(provider)
        ensure_email_available(repository, args.email.strip())
        user = repository.create(args.name, args.email, normalize_age(args.age))
    except StartupError as exc:
        print(f"Error: unable to reach the database: {exc}", file=sys.stderr)
        return 1
    except UserDBError as exc:  # duplicates, validation, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        provider.shutdown()

    age = user.age if user.age is not None else "unspecified"
    print(f"Created user #{user.id}: {user.name} <{user.email}> (age: {age})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
