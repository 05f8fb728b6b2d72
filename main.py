"""Command-line interface for the console user manager."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional, Sequence

from userdb.database import SessionProvider
from userdb.errors import StartupError, UserDBError, ValidationError
from userdb.models import User, summarize_users
from userdb.repository import UserRepository, ensure_email_available
from userdb.schema import EMAIL_MAX_LENGTH, NAME_MAX_LENGTH
from userdb.validation import normalize_age, parse_age, parse_user_id, require_text

logger = logging.getLogger("userdb.main")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML connection file (defaults to USERDB_CONFIG or config/database.yaml)",
    )
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=_LOG_LEVELS,
        help="Logging verbosity (default: WARNING)",
    )

    parser = argparse.ArgumentParser(description="Console user manager", parents=[common])
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="console")

    subparsers.add_parser("console", parents=[common], help="Launch the interactive user console")
    subparsers.add_parser("init-db", parents=[common], help="Create the users table if it is missing")
    subparsers.add_parser("check", parents=[common], help="Verify that the database is reachable")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"console", "init-db", "check"}

    if not args_list:
        args_list = ["console"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["console", *args_list]

    return parser.parse_args(args_list)


def _format_age(age: Optional[int]) -> str:
    return str(age) if age is not None else "not specified"


def _print_user(user: User) -> None:
    print(f"ID:      {user.id}")
    print(f"Name:    {user.name}")
    print(f"Email:   {user.email}")
    print(f"Age:     {_format_age(user.age)}")
    print(f"Created: {user.created_at.strftime('%Y-%m-%d %H:%M:%S %Z')}")


def _run_console(repository: UserRepository) -> None:
    """Provide an interactive user management console."""

    print("User Management Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) Create a new user")
            print("  2) Find a user by ID")
            print("  3) List all users")
            print("  4) Update a user")
            print("  5) Delete a user")
            print("  6) Find a user by email")
            print("  7) Show user statistics")
            print("  0) Exit")

            choice = input("Enter choice [0-7]: ").strip()

            try:
                if choice == "1":
                    _create_user(repository)
                elif choice == "2":
                    _find_by_id(repository)
                elif choice == "3":
                    _list_users(repository)
                elif choice == "4":
                    _update_user(repository)
                elif choice == "5":
                    _delete_user(repository)
                elif choice == "6":
                    _find_by_email(repository)
                elif choice == "7":
                    _show_statistics(repository)
                elif choice == "0":
                    print("Goodbye!")
                    return
                else:
                    print("Invalid selection. Please choose a number from the menu.")
            except UserDBError as exc:
                logger.error("Menu option %s failed: %s", choice, exc)
                print(f"Error: {exc}")

            print()
    except EOFError:
        print("\nEnd of input reached. Exiting user console.")
    except KeyboardInterrupt:
        print("\nExiting user console.")


def _create_user(repository: UserRepository) -> None:
    print("\nCreate a new user.")
    name = require_text(input("Name: "), "Name", max_length=NAME_MAX_LENGTH)
    email = require_text(input("Email address: "), "Email", max_length=EMAIL_MAX_LENGTH)
    ensure_email_available(repository, email)

    age_input = input("Age (leave blank to skip): ").strip()
    age = normalize_age(age_input)
    if age_input and age is None:
        print("Invalid age; it will be left unspecified.")

    user = repository.create(name, email, age)
    print("User created:")
    _print_user(user)


def _find_by_id(repository: UserRepository) -> None:
    user_id = parse_user_id(input("User ID: "))
    user = repository.find_by_id(user_id)
    if user is None:
        print(f"No user with ID {user_id} was found.")
        return
    _print_user(user)


def _list_users(repository: UserRepository) -> None:
    users = repository.find_all()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Age':>4}  Created")
    print("-" * 90)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        age = str(user.age) if user.age is not None else "-"
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {age:>4}  {created}")


def _update_user(repository: UserRepository) -> None:
    user_id = parse_user_id(input("User ID to update: "))
    user = repository.find_by_id(user_id)
    if user is None:
        print(f"No user with ID {user_id} was found.")
        return

    print("Current details:")
    _print_user(user)
    print("\nEnter new values (leave blank to keep the current value).")

    name = user.name
    new_name = input(f"Name [{user.name}]: ").strip()
    if new_name:
        name = require_text(new_name, "Name", max_length=NAME_MAX_LENGTH)

    email = user.email
    new_email = input(f"Email [{user.email}]: ").strip()
    if new_email:
        email = require_text(new_email, "Email", max_length=EMAIL_MAX_LENGTH)
        ensure_email_available(repository, email, current_email=user.email)

    age = user.age
    new_age = input(f"Age [{_format_age(user.age)}]: ").strip()
    if new_age:
        try:
            age = parse_age(new_age)
        except ValidationError as exc:
            print(f"{exc}; keeping the current value.")

    updated = repository.update(replace(user, name=name, email=email, age=age))
    print("User updated:")
    _print_user(updated)


def _delete_user(repository: UserRepository) -> None:
    user_id = parse_user_id(input("User ID to delete: "))
    user = repository.find_by_id(user_id)
    if user is None:
        print(f"No user with ID {user_id} was found.")
        return

    _print_user(user)
    confirmation = input("Delete this user? [y/N]: ").strip().lower()
    if confirmation not in {"y", "yes"}:
        print("Deletion cancelled.")
        return

    if repository.delete(user_id):
        print(f"Deleted user #{user_id}.")
    else:
        print(f"User #{user_id} no longer exists.")


def _find_by_email(repository: UserRepository) -> None:
    email = require_text(input("Email address: "), "Email")
    user = repository.find_by_email(email)
    if user is None:
        print(f"No user with email '{email}' was found.")
        return
    _print_user(user)


def _show_statistics(repository: UserRepository) -> None:
    total = repository.count()
    print(f"Total users: {total}")
    if total == 0:
        return

    summary = summarize_users(repository.find_all())
    print(f"With age:    {summary.with_age}")
    print(f"Without age: {summary.without_age}")
    if summary.average_age is not None:
        print(f"Average age: {summary.average_age:.1f}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s [%(levelname)s] %(message)s")

    provider = SessionProvider.from_environment(config_path=args.config)
    try:
        if args.command == "check":
            if provider.is_connection_available():
                print("Database connection is available.")
                return 0
            print("Database connection is unavailable.")
            return 1

        try:
            provider.initialize()
        except StartupError as exc:
            logger.critical("Startup failed: %s", exc)
            raise SystemExit(f"Unable to start: {exc}") from exc

        if args.command == "init-db":
            print("Database initialisation complete.")
        elif args.command == "console":
            _run_console(UserRepository(provider))
        return 0
    finally:
        provider.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
