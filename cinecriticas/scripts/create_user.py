"""
Create a user (e.g. the first admin) without going through the web form. Run from project root:
  python -m cinecriticas.scripts.create_user USERNAME EMAIL PASSWORD [role]
Without a role, the bootstrap rule applies: admin if no users exist yet, else user.
Example:
  python -m cinecriticas.scripts.create_user admin admin@example.com your-secure-password admin
"""
import argparse
import logging
import sys

from cinecriticas.core.database import SessionLocal
from cinecriticas.services.auth import ValidationFailedError, validate_registration
from cinecriticas.services.user_store import (
    DuplicateUserError,
    SqlUserStore,
    StoreUnavailableError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a CineCríticas user.")
    parser.add_argument("username", help="Username (3-30 chars)")
    parser.add_argument("email", help="Email address")
    parser.add_argument("password", help="Password (at least 6 chars)")
    parser.add_argument("role", nargs="?", default=None, choices=["user", "admin"])
    args = parser.parse_args(argv)

    username = args.username.strip()
    try:
        validate_registration(username, args.email.strip(), args.password, args.password)
    except ValidationFailedError as e:
        print(e.message, file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        user = SqlUserStore(db).create_user(
            username=username,
            email=args.email.strip(),
            password_hash=args.password,
            role=args.role,
        )
    except DuplicateUserError as e:
        print(e.message, file=sys.stderr)
        return 1
    except StoreUnavailableError as e:
        logger.error("Could not create user: %s", e.message)
        return 1
    finally:
        db.close()
    print(f"Created user '{user.username}' with role '{user.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
