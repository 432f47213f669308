"""
Create a user (e.g. first admin). Run from project root:
  python -m account_service.scripts.create_user USERNAME EMAIL PASSWORD [--role ROLE]
Example:
  python -m account_service.scripts.create_user admin admin@example.com 'S3cure!Pass' --role ADMIN
"""
import argparse
import logging
import sys

from account_service.core.database import SessionLocal
from account_service.core.errors import ServiceError
from account_service.models.user import Role
from account_service.schemas.user import UserCreate, UserUpdate
from account_service.services.accounts import AccountService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an account from the command line.")
    parser.add_argument("username", help="Username (3-50 chars: letters, digits, _ and -)")
    parser.add_argument("email", help="Email address")
    parser.add_argument("password", help="Password (8-128 chars, mixed case, digit, symbol)")
    parser.add_argument("--first-name", default="System", help="First name (2-100 chars)")
    parser.add_argument("--last-name", default="Administrator", help="Last name (2-100 chars)")
    parser.add_argument(
        "--role",
        default=Role.USER.value,
        choices=[r.value for r in Role],
        type=str.upper,
    )
    args = parser.parse_args()

    data = UserCreate(
        first_name=args.first_name,
        last_name=args.last_name,
        username=args.username.strip(),
        email=args.email.strip(),
        password=args.password,
        role=Role(args.role),
    )
    db = SessionLocal()
    try:
        # Operator context: elevated roles are applied without a caller check.
        service = AccountService(db)
        created = service.register(data.model_copy(update={"role": Role.USER}))
        if data.role != Role.USER:
            created = service.update_profile(created.id, UserUpdate(role=data.role))
    except ServiceError as e:
        print(f"Could not create user: {e.message}", file=sys.stderr)
        field_errors = getattr(e, "field_errors", None) or {}
        for field, messages in field_errors.items():
            for message in messages:
                print(f"  {field}: {message}", file=sys.stderr)
        return 1
    finally:
        db.close()
    print(f"Created user '{created.username}' (id {created.id}) with role '{created.role.value}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
