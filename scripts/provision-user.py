#!/usr/bin/env python3
"""
provision-user.py: Create a portal user and issue an API key.

Writes directly to the database configured by DATABASE_URL (or .env), so
run it from the repository root with the package installed.

Usage:
    python scripts/provision-user.py --email jane@example.com
    python scripts/provision-user.py --email admin@example.com --role ADMIN
    python scripts/provision-user.py --email jane@example.com --mrn MRN-0042
"""

import argparse
import asyncio
import sys

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from testintake.db.engine import dispose_engine, get_session_factory, init_db
from testintake.models import ApiKey, Patient, User, UserRole
from testintake.services.identity import generate_api_key, hash_key


# ANSI color codes
class C:
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"


async def provision(args: argparse.Namespace) -> tuple[User, Patient | None, str]:
    """Create (or reuse) the user, its patient record and a fresh key."""
    await init_db()
    factory = get_session_factory()
    async with factory() as session:
        user = (
            await session.execute(select(User).where(User.email == args.email))
        ).scalar_one_or_none()
        if user is None:
            user = User(
                email=args.email,
                first_name=args.first_name,
                last_name=args.last_name,
                role=UserRole(args.role),
            )
            session.add(user)
            await session.flush()

        patient = None
        if user.role == UserRole.PATIENT:
            patient = (
                await session.execute(select(Patient).where(Patient.user_id == user.id))
            ).scalar_one_or_none()
            if patient is None:
                patient = Patient(user_id=user.id, medical_record_number=args.mrn)
                session.add(patient)

        raw_key = generate_api_key()
        session.add(ApiKey(user_id=user.id, key_hash=hash_key(raw_key), prefix=raw_key[:12]))
        await session.commit()

    await dispose_engine()
    return user, patient, raw_key


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a user and issue an API key")
    parser.add_argument("--email", required=True, help="User email address")
    parser.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        default=UserRole.PATIENT.value,
        help="User role (default: PATIENT)",
    )
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument(
        "--mrn", default=None, help="Medical record number for a new patient record"
    )
    args = parser.parse_args()

    try:
        user, patient, raw_key = asyncio.run(provision(args))
    except SQLAlchemyError as e:
        print(f"  {C.RED}Provisioning failed:{C.RESET} {e}")
        sys.exit(1)

    print(f"\n{C.BOLD}Test Intake User Provisioning{C.RESET}")
    print(f"{C.DIM}{'=' * 60}{C.RESET}\n")
    print(f"  {C.BOLD}User ID:{C.RESET}    {user.id}")
    print(f"  {C.BOLD}Email:{C.RESET}      {user.email}")
    print(f"  {C.BOLD}Role:{C.RESET}       {user.role.value}")
    if patient is not None:
        print(f"  {C.BOLD}Patient ID:{C.RESET} {patient.id}")
    print(f"  {C.BOLD}API Key:{C.RESET}    {C.CYAN}{raw_key}{C.RESET}")
    print(f"\n{C.DIM}{'=' * 60}{C.RESET}\n")
    print(f"  {C.YELLOW}The key is shown once. Store it now.{C.RESET}\n")


if __name__ == "__main__":
    main()
