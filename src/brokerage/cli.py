"""
Command line tools for operating a brokerage deployment.

Usage:
    # Create the first back-office account
    brokerage-create-admin admin@example.com 'S3cure-pass' --name "Ops" --role SUPER_ADMIN
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brokerage-create-admin",
        description="Create a back-office admin account.",
    )
    parser.add_argument("email", help="Admin email address")
    parser.add_argument("password", help="Password, at least 8 characters")
    parser.add_argument("--name", default="Admin", help="Display name (default: Admin)")
    parser.add_argument(
        "--role",
        default="SUPER_ADMIN",
        choices=["SUPER_ADMIN", "ADMIN"],
        help="Admin role (default: SUPER_ADMIN)",
    )
    return parser


def cmd_create_admin(args: argparse.Namespace) -> int:
    """Create the admin described by ``args``; returns the process exit code."""
    from sqlmodel import Session

    from .exceptions import BrokerError
    from .webapp.admins import create_admin
    from .webapp.persistence import engine

    with Session(engine) as session:
        try:
            admin = create_admin(session, email=args.email, password=args.password, name=args.name, role=args.role)
        except BrokerError as exc:
            logger.error("Could not create admin: %s", exc.message)
            return 1
    print(f"Created {admin.role} {admin.email} (id {admin.id})")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    from .ops import configure_logging

    configure_logging("INFO")
    args = build_parser().parse_args(argv)
    return cmd_create_admin(args)


if __name__ == "__main__":
    sys.exit(main())
