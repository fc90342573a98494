#!/usr/bin/env python3
"""
Self-administration add-on -- maintenance CLI.

The web server runs the scavengers on its own schedule. This CLI runs them
once, for deployments that prefer cron over a long-lived scheduler, and shows
the effective registration form configuration.

Usage:
  python main.py scavenge
  python main.py scavenge --task activation
  python main.py scavenge --task email-confirmation --task one-time-password
  python main.py fields

Configuration comes from the same environment variables / .env file as the
server (see core/config.py). CLIENT_SECRET is required unless DEBUG=true.
"""

import argparse
import logging
import sys

from core.config import get_settings
from onetime.scavenger import build_scavengers
from registration.fields import RegistrationFields

_TASK_NAMES = ["activation", "one-time-password", "email-confirmation"]


def _scavenge(task_names: list[str]) -> int:
    # api.main wires the SCIM client; imported here so `fields` does not need FastAPI.
    from api.main import build_scim_client

    settings = get_settings()
    client = build_scim_client(settings)
    selected = set(task_names or _TASK_NAMES)
    try:
        for task in build_scavengers(settings, client):
            if task.name not in selected:
                continue
            print(f"  {task.name}: scanning {task.filter} ...", end=" ", flush=True)
            purged = task.run()
            print(f"{purged} expired token(s) purged.")
    finally:
        client.close()
        client.token_provider.close()
    return 0


def _fields() -> int:
    settings = get_settings()
    fields = RegistrationFields.from_config(
        settings.form_fields,
        settings.form_extensions,
        username_equals_email=settings.username_equals_email,
        password_length=settings.password_length,
    )
    print("Registration form fields:")
    for name in fields.all_allowed_fields:
        print(f"  - {name}")
    print(f"Minimum password length:   {fields.password_length}")
    print(f"User name equals email:    {fields.username_equals_email}")
    print(f"Confirm password required: {fields.confirm_password_required}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="selfadmin",
        description="Maintenance commands for the self-administration add-on.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py scavenge
  python main.py scavenge --task activation
  python main.py fields
        """,
    )
    subparsers = parser.add_subparsers(dest="command")

    scavenge = subparsers.add_parser("scavenge", help="Purge expired one-time tokens once and exit")
    scavenge.add_argument(
        "--task",
        action="append",
        choices=_TASK_NAMES,
        default=[],
        help="Scavenger to run (repeatable). Default: all of them.",
    )
    subparsers.add_parser("fields", help="Print the effective registration form configuration")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    if args.command == "scavenge":
        return _scavenge(args.task)
    return _fields()


if __name__ == "__main__":
    sys.exit(main())
