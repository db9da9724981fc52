"""Headless entry point for the PlantBuddy client core.

Logs in, prints plants, sensor readings or users as JSON, and logs out.
Useful for scripting and for exercising the core without the desktop shell.
The password is read from ``PLANTBUDDY_PASSWORD`` or prompted for.
"""
from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
import time
from typing import Any, Callable

from plantbuddy.config import load_config, setup_logging
from plantbuddy.domain.exceptions import AuthError, ConfigurationError, PlantBuddyError
from plantbuddy.enums.common import MetricKind, TabBarPosition
from plantbuddy.services.container import ClientContainer, create_client

logger = logging.getLogger("plantbuddy_app")


def _wait_for(read: Callable[[], Any], is_ready: Callable[[Any], bool], timeout: float) -> Any:
    """Poll a non-blocking read until the background refresh filled it in."""
    deadline = time.monotonic() + timeout
    result = read()
    while not is_ready(result) and time.monotonic() < deadline:
        time.sleep(0.1)
        result = read()
    return result


def _listing_ready(listing) -> bool:
    return not listing.loading and all(entry.value is not None for entry in listing.entries)


def cmd_plants(client: ClientContainer, args: argparse.Namespace) -> Any:
    listing = _wait_for(client.plant_service.list_plants, _listing_ready, args.timeout)
    return [entry.value.to_dict() for entry in listing.entries if entry.value is not None]


def cmd_readings(client: ClientContainer, args: argparse.Namespace) -> Any:
    entry = _wait_for(
        lambda: client.plant_service.readings(args.plant_id, args.metric),
        lambda e: e.value is not None,
        args.timeout,
    )
    return [reading.to_dict() for reading in entry.value or ()]


def cmd_users(client: ClientContainer, args: argparse.Namespace) -> Any:
    listing = _wait_for(client.plant_service.users, _listing_ready, args.timeout)
    return [entry.value.to_dict() for entry in listing.entries if entry.value is not None]


def cmd_settings(client: ClientContainer, args: argparse.Namespace) -> Any:
    return client.settings_service.get_settings()


COMMANDS = {
    "plants": cmd_plants,
    "readings": cmd_readings,
    "users": cmd_users,
    "settings": cmd_settings,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PlantBuddy headless client.")
    parser.add_argument("--username", "-u", default=os.getenv("PLANTBUDDY_USERNAME"), help="Account name")
    parser.add_argument("--timeout", type=float, default=15.0, help="Seconds to wait for data to load")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("plants", help="List the plants visible to the account")
    readings = sub.add_parser("readings", help="Show sensor readings for a plant")
    readings.add_argument("plant_id")
    readings.add_argument(
        "--metric",
        choices=[m.value for m in MetricKind],
        default=MetricKind.SOIL_MOISTURE.value,
    )
    sub.add_parser("users", help="List user accounts (admin only)")
    sub.add_parser("settings", help=f"Show local settings (tab bar {'/'.join(p.value for p in TabBarPosition)})")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    setup_logging(debug=args.debug or config.DEBUG, log_file=os.path.join(config.data_dir, "logs", "plantbuddy.log"))

    client = create_client(config, start_maintenance=True)
    try:
        if args.command != "settings":
            username = args.username or input("Username: ")
            password = os.getenv("PLANTBUDDY_PASSWORD") or getpass.getpass("Password: ")
            client.sessions.login(username, password)
        result = COMMANDS[args.command](client, args)
        print(json.dumps(result, indent=2, default=str))
        return 0
    except AuthError as exc:
        print(f"Authentication failed: {exc}", file=sys.stderr)
        return 1
    except PlantBuddyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 130
    finally:
        client.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
