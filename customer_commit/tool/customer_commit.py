"""Command line tool for building provisioned appliance images."""

import argparse
import asyncio
import logging
import sys
import traceback

from customer_commit.exceptions import CommitException

from . import info, password, phase

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for provisioning appliance images.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    for action in phase.ACTIONS:
        action.register(subparsers)
    password.RotatePasswordAction.register(subparsers)
    password.VerifyLoginAction.register(subparsers)
    info.LogsAction.register(subparsers)
    info.UrlAction.register(subparsers)
    return parser


def main() -> None:
    """Customer-commit command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except CommitException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("customer-commit error:", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
