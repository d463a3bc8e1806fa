"""Command line tool for publishing helm charts to a Harbor registry."""

import argparse
import asyncio
import logging
import sys
import traceback

from harbor_resource.exceptions import ResourceException
from . import out

_LOGGER = logging.getLogger(__name__)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for publishing charts to a Harbor registry.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    out.OutAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Harbor-resource command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    # stdout carries the response envelope only
    logging.basicConfig(level=args.log_level, stream=sys.stderr, format=_LOG_FORMAT)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ResourceException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("harbor-resource error: ", err, file=sys.stderr)
        sys.exit(err.exit_code)


if __name__ == "__main__":
    main()
