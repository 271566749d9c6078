"""Command-line wrapper around ContainerFile.

Subcommands:
- create  OUTPUT SOURCE  package SOURCE into a new .intunewin container
- extract CONTAINER DESTINATION  decrypt the payload
- info    CONTAINER  print the metadata record (no key material)
- verify  CONTAINER  check the content MAC (exit 0 when it matches)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from intunewin.config import Settings, load_settings
from intunewin.core.container import ContainerFile
from intunewin.core.exceptions import IntuneWinError
from .logging_config import configure_logging


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_MAC_MISMATCH = 1
EXIT_ERROR = 2


def cmd_create(args: argparse.Namespace, settings: Settings) -> int:
    source = Path(args.source)
    if not source.is_file():
        print(f"Error: source file not found: {source}", file=sys.stderr)
        return EXIT_ERROR
    file_name = args.file_name or f"{source.stem}.intunewin"
    setup_file = args.setup_file or source.name
    try:
        with ContainerFile.create(
            args.output,
            name=args.name or source.name,
            description=args.description or source.name,
            file_name=file_name,
            setup_file=setup_file,
            settings=settings,
        ) as container:
            container.embed(source)
            size = container.metadata.unencrypted_content_size
    except BaseException:
        Path(args.output).unlink(missing_ok=True)
        raise
    print(f"Created {args.output} ({size} bytes embedded as {file_name})")
    return EXIT_OK


def cmd_extract(args: argparse.Namespace, settings: Settings) -> int:
    with ContainerFile.open(args.container, settings=settings) as container:
        written = container.extract(args.destination, verify_mac=args.verify_mac)
    print(f"Extracted {written} bytes to {args.destination}")
    return EXIT_OK


def cmd_info(args: argparse.Namespace, settings: Settings) -> int:
    with ContainerFile.open(args.container, settings=settings) as container:
        print(json.dumps(container.metadata.to_dict(), indent=2))
    return EXIT_OK


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    with ContainerFile.open(args.container, settings=settings) as container:
        ok = container.verify()
    print("MAC OK" if ok else "MAC MISMATCH")
    return EXIT_OK if ok else EXIT_MAC_MISMATCH


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intunewin",
        description="Create and unpack IntuneWin application containers.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging (overrides INTUNEWIN_LOG_LEVEL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Package a file into a new container")
    create.add_argument("output", help="Path of the .intunewin file to write")
    create.add_argument("source", help="Payload file to encrypt and embed")
    create.add_argument("--name", default=None, help="Application name (default: source file name)")
    create.add_argument("--description", default=None, help="Application description")
    create.add_argument(
        "--file-name",
        default=None,
        help="Content entry name inside the container (default: <source stem>.intunewin)",
    )
    create.add_argument(
        "--setup-file",
        default=None,
        help="Setup file name within the payload (default: source file name)",
    )
    create.set_defaults(handler=cmd_create)

    extract = sub.add_parser("extract", help="Decrypt the payload of a container")
    extract.add_argument("container", help="Path to the .intunewin file")
    extract.add_argument("destination", help="Where to write the decrypted payload")
    extract.add_argument(
        "--verify-mac",
        action="store_true",
        help="Check the content MAC before writing any plaintext",
    )
    extract.set_defaults(handler=cmd_extract)

    info = sub.add_parser("info", help="Print the container metadata")
    info.add_argument("container", help="Path to the .intunewin file")
    info.set_defaults(handler=cmd_info)

    verify = sub.add_parser("verify", help="Check the content MAC")
    verify.add_argument("container", help="Path to the .intunewin file")
    verify.set_defaults(handler=cmd_verify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    configure_logging(logging.DEBUG if args.verbose else settings.log_level_number)

    try:
        return args.handler(args, settings)
    except IntuneWinError as exc:
        cause = f" ({exc.cause})" if exc.cause is not None else ""
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error [{exc.kind.value}]: {exc}{cause}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
