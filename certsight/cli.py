import argparse
import logging
import os
import sys
from typing import List, Optional, TextIO

import pydantic

from . import __version__
from .connection import probe
from .entities import decode_buffer
from .errors import CertsightError, ReadError
from .model import ParseReport
from .output import negotiate_format, write_report
from .settings import MAX_FILE_SIZE, Settings

logger = logging.getLogger("certsight")

KINDS = ("certs", "csrs", "public_keys", "private_keys")


def setup_logging(verbose: int, debug: bool) -> None:
    """Everything goes to stderr, stdout is for the report."""
    if debug or verbose > 1:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
        stream=sys.stderr,
        force=True,
    )
    logger.setLevel(level)


#
# what goes on in CLI-land?
#
def build_parser() -> argparse.ArgumentParser:
    """Top level parser with the parse and connect subcommands."""

    common = argparse.ArgumentParser(add_help=False)
    fmt = common.add_mutually_exclusive_group()
    fmt.add_argument(
        "--json",
        action="store_true",
        help="JSON output (default when stdout is not a terminal)"
    )
    fmt.add_argument(
        "--text",
        action="store_true",
        help="Human readable summary (default on a terminal)"
    )
    fmt.add_argument(
        "--pem",
        action="store_true",
        help="Re-emit the decoded material as PEM"
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging on stderr (repeat for debug)"
    )
    common.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug output"
    )
    common.add_argument(
        "--no-pem",
        action="store_true",
        help="Don't include PEM data in JSON output"
    )

    parser = argparse.ArgumentParser(
        prog="certsight",
        description="Inspect certificates, CSRs and keys in files or on live TLS endpoints"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    parse = commands.add_parser(
        "parse",
        parents=[common],
        help="Decode PEM/DER material from a file or stdin"
    )
    parse.add_argument(
        "file",
        metavar="FILE",
        nargs="?",
        help="File to analyze (stdin when omitted)"
    )
    parse.add_argument(
        "--kind",
        choices=KINDS,
        help="Only emit this kind, as a bare JSON array (JSON output only)"
    )
    parse.add_argument(
        "--max-file-size",
        "-m",
        type=int,
        default=MAX_FILE_SIZE,
        help="Maximum input size in bytes"
    )

    connect = commands.add_parser(
        "connect",
        parents=[common],
        help="Handshake with a TLS server and report on it"
    )
    connect.add_argument(
        "host",
        metavar="HOST",
        help="host, host:port, ip:port or URL"
    )
    connect.add_argument(
        "--chain",
        action="store_true",
        help="Report the whole presented chain, not just the leaf"
    )
    connect.add_argument(
        "--rpk",
        action="store_true",
        help="Report session parameters only; the server must still present a certificate "
             "(raw public key negotiation is not available) and no certificate data is reported"
    )
    groups = connect.add_mutually_exclusive_group()
    groups.add_argument(
        "--curves",
        metavar="LIST",
        help="Colon separated key exchange groups to offer"
    )
    groups.add_argument(
        "--pqc",
        action="store_true",
        help="Only offer hybrid post-quantum groups"
    )
    connect.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Bound the TCP connect and TLS handshake"
    )
    return parser


def _settings(args: argparse.Namespace, stream: TextIO) -> Settings:
    return Settings(
        verbose         = args.verbose,
        debug           = args.debug,
        output_format   = negotiate_format(json=args.json, pem=args.pem, text=args.text, stream=stream),
        include_pem     = not args.no_pem,
        max_file_size   = getattr(args, "max_file_size", MAX_FILE_SIZE),
        kind            = getattr(args, "kind", None),
        chain           = getattr(args, "chain", False),
        rpk             = getattr(args, "rpk", False),
        curves          = getattr(args, "curves", None),
        pqc             = getattr(args, "pqc", False),
        timeout         = getattr(args, "timeout", None),
    )


def read_input(path: Optional[str], max_size: int, stdin: TextIO) -> bytes:
    if path is None:
        # one extra byte tells us it was too big
        data = stdin.buffer.read(max_size + 1)
        if len(data) > max_size:
            raise ReadError(f"stdin is larger than {max_size} bytes")
        return data

    try:
        size = os.path.getsize(path)
        if size > max_size:
            raise ReadError(f"{path} is {size} bytes, larger than the {max_size} byte limit")
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ReadError(f"could not read {path}: {e.strerror or e}") from e


def _run_parse(args: argparse.Namespace, settings: Settings, stdout: TextIO) -> int:
    source = args.file or "stdin"
    data = read_input(args.file, settings.max_file_size, sys.stdin)
    logger.info(f"Read {len(data)} bytes from {source}")

    result = decode_buffer(data)
    if not result.entities and result.failures:
        raise CertsightError(f"nothing in {source} could be decoded ({len(result.failures)} failure(s))")

    report = ParseReport.from_entities(result.entities)
    write_report(report, settings, stdout, entities=result.entities, kind=settings.kind)
    return 0


def _run_connect(args: argparse.Namespace, settings: Settings, stdout: TextIO) -> int:
    report = probe(args.host, settings)
    write_report(report, settings, stdout)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.debug)

    stdout = sys.stdout
    try:
        settings = _settings(args, stdout)
    except pydantic.ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        print(f"Error: {messages}", file=sys.stderr)
        return 2

    #
    # nothing piped in and no file... don't sit there waiting on the keyboard
    #
    if args.command == "parse" and not args.file and sys.stdin.isatty():
        parser.print_usage(sys.stderr)
        print("Error: No file specified and nothing on stdin", file=sys.stderr)
        return 1

    try:
        if args.command == "parse":
            return _run_parse(args, settings, stdout)
        return _run_connect(args, settings, stdout)
    except CertsightError as e:
        logger.debug(f"{type(e).__name__}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
