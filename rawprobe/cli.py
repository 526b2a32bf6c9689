"""Command-line interface for RawProbe."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, TextIO

from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import __version__
from .client import HttpClient
from .config import ConfigurationError, ProbeSettings, load_environment
from .items import ItemList
from .logging_utils import configure_logging
from .metrics import metrics_payload
from .response import MalformedResponseError
from .transport import TransportError


def _port(value: str) -> int:
    port = int(value)
    if port <= 0 or port > 65535:
        raise argparse.ArgumentTypeError("Ports must be between 1 and 65535")
    return port


def _positive_ms(value: str) -> int:
    milliseconds = int(value)
    if milliseconds <= 0:
        raise argparse.ArgumentTypeError("Timeouts must be positive milliseconds")
    return milliseconds


def _header_pair(value: str) -> tuple[str, str]:
    name, separator, item = value.partition(":")
    if not separator:
        raise argparse.ArgumentTypeError("Headers must look like 'Name: value'")
    return name.strip(), item.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rawprobe",
        description="Send hand-built (and deliberately broken) HTTP requests and show the raw reply.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--domain", required=True, help="Host name or IP address to connect to")
    method = parser.add_mutually_exclusive_group()
    method.add_argument("--method", choices=("GET", "POST"), default="GET", help="Request method")
    method.add_argument(
        "--no-method",
        action="store_true",
        help="Omit the request line; the header text must carry the whole request head",
    )
    parser.add_argument("--path", default="/", help="Resource path placed in the request line")
    parser.add_argument("--query", help="Raw query string sent after the query separator")
    header = parser.add_mutually_exclusive_group()
    header.add_argument(
        "--header",
        action="append",
        type=_header_pair,
        default=None,
        help="Header as 'Name: value' (repeatable, order is kept)",
    )
    header.add_argument("--header-file", type=Path, help="File holding raw header text sent verbatim")
    body = parser.add_mutually_exclusive_group()
    body.add_argument("--body", help="Request body")
    body.add_argument("--body-file", type=Path, help="File holding the request body")
    parser.add_argument(
        "--keep-newlines",
        action="store_true",
        help="Do not convert bare newlines in --header-file to CRLF",
    )
    parser.add_argument("--tls", action="store_true", help="Wrap the connection in TLS")
    parser.add_argument("--port", type=_port, help="Override the port derived from --tls")
    parser.add_argument(
        "--no-content-length",
        action="store_true",
        help="Leave the Content-Length header exactly as supplied",
    )
    parser.add_argument("--send-timeout", type=_positive_ms, help="Send timeout in milliseconds")
    parser.add_argument("--receive-timeout", type=_positive_ms, help="Receive timeout in milliseconds")
    parser.add_argument(
        "--reject-certificate",
        action="store_true",
        help="Refuse the server certificate (exercise the rejection path)",
    )
    parser.add_argument("--transcript", type=Path, help="Append raw transactions to this file")
    output = parser.add_mutually_exclusive_group()
    output.add_argument("--raw", action="store_true", help="Print the raw response text")
    output.add_argument("--json", action="store_true", help="Print decoded pairs as JSON")
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print Prometheus metrics for the exchange to stderr when done",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit structured JSON logs to the log file")
    parser.add_argument("--log-file", type=Path, help="Write logs to the specified path")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("--quiet", action="store_true", help="Reduce logging output")
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(list(argv) if argv is not None else None)


def configure_cli_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    configure_logging(level=level, json_logs=args.log_json, logfile=args.log_file)


def build_settings(args: argparse.Namespace) -> ProbeSettings:
    settings = ProbeSettings.from_environment()
    overrides: dict[str, object] = {}
    if args.send_timeout:
        overrides["send_timeout_ms"] = args.send_timeout
    if args.receive_timeout:
        overrides["receive_timeout_ms"] = args.receive_timeout
    if args.port:
        overrides["tls_port" if args.tls else "http_port"] = args.port
    if args.reject_certificate:
        overrides["accept_server_certificate"] = False
    if args.transcript:
        overrides["transcript_file"] = args.transcript
    return settings.replace(**overrides) if overrides else settings


def _read_header_file(path: Path, keep_newlines: bool) -> str:
    text = path.read_text(encoding="utf-8")
    if keep_newlines:
        return text
    return text.replace("\r\n", "\n").replace("\n", "\r\n")


def configure_client(client: HttpClient, args: argparse.Namespace) -> None:
    client.domain = args.domain
    client.use_tls = args.tls
    client.method = None if args.no_method else args.method
    client.resource_path = args.path
    if args.query is not None:
        client.query_string = args.query
    if args.header_file is not None:
        client.header_string = _read_header_file(args.header_file, args.keep_newlines)
    elif args.header:
        client.header_list = ItemList(args.header)
    if args.body_file is not None:
        client.body = args.body_file.read_text(encoding="utf-8")
    elif args.body is not None:
        client.body = args.body


def render_table(response: ItemList) -> Table:
    table = Table(title="Decoded response", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Key")
    table.add_column("Value", overflow="fold")
    for index, (key, value) in enumerate(response, start=1):
        table.add_row(str(index), Text(key), Text(value))
    return table


def write_metrics(stream: TextIO) -> None:
    payload, _ = metrics_payload()
    stream.write(payload.decode("utf-8"))
    stream.flush()


def _run(args: argparse.Namespace, console: Console, logger: logging.Logger) -> int:
    try:
        client = HttpClient(build_settings(args))
        configure_client(client, args)
        response = client.send(patch_content_length=not args.no_content_length)
    except (ConfigurationError, TransportError, MalformedResponseError) as exc:
        logger.error("Request failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Unable to read input file: %s", exc)
        return 1

    if args.raw:
        sys.stdout.write(client.response_raw or "")
        sys.stdout.flush()
    elif args.json:
        print(json.dumps([[key, value] for key, value in response], indent=2))
    else:
        console.print(render_table(response))
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    load_environment()
    args = parse_args(argv)

    configure_cli_logging(args)
    logger = logging.getLogger("rawprobe.cli")
    console = Console(highlight=False)

    try:
        exit_code = _run(args, console, logger)
    finally:
        if args.metrics:
            write_metrics(sys.stderr)
    return exit_code


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
