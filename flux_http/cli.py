"""CLI entry point for flux-http.

Sends one request and prints the decoded body to stdout and the status
line plus phase timings to stderr:

    flux-http GET https://api.example.com/users/1
    flux-http POST /users -d '{"name": "Ada"}' --config client.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from flux_http.client import HttpClient
from flux_http.config_loader import ConfigError, load_client_config
from flux_http.errors import ClientError, HTTPStatusError
from flux_http.models import ClientConfig, EncodingMode, HttpMethod, ParsedResult, RawResponse, TimingRecord


def positive_int(value: str) -> int:
    """Parse and validate a positive integer value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: value' format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected 'Name: value' (e.g., 'Accept: application/json')"
        )
    name, _, header_value = value.partition(":")
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Name cannot be empty.")
    return (name, header_value.strip())


@dataclass
class RequestArgs:
    """Parsed arguments for a single request."""

    method: HttpMethod
    url: str
    data: str | None
    data_file: Path | None
    encoding: EncodingMode | None
    headers: dict[str, str]
    timeout_ms: int | None
    config: Path | None
    raw: bool
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="flux-http",
        description="Send one HTTP/HTTPS request and report TLS, time-to-first-byte and total timings.",
    )
    parser.add_argument(
        "method",
        type=str.upper,
        choices=[m.value for m in HttpMethod],
        help="HTTP method",
    )
    parser.add_argument(
        "url",
        help="Absolute URL, or an endpoint resolved against the configured base_url",
    )
    body_group = parser.add_mutually_exclusive_group()
    body_group.add_argument(
        "-d", "--data",
        default=None,
        help="Request payload. Parsed as JSON for json/form/multipart encodings",
    )
    body_group.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="Read the request payload from a file (sent as-is with binary encoding)",
    )
    parser.add_argument(
        "-e", "--encoding",
        choices=[m.value for m in EncodingMode],
        default=None,
        help="Payload encoding (default: from config, else json)",
    )
    parser.add_argument(
        "-H", "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="'NAME: VALUE'",
        help="Extra request header (repeatable)",
    )
    parser.add_argument(
        "--timeout-ms",
        type=positive_int,
        default=None,
        help="Hard timeout for the whole exchange in milliseconds",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file with default client configuration",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Skip body decoding and print the raw bytes",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log exchange state transitions to stderr",
    )
    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    namespace = build_parser().parse_args(args)
    return RequestArgs(
        method=HttpMethod(namespace.method),
        url=namespace.url,
        data=namespace.data,
        data_file=namespace.data_file,
        encoding=EncodingMode(namespace.encoding) if namespace.encoding else None,
        headers=dict(namespace.headers),
        timeout_ms=namespace.timeout_ms,
        config=namespace.config,
        raw=namespace.raw,
        verbose=namespace.verbose,
    )


def _load_payload(args: RequestArgs, encoding: EncodingMode) -> Any:
    """Turn --data/--data-file into the value the codec expects for encoding."""
    if args.data_file is not None:
        content = args.data_file.read_bytes()
        if encoding == EncodingMode.BINARY:
            return content
        text = content.decode("utf-8")
    elif args.data is not None:
        text = args.data
    else:
        return None

    if encoding == EncodingMode.BINARY:
        return text.encode("utf-8")
    if encoding in (EncodingMode.JSON, EncodingMode.FORM, EncodingMode.MULTIPART):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            if encoding == EncodingMode.JSON:
                raise
            return text
    return text


def format_timings(timings: TimingRecord) -> str:
    """One-line timing summary, omitting phases that did not apply."""
    parts = []
    for label, value in (("tls", timings.tls_handshake), ("ttfb", timings.ttfb), ("total", timings.total)):
        if value is not None:
            parts.append(f"{label}={value:.1f}ms")
    return " ".join(parts) if parts else "no timings"


def _print_body(data: Any) -> None:
    if isinstance(data, bytes):
        print(f"<{len(data)} bytes of binary data>")
    elif isinstance(data, (dict, list)):
        print(json.dumps(data, indent=2, ensure_ascii=False))
    elif data != "":
        print(data)


def _print_result(result: ParsedResult | RawResponse) -> None:
    print(f"HTTP {result.status_code}  {format_timings(result.timings)}", file=sys.stderr)
    if isinstance(result, RawResponse):
        _print_body(result.body)
    else:
        _print_body(result.data)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
            stream=sys.stderr,
        )

    try:
        config = load_client_config(args.config) if args.config else ClientConfig()
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    encoding = args.encoding or config.encoding
    try:
        payload = _load_payload(args, encoding)
    except (OSError, ValueError) as e:
        print(f"Error reading payload: {e}", file=sys.stderr)
        return 1

    client = HttpClient(config=config)

    try:
        result = asyncio.run(
            client.request(
                args.method,
                args.url,
                payload,
                headers=args.headers,
                timeout_ms=args.timeout_ms,
                encoding=encoding,
                raw_response=args.raw or None,
            )
        )
    except HTTPStatusError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.response is not None:
            _print_result(e.response)
        return 1
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1

    _print_result(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
