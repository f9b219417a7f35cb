# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""requestflow CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import RequestSettings, load_request_settings
from ..errors import RequestFlowError, categorize_exception, error_category_to_reason, error_kind
from ..http.models import ProgressEvent, Response
from ..log import setup_logging
from ..pipeline import RequestPipeline

logger = logging.getLogger(__name__)

CLI_TEXT_TRUNCATION_BYTES = 4096


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send one HTTP request through the requestflow pipeline")
    parser.add_argument("url", help="Target URL")
    parser.add_argument("-X", "--method", default="GET", help="HTTP method (default: GET)")
    parser.add_argument("-H", "--header", action="append", default=[], help="Request header, 'Name: value' (repeatable)")
    parser.add_argument("-d", "--data", help="Request body; parsed as JSON when it is valid JSON, sent as text otherwise")
    parser.add_argument("--timeout", type=float, help="Deadline per attempt in milliseconds (0 disables)")
    parser.add_argument("--retries", type=int, help="Extra attempts after a transport error")
    parser.add_argument("--retry-delay", type=float, help="Delay between attempts in milliseconds")
    parser.add_argument("--progress", action="store_true", help="Report download progress on stderr")
    parser.add_argument("--include", "-i", action="store_true", help="Print status line and response headers")
    parser.add_argument("--ignore-ssl-errors", action="store_true", help="Skip TLS verification")
    parser.add_argument("--log-level", help="Logging level (default: REQUESTFLOW_LOG_LEVEL or WARNING)")
    return parser


def parse_header_args(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header {raw!r}; expected 'Name: value'")
        headers[name.strip()] = value.strip()
    return headers


def parse_data_arg(value: str | None) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def _truncate_text_bytes(text: str, max_bytes: int) -> str:
    raw = text.encode("utf-8")
    if len(raw) <= max_bytes:
        return text
    suffix = "...[truncated]"
    keep = max_bytes - len(suffix.encode("utf-8"))
    if keep <= 0:
        return suffix.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")
    return raw[:keep].decode("utf-8", errors="ignore") + suffix


def _print_progress(event: ProgressEvent) -> None:
    if event.percent is None:
        sys.stderr.write(f"\r{event.bytes_transferred} bytes")
    else:
        sys.stderr.write(f"\r{event.bytes_transferred}/{event.total_bytes} bytes ({event.percent}%)")
    sys.stderr.flush()


async def _print_response(response: Response, *, include: bool) -> None:
    if include:
        print(f"{response.status} {response.reason}".rstrip())
        for name, value in sorted(response.headers.items()):
            print(f"{name}: {value}")
        print()
    text = await response.text()
    print(_truncate_text_bytes(text, CLI_TEXT_TRUNCATION_BYTES))


def build_request_options(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed arguments into request options; raises ValueError on bad input."""
    options: dict[str, Any] = {
        "method": args.method,
        "headers": parse_header_args(args.header),
        "data": parse_data_arg(args.data),
        "timeout": args.timeout,
        "retries": args.retries,
        "retry_delay": args.retry_delay,
    }
    if args.progress:
        options["on_download_progress"] = _print_progress
    return options


def _describe_error(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    category = getattr(exc, "category", None)
    if category is None and not isinstance(exc, RequestFlowError):
        category = categorize_exception(exc)
    reason = error_category_to_reason(category) if category is not None else ""
    label = f"{error_kind(exc).value} ({reason})" if reason else error_kind(exc).value
    return f"[requestflow] {label}: {message}"


async def run(args: argparse.Namespace, settings: RequestSettings, options: dict[str, Any]) -> int:
    async with RequestPipeline(settings=settings) as pipeline:
        try:
            response = await pipeline.request(args.url, options)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Request to %s failed", args.url, exc_info=True)
            print(_describe_error(exc), file=sys.stderr)
            return 2
        finally:
            if args.progress:
                sys.stderr.write("\n")
        await _print_response(response, include=args.include)
    return 0 if response.ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        options = build_request_options(args)
    except ValueError as exc:
        parser.error(str(exc))
    setup_logging(args.log_level)

    settings = load_request_settings()
    if args.ignore_ssl_errors:
        settings.verify_ssl = False

    return asyncio.run(run(args, settings, options))


if __name__ == "__main__":
    raise SystemExit(main())
