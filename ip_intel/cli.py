#!/usr/bin/env python3
"""
IP Intel - CLI entry point
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from typing import Any, Optional

from .config import configure_logging, load_settings
from .models import ErrorKind, LookupResult, StoreError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STORE_FAILURE = 1
EXIT_REJECTED = 2

ERROR_TEXT = {
    ErrorKind.INVALID_FORMAT: "Invalid IP address",
    ErrorKind.PRIVATE_ADDRESS: "Private IP addresses are not supported",
    ErrorKind.STORE_FAILURE: "Lookup failed",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ip-intel", description="On-demand IP intelligence (ASN, WHOIS, geo)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    lookup = sub.add_parser("lookup", help="Enrich one IP address")
    lookup.add_argument("ip", help="IPv4 or IPv6 address")
    lookup.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    lookup.add_argument("--db", default=None, help="SQLite cache path (default: IP_INTEL_DB_PATH)")
    lookup.add_argument(
        "--timeout", "-t", type=float, default=None, help="Timeout per source in seconds"
    )

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def print_human_readable(record: dict[str, Any]) -> None:
    """Print a record in human-readable format."""
    print("\n🔎 IP Intel Report")
    print(f"{'=' * 50}")
    print(f"IP:       {record['ip_address']}")
    print(f"{'=' * 50}")

    print("\n🌐 Network:")
    print(f"  ISP:    {record['isp'] or '-'}")
    print(f"  Org:    {record['org'] or '-'}")
    if record["as_number"]:
        print(f"  ASN:    {record['as_number']} {record['as_name']}".rstrip())
    flags = [name for name in ("proxy", "hosting", "mobile") if record[f"is_{name}"]]
    if flags:
        print(f"  Flags:  {', '.join(flags)}")

    print("\n📍 Location:")
    place = ", ".join(p for p in (record["city"], record["region"], record["country"]) if p)
    print(f"  Place:  {place or '-'}")
    if record["latitude"] and record["longitude"]:
        print(f"  Coords: {record['latitude']}, {record['longitude']}")
    if record["reverse_address"]:
        print(f"  Nearby: {record['reverse_address']}")

    print("\n📝 Whois:")
    print(f"  Org:     {record['whois_org'] or '-'}")
    print(f"  Address: {record['whois_address'] or '-'}")

    print(f"\n⏱️  Cached at: {record['cached_at']}")


def run_lookup(args: argparse.Namespace) -> int:
    from .api import build_service

    settings = load_settings()
    overrides: dict[str, Any] = {}
    if args.db:
        overrides["db_path"] = args.db
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    if overrides:
        settings = replace(settings, **overrides)
    configure_logging(settings.log_level)

    try:
        service = build_service(settings)
    except StoreError as e:
        logger.error("cannot open cache: %s", e)
        result = LookupResult.failure(ErrorKind.STORE_FAILURE)
    else:
        result = service.lookup(args.ip)

    if result.record is None:
        error = result.error or ErrorKind.STORE_FAILURE
        message = ERROR_TEXT[error]
        if args.json:
            print(json.dumps({"error": message}))
        else:
            print(f"❌ {message}")
        return EXIT_STORE_FAILURE if error == ErrorKind.STORE_FAILURE else EXIT_REJECTED

    if args.json:
        print(json.dumps(result.record.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_human_readable(result.record.to_dict())
    return EXIT_OK


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if args.command == "lookup":
        exit_code = run_lookup(args)
    else:
        exit_code = run_serve(args)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
