"""
Command-line entry point for the event discovery service.

Runs one search and prints the JSON response to stdout.

Run with: python -m servers.event_discovery --lat 40.7128 --lng -74.006 --radius 25
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

from .config import get_settings
from .errors import SearchValidationError
from .factory import build_service
from .logging_config import configure_logging
from .models import SortKey


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="event-discovery",
        description="Search events across every configured provider.",
    )
    parser.add_argument("query", nargs="?", help="Free-text search query")
    parser.add_argument("--location", help="Place name, geocoded when --lat/--lng are absent")
    parser.add_argument("--lat", type=float)
    parser.add_argument("--lng", type=float)
    parser.add_argument("--radius", type=float, default=25.0)
    parser.add_argument("--unit", choices=["mi", "km"], default="mi")
    parser.add_argument("--category", action="append", dest="categories", default=[])
    parser.add_argument("--tag", action="append", dest="tags", default=[])
    parser.add_argument("--price-min", type=float)
    parser.add_argument("--price-max", type=float)
    parser.add_argument("--start-date", help="ISO date or datetime")
    parser.add_argument("--end-date", help="ISO date or datetime")
    parser.add_argument("--sort-by", choices=[k.value for k in SortKey], default="date")
    parser.add_argument("--sort-order", choices=["asc", "desc"], default="asc")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument("--page", type=int)
    parser.add_argument("--force-refresh", action="store_true")
    parser.add_argument("--prefer-cache", action="store_true")
    parser.add_argument("--status", action="store_true", help="Print provider status after the search")
    return parser


def params_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Search fields from parsed arguments, leaving out anything unset."""
    fields = {
        "query": args.query,
        "location": args.location,
        "lat": args.lat,
        "lng": args.lng,
        "radius": args.radius,
        "unit": args.unit,
        "categories": args.categories,
        "tags": args.tags,
        "price_min": args.price_min,
        "price_max": args.price_max,
        "start_date": args.start_date,
        "end_date": args.end_date,
        "sort_by": args.sort_by,
        "sort_order": args.sort_order,
        "limit": args.limit,
        "offset": args.offset,
        "page": args.page,
        "force_refresh": args.force_refresh,
        "prefer_cache": args.prefer_cache,
    }
    return {key: value for key, value in fields.items() if value is not None}


async def main(argv: Optional[list[str]] = None) -> int:
    """Run one search and print it. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    service = build_service(settings)
    try:
        response = await service.search_events(params_from_args(args))
        output: dict[str, Any] = response.model_dump(mode="json")
        if args.status:
            output["status"] = service.status()
    except SearchValidationError as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 2
    finally:
        await service.aclose()

    print(json.dumps(output, indent=2, default=str))
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
