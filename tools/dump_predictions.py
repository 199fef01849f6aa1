#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from almanac_core import DEFAULT_APPLICATION, parse_date
from print_almanac import dump_predictions_file, fetch_almanac_data, resolve_catalog


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fetch NOAA predictions for every catalog station and dump a reusable JSON.")
    p.add_argument("--start-date", type=parse_date, required=True, help="First day: YYYY-MM-DD")
    p.add_argument("--end-date", type=parse_date, default=None, help="Last day, inclusive (defaults to start date)")
    p.add_argument("--out", type=Path, required=True, help="Output predictions JSON path")
    p.add_argument("--stations-file", type=Path, default=None, help="JSON/TOML station catalog (default: built-in Puget Sound)")
    p.add_argument("--graph-stations", type=str, default=None, help="Comma-separated tide stations to fetch hourly samples for")
    p.add_argument("--application", type=str, default=DEFAULT_APPLICATION, help="Application name sent to the NOAA API")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    end = args.end_date or args.start_date
    if end < args.start_date:
        raise SystemExit("--end-date must not be before --start-date")

    catalog = resolve_catalog(args.stations_file, args.graph_stations)
    print(f"[status] fetching {len(catalog.current_stations) + len(catalog.tide_stations)} stations")
    data = fetch_almanac_data(catalog, args.start_date, end, application=args.application, status_messages=True)

    empty = [s.name for s in list(data.current.values()) + list(data.tide.values()) if not s.events]
    if empty:
        print(f"[status] no predictions for: {', '.join(empty)}")

    print(f"[status] writing predictions dump to {args.out}")
    dump_predictions_file(args.out, args.start_date, end, data)
    print(f"Wrote {args.out}")


if __name__ == "__main__":
    main()
