from __future__ import annotations

import argparse
import json
import os
import tomllib
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from almanac_core import (
    DEFAULT_APPLICATION,
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    DEFAULT_TIMEZONE,
    LABEL_MODES,
    parse_date,
)

DEFAULTS: Dict[str, Any] = {
    "start_date": None,
    "end_date": None,
    "year": 0,
    "out": Path("tide_almanac.pdf"),
    "title": "Puget Sound Tide Book",
    "stations_file": None,
    "graph_stations": None,
    "graph_label_mode": "values",
    "latitude": DEFAULT_LATITUDE,
    "longitude": DEFAULT_LONGITUDE,
    "timezone": DEFAULT_TIMEZONE,
    "page_width": 306.0,
    "page_height": 792.0,
    "margin": 10.0,
    "divider_ratio": 0.45,
    "application": DEFAULT_APPLICATION,
    "load_predictions": None,
    "dump_predictions": None,
    "list_predictions": False,
    "status_messages": True,
}

REQUIRED_KEYS = ("start_date",)


def _parse_env_file(path: Path) -> Dict[str, str]:
    if not path.exists() or not path.is_file():
        return {}
    out: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        key = k.strip()
        val = v.strip().strip("\"").strip("'")
        if key:
            out[key] = val
    return out


def load_env_values() -> Dict[str, str]:
    # Support running from project root or other cwd.
    candidate_paths = [
        Path.cwd() / ".env",
        Path(__file__).resolve().parent / ".env",
    ]
    merged: Dict[str, str] = {}
    for p in candidate_paths:
        merged.update(_parse_env_file(p))

    # Process env vars override file values.
    merged.update({k: v for k, v in os.environ.items() if k in ("NOAA_APPLICATION",)})
    return merged


def _normalize_config_keys(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in cfg.items():
        key = k.replace("-", "_")
        if key == "stations":
            key = "stations_file"
        out[key] = v
    return out


def load_config_file(path: Optional[Path]) -> Dict[str, Any]:
    if not path:
        return {}
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(raw)
    elif path.suffix.lower() in (".toml", ".tml"):
        data = tomllib.loads(raw)
    else:
        raise ValueError(f"Unsupported config format: {path}. Use .json or .toml")
    if not isinstance(data, dict):
        raise ValueError("Config root must be a JSON/TOML object")
    return _normalize_config_keys(data)


def _coerce_config_values(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)

    path_keys = ("out", "stations_file", "load_predictions", "dump_predictions")
    for k in path_keys:
        if k in out and out[k] is not None and not isinstance(out[k], Path):
            out[k] = Path(str(out[k]))

    # TOML hands back real dates for bare YYYY-MM-DD values.
    for k in ("start_date", "end_date"):
        if k in out and isinstance(out[k], str):
            out[k] = parse_date(out[k])

    int_keys = ("year",)
    for k in int_keys:
        if k in out and out[k] is not None and not isinstance(out[k], int):
            out[k] = int(out[k])

    float_keys = ("latitude", "longitude", "page_width", "page_height", "margin", "divider_ratio")
    for k in float_keys:
        if k in out and out[k] is not None and not isinstance(out[k], float):
            out[k] = float(out[k])

    bool_keys = ("status_messages", "list_predictions")
    for k in bool_keys:
        if k in out and not isinstance(out[k], bool):
            if isinstance(out[k], str):
                out[k] = out[k].strip().lower() in ("1", "true", "yes", "on")
            else:
                out[k] = bool(out[k])

    return out


def _build_cli_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(argument_default=argparse.SUPPRESS)
    p.add_argument("--config", type=Path, help="Path to JSON/TOML config file.")
    p.add_argument("--start-date", type=parse_date, help="First almanac day: YYYY-MM-DD")
    p.add_argument("--end-date", type=parse_date, help="Last almanac day, inclusive: YYYY-MM-DD (defaults to start date)")
    p.add_argument("--year", type=int, help="Render January 1 through December 31 of this year when no dates are given.")
    p.add_argument("--out", type=Path, help="Output PDF path")
    p.add_argument("--title", type=str, help="PDF document title.")
    p.add_argument("--stations-file", type=Path, help="JSON/TOML station catalog (current_stations, tide_stations, graph_stations).")
    p.add_argument("--graph-stations", type=str, help='Comma-separated tide stations that get a curve, e.g. "Seattle,Port Townsend"')
    p.add_argument("--graph-label-mode", choices=list(LABEL_MODES), help="values=label every hourly sample; hilo=label matched highs and lows.")
    p.add_argument("--latitude", type=float, help="Latitude for sunrise/sunset.")
    p.add_argument("--longitude", type=float, help="Longitude for sunrise/sunset.")
    p.add_argument("--timezone", type=str, help="IANA timezone for sunrise/sunset, e.g. America/Los_Angeles")
    p.add_argument("--page-width", type=float, help="Page width in points.")
    p.add_argument("--page-height", type=float, help="Page height in points.")
    p.add_argument("--margin", type=float, help="Page margin in points.")
    p.add_argument("--divider-ratio", type=float, help="Column divider position as a fraction of page width.")
    p.add_argument("--application", type=str, help="Application name sent to the NOAA API.")
    p.add_argument("--load-predictions", type=Path, help="Render from a predictions JSON written by --dump-predictions instead of fetching.")
    p.add_argument("--dump-predictions", type=Path, help="Write fetched predictions to a reusable JSON file.")
    p.add_argument("--list", dest="list_predictions", action="store_true", help="Print every station's events for the range before rendering.")
    p.add_argument("--status-messages", dest="status_messages", action="store_true", help="Print progress lines.")
    p.add_argument("--no-status-messages", dest="status_messages", action="store_false", help="Suppress progress lines.")
    return p


def _apply_year_range(merged: Dict[str, Any]) -> None:
    year = merged.get("year") or 0
    if year and merged.get("start_date") is None:
        merged["start_date"] = date(int(year), 1, 1)
        if merged.get("end_date") is None:
            merged["end_date"] = date(int(year), 12, 31)


def parse_effective_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    bootstrap = argparse.ArgumentParser(add_help=False)
    bootstrap.add_argument("--config", type=Path)
    bootstrap_ns, _ = bootstrap.parse_known_args(argv)

    cfg = _coerce_config_values(load_config_file(bootstrap_ns.config))

    parser = _build_cli_parser()
    cli_ns = parser.parse_args(argv)
    cli_values = vars(cli_ns)
    cli_values.pop("config", None)
    env_values = load_env_values()

    merged: Dict[str, Any] = dict(DEFAULTS)
    if env_values.get("NOAA_APPLICATION"):
        merged["application"] = env_values["NOAA_APPLICATION"]
    merged.update(cfg)
    merged.update(cli_values)
    _apply_year_range(merged)

    missing = [k for k in REQUIRED_KEYS if merged.get(k) is None]
    if missing:
        msg = ", ".join(missing)
        raise SystemExit(f"Missing required options (CLI or config): {msg}")

    if merged.get("end_date") is None:
        merged["end_date"] = merged["start_date"]
    if merged["end_date"] < merged["start_date"]:
        raise SystemExit("end_date must not be before start_date")
    if merged["graph_label_mode"] not in LABEL_MODES:
        raise SystemExit(f"graph_label_mode must be one of: {', '.join(LABEL_MODES)}")

    return argparse.Namespace(**merged)
