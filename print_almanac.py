#!/usr/bin/env python3
from __future__ import annotations

import json
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional

import tide_store as ts
from almanac_config import parse_effective_args
from almanac_core import (
    AlmanacData,
    LayoutSizes,
    PageGeometry,
    fetch_current_predictions,
    fetch_hourly_tide_predictions,
    fetch_tide_predictions,
    make_almanac_pdf,
)
from tide_store import StationCatalog, clean_text


def _status(enabled: bool, message: str) -> None:
    if enabled:
        print(f"[status] {clean_text(message)}")


def resolve_catalog(stations_file: Optional[Path], graph_stations: object) -> StationCatalog:
    catalog = ts.load_station_catalog(stations_file)
    if graph_stations is None:
        return catalog
    graph = ts.parse_graph_stations(graph_stations)
    tide_names = {n for n, _ in catalog.tide_stations}
    unknown = sorted(graph - tide_names)
    if unknown:
        raise ValueError(f"graph_stations are not tide stations: {', '.join(unknown)}")
    return StationCatalog(
        current_stations=catalog.current_stations,
        tide_stations=catalog.tide_stations,
        graph_stations=graph,
    )


def fetch_almanac_data(
    catalog: StationCatalog,
    start: date,
    end: date,
    application: str,
    status_messages: bool = False,
) -> AlmanacData:
    """Fetch every catalog station one at a time; a failed station becomes an empty series."""

    def _say(message: str) -> None:
        _status(status_messages, message)

    data = AlmanacData()
    total = len(catalog.current_stations) + len(catalog.tide_stations)
    idx = 0
    for name, sid in catalog.current_stations:
        idx += 1
        _say(f"Fetching current predictions {idx}/{total}: {name} ({sid})")
        payload = fetch_current_predictions(sid, start, end, application=application, status=_say)
        events = ts.parse_current_payload(payload)
        data.current[sid] = ts.StationSeries(station_id=sid, name=name, kind=ts.CURRENT, events=events)
        _say(f"Loaded {len(events)} current events for {name}")

    for name, sid in catalog.tide_stations:
        idx += 1
        _say(f"Fetching tide predictions {idx}/{total}: {name} ({sid})")
        payload = fetch_tide_predictions(sid, start, end, application=application, status=_say)
        events = ts.parse_tide_payload(payload)
        data.tide[sid] = ts.StationSeries(station_id=sid, name=name, kind=ts.TIDE, events=events)
        _say(f"Loaded {len(events)} tide events for {name}")
        if name in catalog.graph_stations:
            hourly = ts.parse_hourly_payload(
                fetch_hourly_tide_predictions(sid, start, end, application=application, status=_say)
            )
            data.hourly[sid] = hourly
            _say(f"Loaded {len(hourly)} hourly samples for {name}")
    return data


def _event_rows(series_map: Dict[str, ts.StationSeries]) -> Dict[str, dict]:
    return {
        sid: {
            "name": s.name,
            "events": [{"t": e.timestamp, "v": e.value, "type": e.kind} for e in s.events],
        }
        for sid, s in series_map.items()
    }


def dump_predictions_file(path: Path, start: date, end: date, data: AlmanacData) -> None:
    payload = {
        "version": 1,
        "created_at": datetime.now().isoformat(timespec="seconds"),
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "current": _event_rows(data.current),
        "tide": _event_rows(data.tide),
        "hourly": {
            sid: [{"t": s.timestamp.strftime(ts.PROVIDER_TIME_FORMAT), "v": s.height} for s in samples]
            for sid, samples in data.hourly.items()
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _load_series(raw: object, kind: str, label: str) -> Dict[str, ts.StationSeries]:
    if not isinstance(raw, dict):
        raise ValueError(f"Predictions '{label}' must be an object")
    out: Dict[str, ts.StationSeries] = {}
    for sid, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        events = ts.parse_event_rows(entry.get("events", []))
        out[clean_text(sid)] = ts.StationSeries(
            station_id=clean_text(sid),
            name=clean_text(entry.get("name")),
            kind=kind,
            events=events,
        )
    return out


def load_predictions_file(path: Path) -> tuple[date, date, AlmanacData]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Predictions file must be a JSON object")
    try:
        start = date.fromisoformat(str(raw.get("start_date", "")))
        end = date.fromisoformat(str(raw.get("end_date", "")))
    except ValueError:
        raise ValueError("Predictions file needs ISO 'start_date' and 'end_date'") from None

    hourly_raw = raw.get("hourly", {})
    if not isinstance(hourly_raw, dict):
        raise ValueError("Predictions 'hourly' must be an object")

    data = AlmanacData(
        current=_load_series(raw.get("current", {}), ts.CURRENT, "current"),
        tide=_load_series(raw.get("tide", {}), ts.TIDE, "tide"),
        hourly={
            clean_text(sid): ts.parse_hourly_payload({"predictions": rows})
            for sid, rows in hourly_raw.items()
        },
    )
    return start, end, data


def listing_current_label(kind: str) -> str:
    if kind == "slack":
        return "Slack"
    if kind == "ebb":
        return "Max Ebb"
    if kind == "flood":
        return "Max Flood"
    return kind


def list_predictions(catalog: StationCatalog, data: AlmanacData) -> List[str]:
    """Console listing of every station's events in book terminology."""
    lines: List[str] = ["--- Tide Data ---"]
    for name, sid in catalog.tide_stations:
        lines.append(f"{name} (Station: {sid})")
        series = data.tide.get(sid)
        if series is None or not series.events:
            lines.append("  No data found.")
            continue
        for e in series.events:
            kind = "High" if e.kind == "H" else "Low"
            value = "" if e.value is None else f"{e.value}"
            lines.append(f"  {kind}: {value} ft at {e.timestamp}")

    lines.append("--- Current Data ---")
    for name, sid in catalog.current_stations:
        lines.append(f"{name} (Station: {sid})")
        series = data.current.get(sid)
        if series is None or not series.events:
            lines.append("  No data found.")
            continue
        for e in series.events:
            value = "" if e.value is None else f"{e.value}"
            lines.append(f"  {listing_current_label(e.kind)}: {value} knots at {e.timestamp}")
    return lines


def main(argv: List[str] | None = None) -> None:
    args = parse_effective_args(argv)

    catalog = resolve_catalog(args.stations_file, args.graph_stations)
    _status(
        args.status_messages,
        f"Using {len(catalog.current_stations)} current and {len(catalog.tide_stations)} tide stations",
    )

    if args.load_predictions:
        _status(args.status_messages, f"Loading predictions from {args.load_predictions}")
        cached_start, cached_end, data = load_predictions_file(args.load_predictions)
        if args.start_date < cached_start or args.end_date > cached_end:
            _status(
                args.status_messages,
                f"Cached predictions cover {cached_start.isoformat()} to {cached_end.isoformat()}; "
                "days outside that span render as data not available",
            )
    else:
        data = fetch_almanac_data(
            catalog,
            args.start_date,
            args.end_date,
            application=args.application,
            status_messages=args.status_messages,
        )
        if args.dump_predictions:
            _status(args.status_messages, f"Writing predictions to {args.dump_predictions}")
            dump_predictions_file(args.dump_predictions, args.start_date, args.end_date, data)

    if args.list_predictions:
        for line in list_predictions(catalog, data):
            print(line)

    geometry = PageGeometry(
        width=args.page_width,
        height=args.page_height,
        margin=args.margin,
        divider_ratio=args.divider_ratio,
    )
    make_almanac_pdf(
        out_path=args.out,
        start_date=args.start_date,
        end_date=args.end_date,
        catalog=catalog,
        data=data,
        geometry=geometry,
        sizes=LayoutSizes(),
        latitude=args.latitude,
        longitude=args.longitude,
        timezone=args.timezone,
        label_mode=args.graph_label_mode,
        title=args.title,
        status_messages=args.status_messages,
    )

    _status(args.status_messages, f"Finished writing {args.out}")
    print(f"Wrote {args.out}")


if __name__ == "__main__":
    main()
