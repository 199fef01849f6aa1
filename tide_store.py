from __future__ import annotations

import json
import math
import tomllib
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

TIDE = "tide"
CURRENT = "current"

PROVIDER_TIME_FORMAT = "%Y-%m-%d %H:%M"

# Display order is the dict order.
DEFAULT_TIDE_STATIONS: Dict[str, str] = {
    "Port Townsend": "9444900",
    "Blaine, Drayton Harbor": "9449679",
    "Bellingham": "9449211",
    "Rosario": "9449771",
    "Friday Harbor": "9449880",
    "Anacortes": "9448794",
    "Sequim Bay": "9444555",
    "Port Angeles": "9444090",
    "Neah Bay": "9443090",
    "Seattle": "9447130",
    "LaConner": "9448558",
    "Kayak Point": "9448094",
    "Everett": "9447659",
    "Port Ludlow": "9445017",
    "Pleasant Harbor": "9445293",
    "Bremerton": "9445958",
    "Tacoma, Sequin Waterway": "9446484",
    "Olympia": "9446807",
}

DEFAULT_CURRENT_STATIONS: Dict[str, str] = {
    "Lawrence Point": "PUG1708",
    "San Juan Channel": "PUG1703",
    "Rosario Strait": "PUG1702",
    "Deception Pass": "PUG1701",
    "Point Wilson": "PUG1623",
    "The Narrows": "PUG1524",
    "Dana Passage": "PUG1539",
}

DEFAULT_GRAPH_STATIONS = ("Port Townsend", "Seattle")


def clean_text(value: object) -> str:
    return str(value or "").strip()


@dataclass(frozen=True)
class PredictionEvent:
    """One hi/lo tide extremum or one current max/slack event.

    ``timestamp`` keeps the provider's local ``YYYY-MM-DD HH:MM`` string so day
    bucketing and time formatting never reinterpret timezones. ``value`` is feet
    for tides and knots for currents; None when the provider sent no number.
    """

    timestamp: str
    value: Optional[float]
    kind: str


@dataclass(frozen=True)
class HourlySample:
    timestamp: datetime
    height: float


@dataclass(frozen=True)
class StationSeries:
    station_id: str
    name: str
    kind: str
    events: Tuple[PredictionEvent, ...] = ()


@dataclass(frozen=True)
class StationCatalog:
    current_stations: Tuple[Tuple[str, str], ...]
    tide_stations: Tuple[Tuple[str, str], ...]
    graph_stations: frozenset = field(default_factory=frozenset)

    def station_id(self, name: str) -> Optional[str]:
        for n, sid in self.current_stations + self.tide_stations:
            if n == name:
                return sid
        return None


def default_catalog() -> StationCatalog:
    return StationCatalog(
        current_stations=tuple(DEFAULT_CURRENT_STATIONS.items()),
        tide_stations=tuple(DEFAULT_TIDE_STATIONS.items()),
        graph_stations=frozenset(DEFAULT_GRAPH_STATIONS),
    )


def _station_pairs(raw: object, label: str) -> Tuple[Tuple[str, str], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise ValueError(f"Catalog '{label}' must be an object of name -> station id")
    out: List[Tuple[str, str]] = []
    for name, sid in raw.items():
        n = clean_text(name)
        s = clean_text(sid)
        if n and s:
            out.append((n, s))
    return tuple(out)


def parse_graph_stations(raw: object) -> frozenset:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        return frozenset(clean_text(p) for p in raw.split(",") if clean_text(p))
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(clean_text(p) for p in raw if clean_text(p))
    raise ValueError("graph_stations must be a list or comma-separated string")


def load_station_catalog(path: Optional[Path]) -> StationCatalog:
    """Load an ordered station catalog from JSON or TOML; None gives the built-in one."""
    if not path:
        return default_catalog()
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(raw)
    elif path.suffix.lower() in (".toml", ".tml"):
        data = tomllib.loads(raw)
    else:
        raise ValueError(f"Unsupported catalog format: {path}. Use .json or .toml")
    if not isinstance(data, dict):
        raise ValueError("Catalog root must be a JSON/TOML object")

    current = _station_pairs(data.get("current_stations"), "current_stations")
    tide = _station_pairs(data.get("tide_stations"), "tide_stations")
    if not current and not tide:
        raise ValueError("Catalog has no stations")

    tide_names = {n for n, _ in tide}
    graph = parse_graph_stations(data.get("graph_stations"))
    unknown = sorted(graph - tide_names)
    if unknown:
        raise ValueError(f"graph_stations are not tide stations: {', '.join(unknown)}")
    return StationCatalog(current_stations=current, tide_stations=tide, graph_stations=graph)


def _to_float(value: object) -> Optional[float]:
    try:
        result = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    # NaN and inf parse, but have no place on a page.
    return result if math.isfinite(result) else None


def _rows(payload: object, *keys: str) -> List[dict]:
    node = payload
    for k in keys:
        if not isinstance(node, dict):
            return []
        node = node.get(k)
    if not isinstance(node, list):
        return []
    return [r for r in node if isinstance(r, dict)]


def parse_event_rows(rows: object) -> Tuple[PredictionEvent, ...]:
    """Rows shaped ``{t, v, type}``; rows without a timestamp are dropped, order kept."""
    events: List[PredictionEvent] = []
    for row in _rows({"rows": rows}, "rows"):
        ts = clean_text(row.get("t"))
        if not ts:
            continue
        events.append(PredictionEvent(timestamp=ts, value=_to_float(row.get("v")), kind=clean_text(row.get("type"))))
    return tuple(events)


def parse_tide_payload(payload: object) -> Tuple[PredictionEvent, ...]:
    """Hi/lo rows from ``payload["predictions"]``, provider order kept."""
    return parse_event_rows(_rows(payload, "predictions"))


def parse_current_payload(payload: object) -> Tuple[PredictionEvent, ...]:
    """Current rows ``{Time, Velocity_Major, Type}`` from ``payload["current_predictions"]["cp"]``."""
    events: List[PredictionEvent] = []
    for row in _rows(payload, "current_predictions", "cp"):
        ts = clean_text(row.get("Time"))
        if not ts:
            continue
        events.append(
            PredictionEvent(timestamp=ts, value=_to_float(row.get("Velocity_Major")), kind=clean_text(row.get("Type")))
        )
    return tuple(events)


def parse_provider_time(value: object) -> Optional[datetime]:
    try:
        return datetime.strptime(clean_text(value), PROVIDER_TIME_FORMAT)
    except ValueError:
        return None


def parse_hourly_payload(payload: object) -> Tuple[HourlySample, ...]:
    samples: List[HourlySample] = []
    for row in _rows(payload, "predictions"):
        ts = parse_provider_time(row.get("t"))
        height = _to_float(row.get("v"))
        if ts is None or height is None:
            continue
        samples.append(HourlySample(timestamp=ts, height=height))
    return tuple(samples)


def day_key(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def bucket_events(series: StationSeries, day: date) -> List[PredictionEvent]:
    """Events whose timestamp starts with the day's ``YYYY-MM-DD`` key, in series order."""
    key = day_key(day)
    return [e for e in series.events if e.timestamp.startswith(key)]


def bucket_hourly(samples: Iterable[HourlySample], day: date) -> List[HourlySample]:
    return [s for s in samples if s.timestamp.date() == day]


def lookup_day_bucket(
    series_by_id: Dict[str, StationSeries],
    station_id: str,
    day: date,
) -> Optional[List[PredictionEvent]]:
    """None when the station was never loaded; an empty list when it has no events that day."""
    series = series_by_id.get(station_id)
    if series is None:
        return None
    return bucket_events(series, day)
