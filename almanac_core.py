#!/usr/bin/env python3
"""
Render a printed tide and current almanac PDF: one page per calendar day with
sun times, a moon phase icon, current predictions and hi/lo tide predictions.

Example:
  python3 print_almanac.py \
    --start-date 2026-01-01 --end-date 2026-01-31 \
    --stations-file examples/puget_sound_stations.toml \
    --out out/january.pdf
"""

from __future__ import annotations

import json
import math
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

# Astronomy
from astral import LocationInfo, moon
from astral.sun import sun

# ReportLab
from reportlab.pdfbase import pdfmetrics
from reportlab.platypus import BaseDocTemplate, Flowable, Frame, PageBreak, PageTemplate

import tide_store as ts
from tide_store import PredictionEvent, StationCatalog, clean_text


API_BASE_URL = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
DEFAULT_APPLICATION = "Puget_Sound_Tide_Book"

DEFAULT_LATITUDE = 47.6
DEFAULT_LONGITUDE = -122.3
DEFAULT_TIMEZONE = "America/Los_Angeles"

PLACEHOLDER_TEXT = "Data not available."

MOON_LIGHT = "E0E0E0"
MOON_DARK = "201F24"
INK = "000000"
GRID_COLOR = "E0E0E0"
ZERO_LINE_COLOR = "808080"

LABEL_MODES = ("values", "hilo")


# ---------- Provider ----------

def _http_json(url: str, method: str = "GET", payload: Optional[dict] = None, headers: Optional[dict] = None) -> dict:
    data = None
    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        req_headers["Content-Type"] = "application/json"
    req = urllib.request.Request(url, data=data, method=method, headers=req_headers)
    with urllib.request.urlopen(req, timeout=15) as resp:
        raw = resp.read().decode("utf-8", "ignore")
    return json.loads(raw or "{}")


def _api_date(d: date) -> str:
    return d.strftime("%Y%m%d")


def _datagetter(
    params: Dict[str, str],
    empty: Callable[[], dict],
    what: str,
    status: Optional[Callable[[str], None]],
) -> dict:
    url = f"{API_BASE_URL}?{urllib.parse.urlencode(params)}"
    label = f"{what} for station {params['station']} for dates {params['begin_date']} to {params['end_date']}"
    try:
        data = _http_json(url)
    except (OSError, ValueError) as exc:
        if status:
            status(f"Error fetching {label}: {exc}")
        return empty()
    if not isinstance(data, dict):
        if status:
            status(f"Unexpected response fetching {label}")
        return empty()
    if "error" in data:
        err = data.get("error")
        msg = err.get("message") if isinstance(err, dict) else err
        if status:
            status(f"Provider error fetching {label}: {clean_text(msg)}")
        return empty()
    return data


def _tide_params(station_id: str, start: date, end: date, interval: str, application: str) -> Dict[str, str]:
    return {
        "application": application,
        "format": "json",
        "product": "predictions",
        "datum": "MLLW",
        "time_zone": "lst_ldt",
        "units": "english",
        "interval": interval,
        "station": station_id,
        "begin_date": _api_date(start),
        "end_date": _api_date(end),
    }


def fetch_tide_predictions(
    station_id: str,
    start: date,
    end: date,
    application: str = DEFAULT_APPLICATION,
    status: Optional[Callable[[str], None]] = None,
) -> dict:
    """Hi/lo predictions; ``{"predictions": []}`` on any failure."""
    params = _tide_params(station_id, start, end, "hilo", application)
    return _datagetter(params, lambda: {"predictions": []}, "tide data", status)


def fetch_hourly_tide_predictions(
    station_id: str,
    start: date,
    end: date,
    application: str = DEFAULT_APPLICATION,
    status: Optional[Callable[[str], None]] = None,
) -> dict:
    params = _tide_params(station_id, start, end, "h", application)
    return _datagetter(params, lambda: {"predictions": []}, "hourly tide data", status)


def fetch_current_predictions(
    station_id: str,
    start: date,
    end: date,
    application: str = DEFAULT_APPLICATION,
    status: Optional[Callable[[str], None]] = None,
) -> dict:
    """Max flood/ebb and slack predictions; ``{"current_predictions": {"cp": []}}`` on any failure."""
    params = {
        "application": application,
        "format": "json",
        "product": "currents_predictions",
        "time_zone": "lst_ldt",
        "units": "english",
        "interval": "max_slack",
        "station": station_id,
        "begin_date": _api_date(start),
        "end_date": _api_date(end),
    }
    return _datagetter(params, lambda: {"current_predictions": {"cp": []}}, "current data", status)


@dataclass
class AlmanacData:
    """Everything fetched for a date range, keyed by station id."""

    current: Dict[str, ts.StationSeries] = field(default_factory=dict)
    tide: Dict[str, ts.StationSeries] = field(default_factory=dict)
    hourly: Dict[str, Tuple[ts.HourlySample, ...]] = field(default_factory=dict)


# ---------- Text helpers ----------

def format_time(value: object) -> str:
    """Clock part of a ``YYYY-MM-DD HH:MM`` string; anything malformed gives ""."""
    if not isinstance(value, str) or not value:
        return ""
    parts = value.split(" ")
    return parts[1] if len(parts) == 2 else ""


def current_event_label(kind: str) -> str:
    # The printed page only knows three kinds; the console listing echoes raw ones.
    k = clean_text(kind)
    if k == "ebb":
        return "max ebb"
    if k == "flood":
        return "max flood"
    return "slack"


def current_speed_text(event: PredictionEvent) -> str:
    if current_event_label(event.kind) == "slack" or event.value is None:
        return ""
    return f"{event.value:.1f}"


def tide_kind_label(kind: str) -> str:
    k = clean_text(kind)
    if k == "H":
        return "high"
    if k == "L":
        return "low"
    return k


def tide_height_text(event: PredictionEvent) -> str:
    return "" if event.value is None else f"{event.value:.2f}"


def hard_truncate_to_width(text: str, font_name: str, font_size: float, max_width_pts: float) -> str:
    """
    Chop characters off the end until the string fits max_width_pts.
    No ellipsis.
    """
    t = clean_text(text)
    if not t:
        return t

    if pdfmetrics.stringWidth(t, font_name, font_size) <= max_width_pts:
        return t

    lo, hi = 0, len(t)
    while lo < hi:
        mid = (lo + hi) // 2
        if pdfmetrics.stringWidth(t[:mid], font_name, font_size) <= max_width_pts:
            lo = mid + 1
        else:
            hi = mid
    best = max(0, lo - 1)
    return t[:best].rstrip()


def _parse_hex_color(hex_value: str, fallback: Tuple[float, float, float] = (0.0, 0.0, 0.0)) -> Tuple[float, float, float]:
    raw = clean_text(hex_value).lstrip("#")
    if len(raw) == 3:
        raw = "".join([ch * 2 for ch in raw])
    if len(raw) != 6:
        return fallback
    try:
        return tuple(int(raw[i : i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]
    except ValueError:
        return fallback


# ---------- Moon phase ----------

NEW_MOON = "New Moon"
WAXING_CRESCENT = "Waxing Crescent"
FIRST_QUARTER = "First Quarter"
WAXING_GIBBOUS = "Waxing Gibbous"
FULL_MOON = "Full Moon"
WANING_GIBBOUS = "Waning Gibbous"
LAST_QUARTER = "Last Quarter"
WANING_CRESCENT = "Waning Crescent"

PHASE_BUCKETS = (
    NEW_MOON,
    WAXING_CRESCENT,
    FIRST_QUARTER,
    WAXING_GIBBOUS,
    FULL_MOON,
    WANING_GIBBOUS,
    LAST_QUARTER,
    WANING_CRESCENT,
)

# Upper bound of each bucket; New Moon also covers [0.9375, 1).
PHASE_BOUNDARIES = (0.0625, 0.1875, 0.3125, 0.4375, 0.5625, 0.6875, 0.8125, 0.9375)

# 4/3 * (sqrt(2) - 1): cubic bezier handle length for a quarter ellipse.
KAPPA = 0.5522847498

ICON_BOX = 100.0
ICON_CENTER = 50.0
TERMINATOR_RX = 30.0

# phase -> (lit side: +1 right / -1 left, terminator shape)
_SILHOUETTES = {
    WAXING_CRESCENT: (1, "crescent"),
    FIRST_QUARTER: (1, "quarter"),
    WAXING_GIBBOUS: (1, "gibbous"),
    WANING_GIBBOUS: (-1, "gibbous"),
    LAST_QUARTER: (-1, "quarter"),
    WANING_CRESCENT: (-1, "crescent"),
}


def classify_phase(fraction: float) -> str:
    """Map a lunar cycle fraction in [0, 1) to one of eight phase buckets."""
    for bound, name in zip(PHASE_BOUNDARIES, PHASE_BUCKETS):
        if fraction < bound:
            return name
    return NEW_MOON


def _half_ellipse(rx: float, downward: bool) -> List[tuple]:
    """Bezier ops for a vertical half ellipse between the top and bottom of the icon box.

    ``rx`` is signed: positive bulges right, negative bulges left. The path
    starts wherever the previous op ended (top when downward, bottom otherwise).
    """
    c = ICON_CENTER
    r = ICON_CENTER
    x = c + rx
    k = KAPPA
    if downward:
        return [
            ("C", c + rx * k, 0.0, x, c - r * k, x, c),
            ("C", x, c + r * k, c + rx * k, ICON_BOX, c, ICON_BOX),
        ]
    return [
        ("C", c + rx * k, ICON_BOX, x, c + r * k, x, c),
        ("C", x, c - r * k, c + rx * k, 0.0, c, 0.0),
    ]


def moon_silhouette(phase_name: str) -> Optional[Tuple[tuple, ...]]:
    """Lit-area outline on a 100x100 box centered at (50, 50), y down.

    New and Full return None: they are solid fills, not silhouettes. Waning
    shapes mirror waxing shapes; crescent and gibbous differ only by the sign
    of the terminator radius; quarters use a straight chord.
    """
    spec = _SILHOUETTES.get(phase_name)
    if spec is None:
        return None
    side, shape = spec
    ops: List[tuple] = [("M", ICON_CENTER, 0.0)]
    ops += _half_ellipse(side * ICON_CENTER, downward=True)
    if shape == "quarter":
        ops.append(("L", ICON_CENTER, 0.0))
    else:
        bulge = side * TERMINATOR_RX if shape == "crescent" else -side * TERMINATOR_RX
        ops += _half_ellipse(bulge, downward=False)
    ops.append(("Z",))
    return tuple(ops)


# ---------- Draw commands ----------
# Page coordinates: origin at the top-left corner, y grows downward.

@dataclass(frozen=True)
class TextCmd:
    text: str
    x: float
    y: float
    font: str
    size: float
    width: Optional[float] = None
    align: str = "left"
    underline: bool = False


@dataclass(frozen=True)
class LineCmd:
    x1: float
    y1: float
    x2: float
    y2: float
    line_width: float = 1.0
    color: str = INK


@dataclass(frozen=True)
class CircleCmd:
    x: float
    y: float
    radius: float
    fill: str = INK


@dataclass(frozen=True)
class PathCmd:
    """Path ops drawn after translating to ``origin`` and scaling uniformly by ``scale``."""

    ops: Tuple[tuple, ...]
    fill: Optional[str] = None
    stroke: Optional[str] = None
    line_width: float = 1.0
    origin: Tuple[float, float] = (0.0, 0.0)
    scale: float = 1.0


def moon_icon_commands(x: float, y: float, radius: float, phase_name: str) -> List[object]:
    # Dark disc always goes down first so New Moon needs no overlay.
    cmds: List[object] = [CircleCmd(x, y, radius, fill=MOON_DARK)]
    if phase_name == FULL_MOON:
        cmds.append(CircleCmd(x, y, radius, fill=MOON_LIGHT))
        return cmds
    ops = moon_silhouette(phase_name)
    if ops is not None:
        cmds.append(
            PathCmd(
                ops=ops,
                fill=MOON_LIGHT,
                origin=(x - radius, y - radius),
                scale=radius / ICON_CENTER,
            )
        )
    return cmds


# ---------- Tide curve ----------

@dataclass(frozen=True)
class CurveLabel:
    x: float
    y: float
    text: str
    above: bool


@dataclass(frozen=True)
class CurveSpec:
    """A normalized tide curve in graph-local coordinates (0..width, 0..height, y down)."""

    width: float
    height: float
    points: Tuple[Tuple[float, float], ...]
    times: Tuple[str, ...]
    segments: Tuple[Tuple[float, float, float, float, float, float], ...]
    grid_ys: Tuple[float, ...]
    zero_y: Optional[float]
    hour_marks: Tuple[Tuple[float, str], ...]
    value_labels: Tuple[CurveLabel, ...]
    hilo_labels: Tuple[CurveLabel, ...]


HOUR_MARKS = (6, 12, 18)


def normalize_curve(
    hourly: Sequence[ts.HourlySample],
    hilo_events: Sequence[PredictionEvent],
    width: float,
    height: float,
) -> Optional[CurveSpec]:
    """
    Map one day of hourly samples into graph space.

    Returns None (no graph) for fewer than two samples or a zero time/value
    range; that is an omitted decoration, not an error.
    """
    samples = sorted(hourly, key=lambda s: s.timestamp)
    if len(samples) < 2:
        return None

    t0 = samples[0].timestamp
    t1 = samples[-1].timestamp
    span = (t1 - t0).total_seconds()
    values = [s.height for s in samples]
    vmin = min(values)
    vmax = max(values)
    if span <= 0 or vmax == vmin or not all(math.isfinite(v) for v in values):
        return None

    top = height * 0.1
    bottom = height * 0.9

    def x_for(t: datetime) -> float:
        return (t - t0).total_seconds() / span * width

    def y_for(v: float) -> float:
        return bottom - (v - vmin) / (vmax - vmin) * (bottom - top)

    points = tuple((x_for(s.timestamp), y_for(s.height)) for s in samples)
    times = tuple(s.timestamp.strftime("%H:%M") for s in samples)

    segments = []
    for (ax, ay), (bx, by) in zip(points, points[1:]):
        mid = (ax + bx) / 2.0
        segments.append((mid, ay, mid, by, bx, by))

    grid_ys = tuple(top + i * (bottom - top) / 3.0 for i in range(4))
    zero = y_for(0.0)
    zero_y = zero if 0.0 <= zero <= height else None

    marks = []
    for hour in HOUR_MARKS:
        instant = datetime.combine(t0.date(), time(hour, 0))
        if t0 <= instant <= t1:
            marks.append((x_for(instant), instant.strftime("%H:%M")))

    mean = sum(values) / len(values)
    value_labels = tuple(
        CurveLabel(x=px, y=py, text=f"{v:.2f}", above=v <= mean) for (px, py), v in zip(points, values)
    )

    hilo_by_time: Dict[str, str] = {}
    for e in hilo_events:
        if e.value is None:
            continue
        hilo_by_time[format_time(e.timestamp)] = f"{e.kind}{e.value:.1f}"
    hilo_labels = tuple(
        CurveLabel(x=px, y=py, text=hilo_by_time[t], above=True)
        for (px, py), t in zip(points, times)
        if t in hilo_by_time
    )

    return CurveSpec(
        width=width,
        height=height,
        points=points,
        times=times,
        segments=tuple(segments),
        grid_ys=grid_ys,
        zero_y=zero_y,
        hour_marks=tuple(marks),
        value_labels=value_labels,
        hilo_labels=hilo_labels,
    )


# ---------- Layout ----------

@dataclass(frozen=True)
class PageGeometry:
    width: float = 306.0
    height: float = 792.0
    margin: float = 10.0
    divider_ratio: float = 0.45

    @property
    def divider_x(self) -> float:
        return self.width * self.divider_ratio

    @property
    def graph_x(self) -> float:
        return self.divider_x + self.margin

    @property
    def graph_width(self) -> float:
        return self.width - self.divider_x - (self.margin * 2)


@dataclass(frozen=True)
class LayoutSizes:
    header_lg: float = 14.0
    header_sm: float = 8.0
    title: float = 10.0
    station_name: float = 9.0
    data: float = 8.0
    line_spacing: float = 2.0
    station_spacing: float = 6.0
    graph_height: float = 40.0
    graph_bottom_margin: float = 3.0
    graph_label_clearance: float = 6.0
    graph_label: float = 5.0
    tide_line_height: float = 9.0
    moon_icon_radius: float = 9.0


@dataclass(frozen=True)
class ColumnLayout:
    commands: Tuple[object, ...]
    end_y: float


def curve_commands(spec: CurveSpec, x: float, y: float, sizes: LayoutSizes, label_mode: str = "values") -> List[object]:
    cmds: List[object] = []
    w = spec.width
    h = spec.height
    for gy in spec.grid_ys:
        cmds.append(LineCmd(x, y + gy, x + w, y + gy, line_width=0.25, color=GRID_COLOR))
    if spec.zero_y is not None:
        cmds.append(LineCmd(x, y + spec.zero_y, x + w, y + spec.zero_y, line_width=0.6, color=ZERO_LINE_COLOR))
    for hx, label in spec.hour_marks:
        cmds.append(LineCmd(x + hx, y, x + hx, y + h, line_width=0.25, color=GRID_COLOR))
        cmds.append(TextCmd(label, x + hx - 15, y + h + 1, "Helvetica", sizes.graph_label, width=30, align="center"))

    (x0, y0) = spec.points[0]
    ops: List[tuple] = [("M", x0, y0)]
    ops += [("C",) + seg for seg in spec.segments]
    cmds.append(PathCmd(ops=tuple(ops), stroke=INK, line_width=0.5, origin=(x, y)))

    for px, py in spec.points:
        cmds.append(CircleCmd(x + px, y + py, 0.8, fill=INK))

    labels = spec.hilo_labels if label_mode == "hilo" else spec.value_labels
    for lab in labels:
        ly = y + lab.y - 1.5 - sizes.graph_label if lab.above else y + lab.y + 1.5
        cmds.append(TextCmd(lab.text, x + lab.x - 10, ly, "Helvetica", sizes.graph_label, width=20, align="center"))
    return cmds


def layout_current_column(
    stations: Sequence[Tuple[str, str]],
    buckets: Dict[str, Optional[List[PredictionEvent]]],
    start_y: float,
    geometry: PageGeometry,
    sizes: LayoutSizes,
) -> ColumnLayout:
    """Stack current-station blocks down the left column in catalog order."""
    m = geometry.margin
    head_w = geometry.divider_x - (m * 2)
    col_w = (geometry.divider_x - m) / 3.0
    cmds: List[object] = []
    y = start_y
    for name, sid in stations:
        cmds.append(TextCmd(name, m, y, "Helvetica-Bold", sizes.station_name, width=head_w, align="center"))
        y += sizes.station_name

        events = buckets.get(sid) or []
        if events:
            for e in events:
                cells = (current_speed_text(e), current_event_label(e.kind), format_time(e.timestamp))
                for i, cell in enumerate(cells):
                    cmds.append(TextCmd(cell, m + (col_w * i), y, "Helvetica", sizes.data, width=col_w, align="center"))
                y += sizes.data + sizes.line_spacing
        else:
            cmds.append(TextCmd(PLACEHOLDER_TEXT, m, y, "Helvetica-Oblique", sizes.data, width=head_w, align="center"))
            y += sizes.data
        y += sizes.station_spacing
    return ColumnLayout(commands=tuple(cmds), end_y=y)


def layout_tide_column(
    stations: Sequence[Tuple[str, str]],
    buckets: Dict[str, Optional[List[PredictionEvent]]],
    start_y: float,
    geometry: PageGeometry,
    sizes: LayoutSizes,
    curves: Optional[Dict[str, CurveSpec]] = None,
    label_mode: str = "values",
) -> ColumnLayout:
    """
    Stack tide-station blocks down the right column in catalog order.

    A day's events sit side by side in equal slots, two lines tall whatever
    the count. Slots are a quarter of the column wide until there are more
    than four events, and fewer than four are centered as a group.
    """
    curves = curves or {}
    dx = geometry.divider_x
    m = geometry.margin
    head_w = geometry.width - dx
    area_w = geometry.width - dx - m
    cmds: List[object] = []
    y = start_y
    for name, sid in stations:
        cmds.append(TextCmd(name, dx, y, "Helvetica-Bold", sizes.station_name, width=head_w, align="center"))
        y += sizes.station_name

        spec = curves.get(sid)
        if spec is not None:
            cmds += curve_commands(spec, geometry.graph_x, y, sizes, label_mode=label_mode)
            y += sizes.graph_height + sizes.graph_bottom_margin + sizes.graph_label_clearance

        events = buckets.get(sid) or []
        if events:
            n = len(events)
            # Slots never grow wider than a quarter; short days cluster mid-column instead of spreading edge to edge.
            slot_w = area_w / max(n, 4)
            offset = (area_w - (n * slot_w)) / 2.0 if n < 4 else 0.0
            for i, e in enumerate(events):
                col_x = dx + offset + (i * slot_w)
                top = f"{tide_height_text(e)} {tide_kind_label(e.kind)}".strip()
                cmds.append(TextCmd(top, col_x, y, "Helvetica", sizes.data, width=slot_w, align="center"))
                cmds.append(
                    TextCmd(
                        format_time(e.timestamp),
                        col_x,
                        y + sizes.tide_line_height,
                        "Helvetica",
                        sizes.data,
                        width=slot_w,
                        align="center",
                    )
                )
            y += sizes.tide_line_height * 2
        else:
            cmds.append(TextCmd(PLACEHOLDER_TEXT, dx, y, "Helvetica-Oblique", sizes.data, width=head_w, align="center"))
            y += sizes.data
        y += sizes.station_spacing
    return ColumnLayout(commands=tuple(cmds), end_y=y)


# ---------- Page ----------

@dataclass(frozen=True)
class AstroInfo:
    sunrise: str
    sunset: str
    phase: float


@dataclass(frozen=True)
class AlmanacPage:
    day: date
    commands: Tuple[object, ...]
    columns_top: float
    current_end_y: float
    tide_end_y: float


def day_buckets(
    stations: Sequence[Tuple[str, str]],
    series_by_id: Dict[str, ts.StationSeries],
    day: date,
) -> Dict[str, Optional[List[PredictionEvent]]]:
    return {sid: ts.lookup_day_bucket(series_by_id, sid, day) for _, sid in stations}


def day_curves(
    catalog: StationCatalog,
    data: AlmanacData,
    tide_buckets: Dict[str, Optional[List[PredictionEvent]]],
    day: date,
    geometry: PageGeometry,
    sizes: LayoutSizes,
) -> Dict[str, CurveSpec]:
    out: Dict[str, CurveSpec] = {}
    for name, sid in catalog.tide_stations:
        if name not in catalog.graph_stations:
            continue
        hourly = ts.bucket_hourly(data.hourly.get(sid, ()), day)
        spec = normalize_curve(hourly, tide_buckets.get(sid) or [], geometry.graph_width, sizes.graph_height)
        if spec is not None:
            out[sid] = spec
    return out


def compose_page(
    day: date,
    catalog: StationCatalog,
    data: AlmanacData,
    astro: AstroInfo,
    geometry: PageGeometry = PageGeometry(),
    sizes: LayoutSizes = LayoutSizes(),
    label_mode: str = "values",
) -> AlmanacPage:
    """Lay out one day: header row, column titles, divider, then both columns from a shared top."""
    w = geometry.width
    m = geometry.margin
    dx = geometry.divider_x
    r = sizes.moon_icon_radius
    phase_name = classify_phase(astro.phase)

    cmds: List[object] = [
        TextCmd(day.strftime("%A").upper(), m, m, "Helvetica-Bold", sizes.header_lg),
        TextCmd(f"{day.strftime('%B')} {day.day}".upper(), m, m + sizes.header_lg, "Helvetica-Bold", sizes.header_lg),
    ]
    cmds += moon_icon_commands(w / 2.0, m + r, r, phase_name)
    cmds.append(TextCmd(phase_name, w / 2.0 - 30, m + (r * 2) + 2, "Helvetica", sizes.header_sm, width=60, align="center"))
    cmds.append(TextCmd(f"SUNRISE {astro.sunrise}", 0, m + 3, "Helvetica", sizes.header_sm, width=w - m, align="right"))
    cmds.append(TextCmd(f"SUNSET {astro.sunset}", 0, m + 15, "Helvetica", sizes.header_sm, width=w - m, align="right"))

    y = m + 40
    cmds.append(
        TextCmd("CURRENT PREDICTIONS", m, y, "Helvetica-Bold", sizes.title, width=dx - m, align="center", underline=True)
    )
    cmds.append(
        TextCmd("HIGH AND LOW TIDES", dx, y, "Helvetica-Bold", sizes.title, width=w - dx - m, align="center", underline=True)
    )
    y += sizes.title + 5
    cmds.append(LineCmd(dx, y - 2, dx, geometry.height - m))

    current = layout_current_column(
        catalog.current_stations,
        day_buckets(catalog.current_stations, data.current, day),
        y,
        geometry,
        sizes,
    )
    tide_buckets = day_buckets(catalog.tide_stations, data.tide, day)
    tides = layout_tide_column(
        catalog.tide_stations,
        tide_buckets,
        y,
        geometry,
        sizes,
        curves=day_curves(catalog, data, tide_buckets, day, geometry, sizes),
        label_mode=label_mode,
    )
    cmds += current.commands
    cmds += tides.commands
    return AlmanacPage(
        day=day,
        commands=tuple(cmds),
        columns_top=y,
        current_end_y=current.end_y,
        tide_end_y=tides.end_y,
    )


# ---------- Rendering ----------

def _draw_text(c, cmd: TextCmd, page_height: float) -> None:
    text = cmd.text
    if cmd.width is not None:
        text = hard_truncate_to_width(text, cmd.font, cmd.size, cmd.width)
    if not text:
        return
    c.setFont(cmd.font, cmd.size)
    c.setFillColorRGB(*_parse_hex_color(INK))
    baseline = page_height - cmd.y - pdfmetrics.getAscent(cmd.font, cmd.size)
    text_w = pdfmetrics.stringWidth(text, cmd.font, cmd.size)
    if cmd.width is None or cmd.align == "left":
        x0 = cmd.x
        c.drawString(x0, baseline, text)
    elif cmd.align == "center":
        x0 = cmd.x + (cmd.width - text_w) / 2.0
        c.drawCentredString(cmd.x + cmd.width / 2.0, baseline, text)
    else:
        x0 = cmd.x + cmd.width - text_w
        c.drawRightString(cmd.x + cmd.width, baseline, text)
    if cmd.underline:
        c.setStrokeColorRGB(*_parse_hex_color(INK))
        c.setLineWidth(0.5)
        c.line(x0, baseline - 1.5, x0 + text_w, baseline - 1.5)


def _draw_path(c, cmd: PathCmd, page_height: float) -> None:
    ox, oy = cmd.origin
    s = cmd.scale
    c.saveState()
    c.translate(ox, page_height - oy)
    c.scale(s, -s)
    p = c.beginPath()
    for op in cmd.ops:
        kind = op[0]
        if kind == "M":
            p.moveTo(op[1], op[2])
        elif kind == "L":
            p.lineTo(op[1], op[2])
        elif kind == "C":
            p.curveTo(*op[1:7])
        elif kind == "Z":
            p.close()
    if cmd.fill:
        c.setFillColorRGB(*_parse_hex_color(cmd.fill))
    if cmd.stroke:
        c.setStrokeColorRGB(*_parse_hex_color(cmd.stroke))
        c.setLineWidth(cmd.line_width / s if s else cmd.line_width)
    c.drawPath(p, stroke=1 if cmd.stroke else 0, fill=1 if cmd.fill else 0)
    c.restoreState()


def render_commands(c, commands: Sequence[object], page_height: float) -> None:
    """Replay positioned draw commands onto a ReportLab canvas, in order."""
    for cmd in commands:
        if isinstance(cmd, TextCmd):
            _draw_text(c, cmd, page_height)
        elif isinstance(cmd, LineCmd):
            c.setStrokeColorRGB(*_parse_hex_color(cmd.color))
            c.setLineWidth(cmd.line_width)
            c.line(cmd.x1, page_height - cmd.y1, cmd.x2, page_height - cmd.y2)
        elif isinstance(cmd, CircleCmd):
            c.setFillColorRGB(*_parse_hex_color(cmd.fill))
            c.circle(cmd.x, page_height - cmd.y, cmd.radius, stroke=0, fill=1)
        elif isinstance(cmd, PathCmd):
            _draw_path(c, cmd, page_height)
        else:
            raise TypeError(f"Unknown draw command: {type(cmd).__name__}")


class AlmanacPageFlowable(Flowable):
    def __init__(self, page: AlmanacPage, page_width: float, page_height: float) -> None:
        super().__init__()
        self.page = page
        self.page_width = page_width
        self.page_height = page_height

    def wrap(self, availWidth: float, availHeight: float) -> Tuple[float, float]:
        self.width = self.page_width
        self.height = self.page_height
        return self.width, self.height

    def draw(self) -> None:
        render_commands(self.canv, self.page.commands, self.page_height)


# ---------- Astronomy ----------

# astral reports lunar age on a 0..27.99 day scale.
LUNAR_AGE_SPAN = 28.0


def moon_phase_fraction(day: date) -> float:
    return (moon.phase(day) / LUNAR_AGE_SPAN) % 1.0


def compute_astro_info(
    day: date,
    latitude: float = DEFAULT_LATITUDE,
    longitude: float = DEFAULT_LONGITUDE,
    timezone: str = DEFAULT_TIMEZONE,
) -> AstroInfo:
    loc = LocationInfo(name="almanac", region="", timezone=timezone, latitude=latitude, longitude=longitude)
    try:
        s = sun(loc.observer, date=day, tzinfo=loc.timezone)
        sunrise = s["sunrise"].strftime("%I:%M %p")
        sunset = s["sunset"].strftime("%I:%M %p")
    except ValueError:
        # Polar day/night: the sun never crosses the horizon.
        sunrise = sunset = ""
    return AstroInfo(sunrise=sunrise, sunset=sunset, phase=moon_phase_fraction(day))


# ---------- Driver ----------

def iter_days(start: date, end: date) -> List[date]:
    out: List[date] = []
    cur = start
    while cur <= end:
        out.append(cur)
        cur += timedelta(days=1)
    return out


def make_almanac_pdf(
    out_path: Path,
    start_date: date,
    end_date: date,
    catalog: StationCatalog,
    data: AlmanacData,
    geometry: PageGeometry = PageGeometry(),
    sizes: LayoutSizes = LayoutSizes(),
    latitude: float = DEFAULT_LATITUDE,
    longitude: float = DEFAULT_LONGITUDE,
    timezone: str = DEFAULT_TIMEZONE,
    label_mode: str = "values",
    title: str = "Puget Sound Tide Book",
    astro_provider: Optional[Callable[[date], AstroInfo]] = None,
    status_messages: bool = False,
) -> int:
    """Write one page per day from start_date to end_date inclusive; returns the page count."""

    def _status(message: str) -> None:
        if status_messages:
            print(f"[status] {clean_text(message)}")

    if label_mode not in LABEL_MODES:
        raise ValueError(f"Unsupported graph label mode: {label_mode}")
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")

    astro_for = astro_provider or (lambda d: compute_astro_info(d, latitude, longitude, timezone))

    out_path.parent.mkdir(parents=True, exist_ok=True)
    doc = BaseDocTemplate(
        str(out_path),
        pagesize=(geometry.width, geometry.height),
        leftMargin=0,
        rightMargin=0,
        topMargin=0,
        bottomMargin=0,
        title=clean_text(title) or "Tide Almanac",
    )
    frame = Frame(
        0,
        0,
        geometry.width,
        geometry.height,
        leftPadding=0,
        rightPadding=0,
        topPadding=0,
        bottomPadding=0,
        id="day",
    )
    doc.addPageTemplates([PageTemplate(id="day", frames=[frame])])

    days = iter_days(start_date, end_date)
    _status(f"Composing {len(days)} page(s) from {start_date.isoformat()} to {end_date.isoformat()}")
    story: List[Flowable] = []
    for idx, day in enumerate(days):
        if idx:
            story.append(PageBreak())
        astro = astro_for(day)
        if not astro.sunrise or not astro.sunset:
            _status(f"No sunrise/sunset for {day.isoformat()}; leaving sun times blank")
        page = compose_page(day, catalog, data, astro, geometry, sizes, label_mode=label_mode)
        story.append(AlmanacPageFlowable(page, geometry.width, geometry.height))

    doc.build(story)
    _status(f"Rendered {len(days)} page(s) to {out_path}")
    return len(days)


def parse_date(s: str) -> date:
    return datetime.strptime(s, "%Y-%m-%d").date()
