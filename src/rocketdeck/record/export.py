from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Final, Literal, Sequence

from rocketdeck.errors import NoTelemetryDataError
from rocketdeck.telemetry.types import TelemetryRecord, TelemetrySchema, TextEvent

if TYPE_CHECKING:
    from rocketdeck.record.history import HistoryStore

ExportFormat = Literal["csv", "json"]

EXPORT_FORMATS: Final[tuple[str, ...]] = ("csv", "json")
EVENT_COLUMNS: Final[tuple[str, ...]] = ("index", "timestamp", "text")


def to_csv(
    records: Sequence[TelemetryRecord],
    events: Sequence[TextEvent],
    schema: TelemetrySchema,
) -> str:
    """
    Telemetry table in schema column order. When text events exist they follow
    after one blank line as a second ``index,timestamp,text`` table.
    """
    if not records:
        raise NoTelemetryDataError()

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(schema.columns)
    for r in records:
        writer.writerow([getattr(r, f) for f in schema.fields])

    if events:
        buf.write("\n")
        writer.writerow(EVENT_COLUMNS)
        for i, e in enumerate(events, start=1):
            writer.writerow([i, e.timestamp, e.text])

    return buf.getvalue()


# ---------------------------------------- #


def to_json(
    records: Sequence[TelemetryRecord],
    events: Sequence[TextEvent],
    export_time: datetime | None = None,
) -> str:
    if not records:
        raise NoTelemetryDataError()

    if export_time is None:
        export_time = datetime.now(timezone.utc)

    payload: dict = {
        "exportTime": export_time.isoformat(),
        "dataPoints": len(records),
        "maxAltitude": max(r.max_altitude for r in records),
        "flightDuration": records[-1].time,
    }
    if events:
        payload["textMessages"] = [e.as_dict() for e in events]
    payload["telemetryData"] = [r.as_dict() for r in records]

    return json.dumps(payload, indent=2)


# ---------------------------------------- #


def export_filename(fmt: ExportFormat, day: date | None = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f"rocket_telemetry_{day.isoformat()}.{fmt}"


def write_export(history: HistoryStore, fmt: ExportFormat, out_dir: Path, day: date | None = None) -> Path:
    """Render ``history`` as ``fmt`` and write it into ``out_dir``."""
    if fmt == "csv":
        content = history.export_csv()
    elif fmt == "json":
        content = history.export_json()
    else:
        raise ValueError(f"Unsupported export format: {fmt!r}")

    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / export_filename(fmt, day)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    return path
