from __future__ import annotations

from datetime import datetime

import numpy as np

from rocketdeck.record import export
from rocketdeck.telemetry.types import TelemetryRecord, TelemetrySchema, TextEvent


class HistoryStore:
    """
    Append-only record of one session: decoded telemetry, text events, and
    every raw line as received (frames that failed to decode included).

    Accessors hand out tuples, so readers never see a sequence that grows
    while they iterate it.
    """

    def __init__(self, schema: TelemetrySchema) -> None:
        self.schema = schema
        self._records: list[TelemetryRecord] = []
        self._events: list[TextEvent] = []
        self._raw: list[str] = []

    # ---------------------------------------- #

    def append(self, item: TelemetryRecord | TextEvent) -> None:
        if isinstance(item, TelemetryRecord):
            self._records.append(item)
        elif isinstance(item, TextEvent):
            self._events.append(item)
        else:
            raise TypeError(f"Cannot store {type(item).__name__} in history")

    def append_raw(self, line: str) -> None:
        self._raw.append(line)

    def clear(self) -> None:
        self._records.clear()
        self._events.clear()
        self._raw.clear()

    # ---------------------------------------- #

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[TelemetryRecord, ...]:
        return tuple(self._records)

    @property
    def events(self) -> tuple[TextEvent, ...]:
        return tuple(self._events)

    @property
    def raw_lines(self) -> tuple[str, ...]:
        return tuple(self._raw)

    @property
    def latest(self) -> TelemetryRecord | None:
        return self._records[-1] if self._records else None

    @property
    def max_altitude(self) -> float:
        if not self._records:
            return 0.0
        return float(np.max(self.series("max_altitude")))

    @property
    def flight_time(self) -> int:
        """Device time (ms) of the latest record."""
        latest = self.latest
        return latest.time if latest is not None else 0

    # ---------------------------------------- #

    def series(self, name: str) -> np.ndarray:
        """
        One telemetry channel as a float array, by schema column name
        (``maxAltitude``) or record attribute (``max_altitude``).
        """
        if name in self.schema.columns:
            name = self.schema.fields[self.schema.columns.index(name)]
        elif name not in self.schema.fields:
            raise KeyError(f"{name!r} is not a {self.schema.name} telemetry column")
        return np.fromiter((getattr(r, name) for r in self._records), dtype=float, count=len(self._records))

    # ---------------------------------------- #

    def export_csv(self) -> str:
        return export.to_csv(self._records, self._events, self.schema)

    def export_json(self, export_time: datetime | None = None) -> str:
        return export.to_json(self._records, self._events, export_time)
