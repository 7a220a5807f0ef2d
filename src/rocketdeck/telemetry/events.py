from __future__ import annotations

from dataclasses import dataclass

from rocketdeck.errors import TelemetryDecodeError
from rocketdeck.telemetry.types import TelemetryRecord, TextEvent


@dataclass(frozen=True)
class TelemetryEvent:
    record: TelemetryRecord
    raw: str


@dataclass(frozen=True)
class TextMessageEvent:
    event: TextEvent
    raw: str


@dataclass(frozen=True)
class DecodeErrorEvent:
    error: TelemetryDecodeError
    raw: str


TelemetryStreamEvent = TelemetryEvent | TextMessageEvent | DecodeErrorEvent
