from __future__ import annotations

import math
import re
import time
from typing import Final

from rocketdeck.errors import DecodeFailure, TelemetryDecodeError
from rocketdeck.telemetry.types import (
    INTEGER_FIELDS,
    EventKind,
    FrameKind,
    StatusFlags,
    TelemetryRecord,
    TelemetrySchema,
    TextEvent,
)

FRAME_DELIMITER: Final[str] = "\n"
FIELD_SEPARATOR: Final[str] = ","

MAX_COMMAND_REPEAT: Final[int] = 50
MIN_COMMAND_INTERVAL_MS: Final[int] = 1

_ALPHA = re.compile(r"[A-Za-z]")
_NUMBER = re.compile(r"(\d+\.?\d*)")


# ---------------------------------------- #
#  Framing                                 #
# ---------------------------------------- #


def split_frames(buffer: str, chunk: str) -> tuple[list[str], str]:
    """
    Append ``chunk`` to ``buffer`` and cut out every complete line.

    Returns the complete frames in arrival order and the trailing fragment,
    which the caller keeps as its new buffer. Blank lines are skipped.
    """
    lines = (buffer + chunk).split(FRAME_DELIMITER)
    remainder = lines.pop()

    frames: list[str] = []
    for line in lines:
        line = line.strip()
        if line:
            frames.append(line)
    return frames, remainder


# ---------------------------------------- #


def classify(line: str) -> FrameKind:
    """
    Telemetry and text share the stream without a type tag.

    Text is a line with letters and no comma. Everything else is routed to
    the telemetry decoder, so mixed lines such as ``abc,def`` surface as
    decode failures rather than flight log entries.
    """
    if _ALPHA.search(line) and FIELD_SEPARATOR not in line:
        return FrameKind.TEXT
    return FrameKind.TELEMETRY


# ---------------------------------------- #
#  Telemetry                               #
# ---------------------------------------- #


def _parse_number(raw: str, integer: bool) -> int | float:
    # int() and float() accept digit separators; the wire never sends them
    if "_" in raw:
        raise ValueError(f"digit separator in {raw!r}")

    if integer:
        return int(raw)

    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"non-finite value {raw!r}")
    return value


def decode_telemetry(line: str, schema: TelemetrySchema) -> TelemetryRecord:
    values = [v.strip() for v in line.strip().split(FIELD_SEPARATOR)]
    if len(values) != schema.field_count:
        raise TelemetryDecodeError(
            DecodeFailure.FIELD_COUNT_MISMATCH,
            line,
            f"got {len(values)} fields, expected {schema.field_count}",
        )

    kwargs: dict[str, int | float] = {}
    for field, raw in zip(schema.fields, values):
        try:
            kwargs[field] = _parse_number(raw, field in INTEGER_FIELDS)
        except ValueError:
            raise TelemetryDecodeError(
                DecodeFailure.NUMERIC_PARSE_FAILURE, line, f"{field}={raw!r}"
            ) from None

    return TelemetryRecord(schema_version=schema.version, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------- #


def format_record(record: TelemetryRecord, schema: TelemetrySchema) -> str:
    """Serialize a record back to one CSV row in schema column order."""
    return FIELD_SEPARATOR.join(str(getattr(record, f)) for f in schema.fields)


# ---------------------------------------- #


def decode_status_flags(mask: int, schema: TelemetrySchema) -> StatusFlags:
    return StatusFlags.from_mask(mask, schema.status_bits)


# ---------------------------------------- #
#  Text events                             #
# ---------------------------------------- #


def classify_event(text: str) -> EventKind:
    t = text.lower()
    # Parachute outranks servo, servo outranks apogee
    if "parachute" in t:
        return EventKind.PARACHUTE
    if "servo" in t:
        return EventKind.SERVO
    if "apogee" in t:
        return EventKind.APOGEE
    return EventKind.MESSAGE


def text_event(text: str, timestamp_ms: int | None = None) -> TextEvent:
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    return TextEvent(text=text, timestamp=timestamp_ms, kind=classify_event(text))


def first_number(text: str) -> str | None:
    m = _NUMBER.search(text)
    return m.group(1) if m else None


# ---------------------------------------- #
#  Commands                                #
# ---------------------------------------- #


def encode_command(command: str) -> bytes:
    command = command.strip()
    if not command:
        raise ValueError("command cannot be empty")
    if "\n" in command or "\r" in command:
        raise ValueError("command cannot contain line breaks")
    return (command + FRAME_DELIMITER).encode("ascii")


# ---------------------------------------- #


def now_ms() -> int:
    return int(time.time() * 1000)
