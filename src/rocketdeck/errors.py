from __future__ import annotations

from enum import Enum


class RocketDeckError(Exception):
    """Base class for ground station errors."""


# ---------------------------------------- #


class DecodeFailure(str, Enum):
    FIELD_COUNT_MISMATCH = "field_count_mismatch"
    NUMERIC_PARSE_FAILURE = "numeric_parse_failure"


class TelemetryDecodeError(RocketDeckError, ValueError):
    def __init__(self, reason: DecodeFailure, line: str, detail: str = "") -> None:
        self.reason = reason
        self.line = line
        self.detail = detail
        msg = f"{reason.value}: {line!r}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


# ---------------------------------------- #


class TransportError(RocketDeckError):
    """Serial port could not be opened, or failed mid-stream."""


class NotConnectedError(TransportError):
    pass


class CommandWriteError(TransportError):
    """A command write failed; the read path is unaffected."""


# ---------------------------------------- #


class NoTelemetryDataError(RocketDeckError):
    """Raised by the exporters when no telemetry has been recorded."""

    def __init__(self) -> None:
        super().__init__("No data to export")


class ConfigError(RocketDeckError, ValueError):
    pass
