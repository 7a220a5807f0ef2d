from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Final


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class FrameKind(Enum):
    TELEMETRY = "telemetry"
    TEXT = "text"


class EventKind(str, Enum):
    APOGEE = "APOGEE_DETECTED"
    PARACHUTE = "PARACHUTE_EVENT"
    SERVO = "SERVO_ACTION"
    EMERGENCY_DEPLOY = "EMERGENCY_DEPLOY"
    MESSAGE = "TEXT_MESSAGE"


# ---------------------------------------- #
#  Status bit tables                       #
# ---------------------------------------- #


class LegacyStatusBits(IntFlag):
    """Bit table used by the 9-field (3-axis accelerometer) firmware."""

    PARACHUTE_DEPLOYED = 1 << 0
    LAUNCH_DETECTED = 1 << 1
    LOW_VOLTAGE = 1 << 2
    CRITICAL_ERROR = 1 << 7


class OrientationStatusBits(IntFlag):
    """Bit table used by the 10-field (Y-axis + orientation angles) firmware."""

    EEPROM_ENABLED = 1 << 0
    BMP180_OK = 1 << 1
    MPU6050_OK = 1 << 2
    SERVO_OPEN = 1 << 3
    CALIB_DONE = 1 << 4
    SYSTEM_READY = 1 << 5
    LAUNCH_DETECTED = 1 << 6
    HATCH_OPEN = 1 << 7
    PARACHUTE_DEPLOYED = 1 << 8


@dataclass(frozen=True)
class StatusFlags:
    """
    Named view of a status bitmask for one bit table.

    Only bits the table names are kept; reserved bits are dropped so that two
    masks that differ in reserved bits only compare equal.
    """

    mask: int
    table: type[IntFlag]

    @classmethod
    def from_mask(cls, mask: int, table: type[IntFlag]) -> StatusFlags:
        known = 0
        for bit in table:
            known |= bit.value
        return cls(mask=int(mask) & known, table=table)

    def __getitem__(self, name: str) -> bool:
        bit = self.table[name.upper()]
        return bool(self.mask & bit.value)

    def get(self, name: str, default: bool = False) -> bool:
        try:
            return self[name]
        except KeyError:
            return default

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(bit.name.lower() for bit in self.table)  # type: ignore[union-attr]

    def as_dict(self) -> dict[str, bool]:
        return {name: self[name] for name in self.names}

    def active(self) -> list[str]:
        return [name for name in self.names if self[name]]

    @property
    def parachute_deployed(self) -> bool:
        return self.get("parachute_deployed")

    @property
    def launch_detected(self) -> bool:
        return self.get("launch_detected")


# ---------------------------------------- #
#  Schemas                                 #
# ---------------------------------------- #


@dataclass(frozen=True)
class TelemetrySchema:
    version: int
    name: str
    columns: tuple[str, ...]  # wire / export column names, in order
    fields: tuple[str, ...]  # TelemetryRecord attribute for each column
    status_bits: type[IntFlag]

    @property
    def field_count(self) -> int:
        return len(self.columns)


INTEGER_FIELDS: Final[frozenset[str]] = frozenset({"time", "status_flags"})

LEGACY_SCHEMA: Final[TelemetrySchema] = TelemetrySchema(
    version=1,
    name="legacy",
    columns=(
        "time",
        "altitude",
        "maxAltitude",
        "temperature",
        "voltage",
        "accelX",
        "accelY",
        "accelZ",
        "statusFlags",
    ),
    fields=(
        "time",
        "altitude",
        "max_altitude",
        "temperature",
        "voltage",
        "accel_x",
        "accel_y",
        "accel_z",
        "status_flags",
    ),
    status_bits=LegacyStatusBits,
)

ORIENTATION_SCHEMA: Final[TelemetrySchema] = TelemetrySchema(
    version=2,
    name="orientation",
    columns=(
        "time",
        "altitude",
        "maxAltitude",
        "temperature",
        "voltage",
        "accelY",
        "angleX",
        "angleY",
        "angleZ",
        "statusFlags",
    ),
    fields=(
        "time",
        "altitude",
        "max_altitude",
        "temperature",
        "voltage",
        "accel_y",
        "angle_x",
        "angle_y",
        "angle_z",
        "status_flags",
    ),
    status_bits=OrientationStatusBits,
)

SCHEMAS: Final[dict[int, TelemetrySchema]] = {
    LEGACY_SCHEMA.version: LEGACY_SCHEMA,
    ORIENTATION_SCHEMA.version: ORIENTATION_SCHEMA,
}

DEFAULT_SCHEMA_VERSION: Final[int] = ORIENTATION_SCHEMA.version


def get_schema(version: int) -> TelemetrySchema:
    try:
        return SCHEMAS[version]
    except KeyError:
        raise ValueError(f"Unknown telemetry schema version: {version}") from None


# ---------------------------------------- #
#  Records                                 #
# ---------------------------------------- #


@dataclass(frozen=True)
class TelemetryRecord:
    """
    One decoded telemetry frame.

    Units: time in ms since device boot, altitude in m, temperature in C,
    voltage in V, acceleration in g, angles in degrees. Fields the active
    schema does not carry are None.
    """

    time: int
    altitude: float
    max_altitude: float
    temperature: float
    voltage: float
    status_flags: int
    accel_x: float | None = None
    accel_y: float | None = None
    accel_z: float | None = None
    angle_x: float | None = None
    angle_y: float | None = None
    angle_z: float | None = None
    schema_version: int = DEFAULT_SCHEMA_VERSION

    @property
    def acceleration(self) -> float:
        """Single-axis reading, or the vector magnitude for 3-axis schemas."""
        axes = [a for a in (self.accel_x, self.accel_y, self.accel_z) if a is not None]
        if not axes:
            return 0.0
        if len(axes) == 1:
            return axes[0]
        return math.sqrt(sum(a * a for a in axes))

    @property
    def flags(self) -> StatusFlags:
        # Decoded on every access, never cached.
        return StatusFlags.from_mask(
            self.status_flags, get_schema(self.schema_version).status_bits
        )

    def as_dict(self) -> dict[str, int | float]:
        """Record values keyed by schema column name, in column order."""
        schema = get_schema(self.schema_version)
        return {col: getattr(self, f) for col, f in zip(schema.columns, schema.fields)}


@dataclass(frozen=True)
class TextEvent:
    text: str
    timestamp: int  # wall-clock ms
    kind: EventKind = EventKind.MESSAGE

    def as_dict(self) -> dict[str, str | int]:
        return {"text": self.text, "timestamp": self.timestamp, "kind": self.kind.value}
