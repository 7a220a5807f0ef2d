from __future__ import annotations

import logging
import time
from enum import IntEnum
from typing import Callable, Final

from rocketdeck.telemetry.types import TelemetryRecord

logger = logging.getLogger(__name__)

# Launch needs a clear climb and a clear jolt; landing needs both to settle.
# The gap between the two pairs keeps the phase from flapping near the ground.
LAUNCH_ALTITUDE_M: Final[float] = 5.0
LAUNCH_ACCEL_DELTA_G: Final[float] = 2.0
LANDED_ALTITUDE_M: Final[float] = 3.0
LANDED_ACCEL_DELTA_G: Final[float] = 0.5


class FlightPhase(IntEnum):
    PRE_FLIGHT = 0
    LAUNCHED = 1
    LANDED = 2


class FlightTracker:
    """
    Infers mission phase from raw telemetry.

    The first record of a session becomes the baseline; launch and landing are
    judged against it. Phases only move forward.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.reset()

    # ---------------------------------------- #

    def reset(self) -> None:
        self.phase = FlightPhase.PRE_FLIGHT
        self.baseline_altitude: float | None = None
        self.baseline_acceleration: float | None = None
        self.derived_speed = 0.0
        self.launch_timestamp: float | None = None
        self.landing_timestamp: float | None = None
        self._previous: TelemetryRecord | None = None

    # ---------------------------------------- #

    @property
    def has_baseline(self) -> bool:
        return self.baseline_altitude is not None

    @property
    def flight_duration(self) -> float:
        """Seconds since launch; frozen once landed."""
        if self.launch_timestamp is None:
            return 0.0
        if self.landing_timestamp is not None:
            return self.landing_timestamp - self.launch_timestamp
        return self._clock() - self.launch_timestamp

    # ---------------------------------------- #

    def update(self, record: TelemetryRecord) -> FlightPhase | None:
        """Fold one record in. Returns the new phase if it changed."""
        previous = self._previous
        self._previous = record

        if self.baseline_altitude is None or self.baseline_acceleration is None:
            self.baseline_altitude = record.altitude
            self.baseline_acceleration = record.acceleration
            logger.info(
                "Baseline captured: %.2f m, %.2f g",
                self.baseline_altitude,
                self.baseline_acceleration,
            )
            return None

        if previous is not None:
            self._update_speed(previous, record)

        accel_delta = abs(record.acceleration - self.baseline_acceleration)

        if self.phase is FlightPhase.PRE_FLIGHT:
            if (
                record.altitude > self.baseline_altitude + LAUNCH_ALTITUDE_M
                and accel_delta > LAUNCH_ACCEL_DELTA_G
            ):
                self.phase = FlightPhase.LAUNCHED
                self.launch_timestamp = self._clock()
                logger.info("Launch detected at %.2f m (t=%d ms)", record.altitude, record.time)
                return self.phase

        elif self.phase is FlightPhase.LAUNCHED:
            if (
                record.altitude <= self.baseline_altitude + LANDED_ALTITUDE_M
                and accel_delta < LANDED_ACCEL_DELTA_G
            ):
                self.phase = FlightPhase.LANDED
                self.landing_timestamp = self._clock()
                logger.info("Landing detected (t=%d ms)", record.time)
                return self.phase

        return None

    # ---------------------------------------- #

    def _update_speed(self, previous: TelemetryRecord, record: TelemetryRecord) -> None:
        dt_s = (record.time - previous.time) / 1000.0
        if dt_s <= 0:
            # Duplicate or out-of-order timestamp; keep the last good value.
            return
        self.derived_speed = abs(record.altitude - previous.altitude) / dt_s
