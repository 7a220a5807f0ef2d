from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Final

import serial
from PySide6 import QtCore

from rocketdeck.config import CommandButton, StationConfig
from rocketdeck.errors import NoTelemetryDataError, TransportError
from rocketdeck.flight.tracker import FlightPhase, FlightTracker
from rocketdeck.record.export import ExportFormat, write_export
from rocketdeck.record.history import HistoryStore
from rocketdeck.telemetry import protocol
from rocketdeck.telemetry.events import DecodeErrorEvent, TelemetryEvent, TextMessageEvent
from rocketdeck.telemetry.types import (
    ConnectionStatus,
    EventKind,
    TelemetryRecord,
    TextEvent,
    get_schema,
)
from rocketdeck.telemetry.worker import TelemetryWorker
from rocketdeck.util.time import format_timestamp
from rocketdeck.voice.sequencer import AnnouncementSequencer, FlightAnnouncement, SpeechEngine

logger = logging.getLogger(__name__)

NOTIFY_INFO: Final[str] = "info"
NOTIFY_SUCCESS: Final[str] = "success"
NOTIFY_ERROR: Final[str] = "error"

EMERGENCY_COMMAND: Final[str] = "DEPLOY"
EMERGENCY_REPEAT: Final[int] = 5
EMERGENCY_INTERVAL_MS: Final[int] = 100


class GroundStation(QtCore.QObject):
    """
    Single owner of the session state.

    Each frame from the worker is processed to completion inside one slot
    call: flight tracker, then announcements, then history. A phase change is
    therefore visible before the announcement and history effects of the
    frame that caused it.
    """

    status_changed = QtCore.Signal(object)
    telemetry = QtCore.Signal(object)
    text_event = QtCore.Signal(object)
    phase_changed = QtCore.Signal(object)
    notify = QtCore.Signal(str, str)  # level, message

    def __init__(
        self,
        config: StationConfig | None = None,
        speech: SpeechEngine | None = None,
        clock: Callable[[], float] = time.time,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config or StationConfig()
        self.schema = get_schema(self.config.schema_version)
        self._clock = clock

        self.worker = TelemetryWorker(self.schema, self.config.serial, clock=clock, parent=self)
        self.tracker = FlightTracker(clock)
        self.sequencer = AnnouncementSequencer(speech, parent=self)
        self.sequencer.enabled = self.config.voice.enabled
        self.history = HistoryStore(self.schema)

        self._previous_status = ConnectionStatus.DISCONNECTED

        self.worker.telemetry.connect(self._on_telemetry)
        self.worker.text_message.connect(self._on_text_message)
        self.worker.decode_error.connect(self._on_decode_error)
        self.worker.state.connect(self._on_state)
        self.worker.error.connect(lambda msg: self.notify.emit(NOTIFY_ERROR, msg))
        self.worker.info.connect(lambda msg: self.notify.emit(NOTIFY_INFO, msg))

    # ---------------------------------------- #
    #  Read-only view                          #
    # ---------------------------------------- #

    @property
    def status(self) -> ConnectionStatus:
        return self.worker.status

    @property
    def is_connected(self) -> bool:
        return self.worker.status is ConnectionStatus.CONNECTED

    @property
    def latest(self) -> TelemetryRecord | None:
        return self.history.latest

    @property
    def records(self) -> tuple[TelemetryRecord, ...]:
        return self.history.records

    @property
    def text_events(self) -> tuple[TextEvent, ...]:
        return self.history.events

    @property
    def derived_speed(self) -> float:
        return self.tracker.derived_speed

    @property
    def phase(self) -> FlightPhase:
        return self.tracker.phase

    @property
    def flight_duration(self) -> float:
        return self.tracker.flight_duration

    @property
    def decode_errors(self) -> int:
        return self.worker.transport.decode_errors

    @property
    def commands(self) -> tuple[CommandButton, ...]:
        return self.config.commands

    # ---------------------------------------- #
    #  Connection                              #
    # ---------------------------------------- #

    def connect_port(self, port: str | serial.SerialBase) -> bool:
        if self.worker.transport.is_open:
            return True
        # A new connection is a new session for the flight tracker.
        self.tracker.reset()
        return self.worker.start(port)

    def disconnect(self) -> None:
        self.worker.stop()

    def shutdown(self) -> None:
        self.worker.stop()

    # ---------------------------------------- #

    @QtCore.Slot(object)
    def _on_state(self, status: ConnectionStatus) -> None:
        previous = self._previous_status
        self._previous_status = status

        if status is ConnectionStatus.ERROR:
            if previous is ConnectionStatus.CONNECTING:
                self.sequencer.enqueue("Connection failed")
            else:
                self.sequencer.enqueue("Serial port disconnected")
        elif status is ConnectionStatus.CONNECTED:
            self.notify.emit(NOTIFY_SUCCESS, "Serial port connected successfully!")
            self.sequencer.enqueue("Serial port connected")
        elif status is ConnectionStatus.DISCONNECTED and previous is ConnectionStatus.CONNECTED:
            self.sequencer.enqueue("Serial port disconnected")

        self.status_changed.emit(status)

    # ---------------------------------------- #
    #  Frame processing                        #
    # ---------------------------------------- #

    @QtCore.Slot(object)
    def _on_telemetry(self, evt: TelemetryEvent) -> None:
        record = evt.record

        phase = self.tracker.update(record)
        if phase is not None:
            self.phase_changed.emit(phase)

        if record.flags.parachute_deployed:
            self._on_parachute(record.max_altitude)

        self.history.append_raw(evt.raw)
        self.history.append(record)
        self.telemetry.emit(record)

    # ---------------------------------------- #

    @QtCore.Slot(object)
    def _on_text_message(self, evt: TextMessageEvent) -> None:
        event = evt.event
        self._announce_text(event.text)

        self.history.append_raw(evt.raw)
        self.history.append(event)
        self.text_event.emit(event)
        self.notify.emit(NOTIFY_INFO, f"Flight Event: {event.text}")

    # ---------------------------------------- #

    @QtCore.Slot(object)
    def _on_decode_error(self, evt: DecodeErrorEvent) -> None:
        # Dropped from telemetry, kept verbatim for the operator.
        self.history.append_raw(evt.raw)

    # ---------------------------------------- #
    #  Announcements                           #
    # ---------------------------------------- #

    def _on_parachute(self, max_altitude: float) -> None:
        if not self.sequencer.announce_once(FlightAnnouncement.PARACHUTE_DEPLOYED, "Parachute deployed"):
            return

        # Same detection point, so the report always queues behind the deployment.
        peak = max(max_altitude, self.history.max_altitude)
        self.sequencer.announce_once(FlightAnnouncement.MAX_ALTITUDE, f"Maximum altitude {peak:.0f} meters")

    def _announce_text(self, text: str) -> None:
        t = text.lower()
        if "apogee" in t:
            altitude = protocol.first_number(text) or "unknown"
            self.sequencer.announce_once(FlightAnnouncement.APOGEE, f"Apogee detected at {altitude} meters")
        if "parachute" in t and "deploy" in t:
            latest = self.history.latest
            self._on_parachute(latest.max_altitude if latest is not None else 0.0)
        if "servo" in t and "done" in t:
            self.sequencer.announce_once(FlightAnnouncement.SERVO_DONE, "Servo action completed")

    # ---------------------------------------- #
    #  Commands                                #
    # ---------------------------------------- #

    def send_command(self, command: str, repeat_count: int = 1, interval_ms: int = 100) -> bool:
        if not self.is_connected:
            self.notify.emit(NOTIFY_ERROR, "Not connected to serial port")
            return False

        try:
            self.worker.send_command(command, repeat_count, interval_ms)
        except (TransportError, ValueError) as e:
            logger.warning("Command %r failed: %s", command, e)
            self.notify.emit(NOTIFY_ERROR, f"Failed to send {command!r}: {e}")
            return False

        self.notify.emit(NOTIFY_SUCCESS, f'Sent {repeat_count}x "{command}" command(s)')
        return True

    def press(self, button: CommandButton) -> bool:
        return self.send_command(button.command, button.count, button.interval_ms)

    def emergency_deploy(self) -> bool:
        if not self.send_command(EMERGENCY_COMMAND, EMERGENCY_REPEAT, EMERGENCY_INTERVAL_MS):
            return False

        now = self._clock()
        message = f"EMERGENCY DEPLOY COMMAND SENT ({format_timestamp(now)})"
        event = TextEvent(text=message, timestamp=int(now * 1000), kind=EventKind.EMERGENCY_DEPLOY)
        self.history.append_raw(message)
        self.history.append(event)
        self.text_event.emit(event)
        return True

    # ---------------------------------------- #
    #  Data                                    #
    # ---------------------------------------- #

    def clear(self) -> None:
        """Forget the session: history, flight state and announcement latches."""
        self.history.clear()
        self.tracker.reset()
        self.sequencer.reset()
        logger.info("Session data cleared")

    def export_csv(self) -> str:
        return self.history.export_csv()

    def export_json(self) -> str:
        return self.history.export_json()

    def export(self, fmt: ExportFormat, out_dir: Path) -> Path | None:
        try:
            path = write_export(self.history, fmt, out_dir)
        except NoTelemetryDataError:
            self.notify.emit(NOTIFY_ERROR, "No data to export")
            return None
        except OSError as e:
            logger.error("Export failed: %s", e)
            self.notify.emit(NOTIFY_ERROR, f"Export failed: {e}")
            return None

        logger.info("Exported %d records to %s", len(self.history), path)
        self.notify.emit(NOTIFY_SUCCESS, f"Data exported as {fmt.upper()}")
        return path
