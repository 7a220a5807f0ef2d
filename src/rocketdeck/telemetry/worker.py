from __future__ import annotations

import logging
import time
from typing import Callable

import serial
from PySide6 import QtCore

from rocketdeck.config import SerialConfig
from rocketdeck.errors import TransportError
from rocketdeck.telemetry.events import DecodeErrorEvent, TelemetryEvent, TextMessageEvent
from rocketdeck.telemetry.reader import SerialTransport, list_serial_ports
from rocketdeck.telemetry.types import ConnectionStatus, TelemetrySchema

logger = logging.getLogger(__name__)


class TelemetryWorker(QtCore.QObject):
    """
    Runs the read loop for one serial session.

    A zero-interval timer calls ``tick`` for as long as the port is open; each
    tick reads one chunk (bounded by the serial timeout) and emits one signal
    per completed frame. There is no automatic reconnect: after an error or
    end of stream the owner must call ``start`` again.
    """

    telemetry = QtCore.Signal(object)
    text_message = QtCore.Signal(object)
    decode_error = QtCore.Signal(object)
    state = QtCore.Signal(object)
    error = QtCore.Signal(str)
    info = QtCore.Signal(str)

    list_ports = staticmethod(list_serial_ports)

    # ---------------------------------------- #

    def __init__(
        self,
        schema: TelemetrySchema,
        config: SerialConfig | None = None,
        poll_interval_ms: int = 0,
        clock: Callable[[], float] = time.time,
        parent=None,
    ):
        super().__init__(parent)

        self._transport = SerialTransport(schema, config, clock=clock)
        self._status = ConnectionStatus.DISCONNECTED

        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(poll_interval_ms)
        self._timer.timeout.connect(self.tick)

    # ---------------------------------------- #

    @property
    def transport(self) -> SerialTransport:
        return self._transport

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._timer.isActive()

    def _set_status(self, status: ConnectionStatus) -> None:
        self._status = status
        logger.info("Connection status: %s", status.value)
        self.state.emit(status)

    # ---------------------------------------- #

    @QtCore.Slot(object)
    def start(self, port: str | serial.SerialBase) -> bool:
        if self._transport.is_open:
            return True

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            self._transport.open(port)
        except TransportError as e:
            logger.error("%s", e)
            self._set_status(ConnectionStatus.ERROR)
            self.error.emit(f"Failed to establish connection: {e}")
            return False

        self._set_status(ConnectionStatus.CONNECTED)
        self.info.emit(f"Telemetry connected: {self._transport.port_name}")
        self._timer.start()
        return True

    # ---------------------------------------- #

    @QtCore.Slot()
    def stop(self) -> None:
        self._timer.stop()
        if not self._transport.is_open:
            return

        self._transport.close()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.info.emit("Disconnected")

    # ---------------------------------------- #

    def _fail(self, reason: str) -> None:
        self._timer.stop()
        self._transport.close()
        logger.error("%s", reason)
        self._set_status(ConnectionStatus.ERROR)
        self.error.emit(reason)

    # ---------------------------------------- #

    def _end_of_stream(self) -> None:
        self._timer.stop()
        self._transport.close()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.info.emit("Telemetry stream ended")

    # ---------------------------------------- #

    @QtCore.Slot()
    def tick(self) -> None:
        if not self._transport.is_open:
            # Port went away between ticks without an I/O error.
            if self._status is ConnectionStatus.CONNECTED:
                self._end_of_stream()
            else:
                self._timer.stop()
            return

        try:
            events = self._transport.read_events()
        except TransportError as e:
            self._fail(f"Connection lost: {e}")
            return

        for evt in events:
            if isinstance(evt, TelemetryEvent):
                self.telemetry.emit(evt)
            elif isinstance(evt, TextMessageEvent):
                self.text_message.emit(evt)
            elif isinstance(evt, DecodeErrorEvent):
                self.decode_error.emit(evt)

        if self._transport.status is ConnectionStatus.DISCONNECTED:
            self._end_of_stream()

    # ---------------------------------------- #

    def send_command(self, command: str, repeat_count: int = 1, interval_ms: int = 100) -> int:
        return self._transport.write(command, repeat_count, interval_ms)
