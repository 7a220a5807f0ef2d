from __future__ import annotations

import codecs
import logging
import time
from typing import Callable

import serial
import serial.tools.list_ports

from rocketdeck.config import SerialConfig
from rocketdeck.errors import CommandWriteError, NotConnectedError, TelemetryDecodeError, TransportError
from rocketdeck.telemetry import protocol
from rocketdeck.telemetry.events import DecodeErrorEvent, TelemetryEvent, TelemetryStreamEvent, TextMessageEvent
from rocketdeck.telemetry.types import ConnectionStatus, FrameKind, TelemetrySchema

logger = logging.getLogger(__name__)

_BRIDGE_KEYWORDS = (
    "esp32",
    "espressif",
    "arduino",
    "silicon labs",
    "cp210",
    "ch340",
    "wch",
    "ftdi",
    "usb serial",
)


def _looks_like_bridge(description: str) -> bool:
    d = (description or "").lower()
    return any(k in d for k in _BRIDGE_KEYWORDS)


# ---------------------------------------- #


def list_serial_ports() -> list[tuple[str, str]]:
    """Return available ports as (device, description), USB-serial bridges first."""
    ports: list[tuple[str, str]] = []
    for p in serial.tools.list_ports.comports():
        device = getattr(p, "device", "") or ""
        desc = getattr(p, "description", "") or ""
        if device:
            ports.append((device, desc or "(unknown)"))

    ports.sort(key=lambda x: (not _looks_like_bridge(x[1]), x[0]))
    return ports


# ---------------------------------------- #


class SerialTransport:
    """
    Newline-framed telemetry link over a serial port.

    Owns the port handle and the partial-frame buffer. ``read_events`` pulls
    one chunk and returns whatever complete frames it produced, already
    classified and decoded.
    """

    def __init__(
        self,
        schema: TelemetrySchema,
        config: SerialConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.schema = schema
        self.config = config or SerialConfig()
        self._sleep = sleep
        self._clock = clock

        self._ser: serial.SerialBase | None = None
        self._rx_buf = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._status = ConnectionStatus.DISCONNECTED

        self.frames_received = 0
        self.decode_errors = 0

    # ---------------------------------------- #
    #  Connection                              #
    # ---------------------------------------- #

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._ser is not None and self._ser.is_open

    @property
    def port_name(self) -> str:
        if self._ser is None:
            return ""
        return str(self._ser.port or "")

    # ---------------------------------------- #

    def open(self, port: str | serial.SerialBase) -> None:
        """
        Open ``port`` (a device path, a pyserial URL, or an unopened
        ``serial.Serial``) and configure it. A no-op when already open.
        """
        if self.is_open:
            return

        self._status = ConnectionStatus.CONNECTING
        name = port if isinstance(port, str) else str(port.port)
        ser: serial.SerialBase | None = None
        opened_here = False
        try:
            if isinstance(port, str):
                ser = serial.serial_for_url(port, do_not_open=True)
            else:
                ser = port
            ser.baudrate = self.config.baud
            ser.bytesize = self.config.bytesize
            ser.parity = self.config.parity
            ser.stopbits = self.config.stopbits
            ser.timeout = self.config.read_timeout_s
            if not ser.is_open:
                ser.open()
                opened_here = True

            # Drain any partial frame left from before we attached
            ser.reset_input_buffer()
        except (serial.SerialException, OSError, ValueError) as exc:
            if opened_here and ser is not None:
                ser.close()
            self._status = ConnectionStatus.ERROR
            raise TransportError(f"Failed to open {name}: {exc}") from exc

        self._ser = ser
        self._reset_buffer()
        self._status = ConnectionStatus.CONNECTED
        logger.info("Serial port %s open at %d baud", name, self.config.baud)

    # ---------------------------------------- #

    def close(self) -> None:
        """Cancel any pending read and close the port. Safe to call twice."""
        ser = self._ser
        self._ser = None
        self._reset_buffer()
        if ser is None:
            self._status = ConnectionStatus.DISCONNECTED
            return

        cancel_read = getattr(ser, "cancel_read", None)
        try:
            if cancel_read is not None and ser.is_open:
                cancel_read()
            ser.close()
        except (serial.SerialException, OSError) as exc:
            logger.warning("Error while closing %s: %s", ser.port, exc)
        finally:
            self._status = ConnectionStatus.DISCONNECTED
        logger.info("Serial port %s closed", ser.port)

    def __enter__(self) -> SerialTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---------------------------------------- #

    def _reset_buffer(self) -> None:
        self._rx_buf = ""
        self._decoder.reset()

    def _require_open(self) -> serial.SerialBase:
        if self._ser is None or not self._ser.is_open:
            raise NotConnectedError("Not connected to serial port")
        return self._ser

    # ---------------------------------------- #
    #  Reading                                 #
    # ---------------------------------------- #

    def read_events(self) -> list[TelemetryStreamEvent]:
        """
        Read one chunk (waiting at most the configured timeout) and return the
        events for every frame it completed.

        Raises TransportError on an I/O failure; the status is then ERROR. If
        the port was closed underneath us the status becomes DISCONNECTED and
        an empty list is returned.
        """
        ser = self._require_open()
        try:
            chunk = ser.read(ser.in_waiting or 1)
        except (serial.SerialException, OSError) as exc:
            self._status = ConnectionStatus.ERROR
            raise TransportError(f"Telemetry read error: {exc}") from exc

        if not chunk:
            if not ser.is_open:
                self._status = ConnectionStatus.DISCONNECTED
            return []

        text = self._decoder.decode(chunk)
        frames, self._rx_buf = protocol.split_frames(self._rx_buf, text)
        return [self._route(line) for line in frames]

    # ---------------------------------------- #

    def _route(self, line: str) -> TelemetryStreamEvent:
        self.frames_received += 1

        if protocol.classify(line) is FrameKind.TEXT:
            return TextMessageEvent(protocol.text_event(line, int(self._clock() * 1000)), raw=line)

        try:
            record = protocol.decode_telemetry(line, self.schema)
        except TelemetryDecodeError as exc:
            # One bad frame never stops the stream.
            self.decode_errors += 1
            logger.debug("Dropping frame: %s", exc)
            return DecodeErrorEvent(exc, raw=line)

        return TelemetryEvent(record, raw=line)

    # ---------------------------------------- #
    #  Writing                                 #
    # ---------------------------------------- #

    def write(self, command: str, repeat_count: int = 1, interval_ms: int = 100) -> int:
        """
        Send ``command`` + newline ``repeat_count`` times, pausing
        ``interval_ms`` between sends (not after the last). Returns the number
        of sends.
        """
        if not 1 <= repeat_count <= protocol.MAX_COMMAND_REPEAT:
            raise ValueError(f"repeat_count must be between 1 and {protocol.MAX_COMMAND_REPEAT}")
        if interval_ms < protocol.MIN_COMMAND_INTERVAL_MS:
            raise ValueError(f"interval_ms must be at least {protocol.MIN_COMMAND_INTERVAL_MS}")

        payload = protocol.encode_command(command)
        ser = self._require_open()

        for i in range(repeat_count):
            try:
                ser.write(payload)
                ser.flush()
            except (serial.SerialException, OSError) as exc:
                raise CommandWriteError(f"Failed to send {command!r}: {exc}") from exc
            if i < repeat_count - 1:
                self._sleep(interval_ms / 1000.0)

        logger.info("Sent %dx %r", repeat_count, command.strip())
        return repeat_count
