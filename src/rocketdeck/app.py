# rocketdeck/app.py

from __future__ import annotations

import argparse
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

from PySide6 import QtCore

from rocketdeck.config import CONFIG_FILENAME, StationConfig, load_config
from rocketdeck.errors import ConfigError
from rocketdeck.flight.tracker import FlightPhase
from rocketdeck.station import NOTIFY_ERROR, GroundStation
from rocketdeck.telemetry.reader import list_serial_ports
from rocketdeck.telemetry.types import SCHEMAS, ConnectionStatus, TelemetryRecord
from rocketdeck.util.time import format_flight_time

logger = logging.getLogger("rocketdeck")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rocketdeck", description="Hobby rocket ground station")
    parser.add_argument("--port", help="Serial device or pyserial URL (overrides config)")
    parser.add_argument("--baud", type=int, help="Baud rate (overrides config)")
    parser.add_argument("--schema", type=int, choices=sorted(SCHEMAS), help="Telemetry schema version")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path.cwd() / CONFIG_FILENAME,
        help=f"Path to config file (default: ./{CONFIG_FILENAME})",
    )
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=Path.cwd() / "exports",
        help="Where CSV/JSON exports are written on exit",
    )
    parser.add_argument("--no-voice", action="store_true", help="Disable voice announcements")
    parser.add_argument("--list-ports", action="store_true", help="List serial ports and exit")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


# ---------------------------------------- #


def _apply_overrides(config: StationConfig, args: argparse.Namespace) -> StationConfig:
    serial_cfg = config.serial
    if args.port:
        serial_cfg = replace(serial_cfg, port=args.port)
    if args.baud:
        serial_cfg = replace(serial_cfg, baud=args.baud)

    config = replace(config, serial=serial_cfg)
    if args.schema is not None:
        config = replace(config, schema_version=args.schema)
    if args.no_voice:
        config = replace(config, voice=replace(config.voice, enabled=False))
    return config


# ---------------------------------------- #


def _on_notify(level: str, message: str) -> None:
    if level == NOTIFY_ERROR:
        logger.error(message)
    else:
        logger.info(message)


def _on_telemetry(record: TelemetryRecord) -> None:
    logger.debug(
        "T+%s alt=%.1f m max=%.1f m %.2f V flags=%s",
        format_flight_time(record.time),
        record.altitude,
        record.max_altitude,
        record.voltage,
        ",".join(record.flags.active()) or "-",
    )


# ---------------------------------------- #


def _export_on_exit(station: GroundStation, out_dir: Path) -> None:
    if not len(station.history):
        logger.info("No telemetry recorded; nothing to export")
        return
    station.export("csv", out_dir)
    station.export("json", out_dir)


# ---------------------------------------- #


def _init_speech(volume: float):
    # QtTextToSpeech pulls in audio backend libraries (runtime import)
    try:
        from rocketdeck.voice.engine import QtSpeechEngine
    except ImportError as exc:
        logger.warning("Text-to-speech unavailable (%s); voice alerts disabled", exc)
        return None

    return QtSpeechEngine.create(volume)


# ---------------------------------------- #


def main(argv: list[str] | None = None) -> int:
    """
    Headless ground station.

    Responsibilities:
    - Load config and apply command-line overrides
    - Open the serial port and run the read loop on a Qt event loop
    - Speak flight announcements
    - Export the session on exit
    """
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.list_ports:
        for device, desc in list_serial_ports():
            print(f"{device}\t{desc}")
        return 0

    try:
        config = _apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if not config.serial.port:
        logger.error("No serial port given (use --port or [serial].port in %s)", CONFIG_FILENAME)
        return 2

    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])
    app.setApplicationName("RocketDeck")

    speech = _init_speech(config.voice.volume) if config.voice.enabled else None
    station = GroundStation(config, speech)
    station.notify.connect(_on_notify)
    station.telemetry.connect(_on_telemetry)
    station.phase_changed.connect(lambda phase: logger.info("Flight phase: %s", FlightPhase(phase).name))

    def on_status(status: ConnectionStatus) -> None:
        if status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
            app.quit()

    station.status_changed.connect(on_status)
    app.aboutToQuit.connect(station.shutdown)

    # The read loop hands control back to Python on every tick, so Ctrl+C is
    # serviced promptly.
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    if not station.connect_port(config.serial.port):
        return 1

    app.exec()
    station.shutdown()
    _export_on_exit(station, args.export_dir)

    return 1 if station.status is ConnectionStatus.ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
