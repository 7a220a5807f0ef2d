from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final

import serial

from rocketdeck.errors import ConfigError
from rocketdeck.telemetry.protocol import MAX_COMMAND_REPEAT, MIN_COMMAND_INTERVAL_MS
from rocketdeck.telemetry.types import DEFAULT_SCHEMA_VERSION, SCHEMAS

CONFIG_FILENAME: Final[str] = "rocketdeck.toml"


@dataclass(frozen=True)
class SerialConfig:
    port: str | None = None
    baud: int = 115200
    bytesize: int = serial.EIGHTBITS
    parity: str = serial.PARITY_NONE
    stopbits: float = serial.STOPBITS_ONE
    read_timeout_s: float = 0.05


@dataclass(frozen=True)
class VoiceConfig:
    enabled: bool = True
    volume: float = 0.8


@dataclass(frozen=True)
class CommandButton:
    title: str
    command: str
    count: int = 1
    interval_ms: int = 100

    def __post_init__(self) -> None:
        if not self.title.strip():
            raise ConfigError("Button title cannot be empty")
        if not self.command.strip():
            raise ConfigError("Command cannot be empty")
        if not 1 <= self.count <= MAX_COMMAND_REPEAT:
            raise ConfigError(f"Number of commands must be between 1 and {MAX_COMMAND_REPEAT}")
        if self.interval_ms < MIN_COMMAND_INTERVAL_MS:
            raise ConfigError(f"Interval must be at least {MIN_COMMAND_INTERVAL_MS}ms")


DEFAULT_COMMANDS: Final[tuple[CommandButton, ...]] = (
    CommandButton(title="DEPLOY", command="DEPLOY"),
    CommandButton(title="ABORT", command="ABORT"),
)


@dataclass(frozen=True)
class StationConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    schema_version: int = DEFAULT_SCHEMA_VERSION
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    commands: tuple[CommandButton, ...] = DEFAULT_COMMANDS


# ---------------------------------------- #


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    table = data.get(name, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{name}] must be a table")
    return table


def _typed(table: dict[str, Any], section: str, key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    value = table.get(key, default)
    # bool is an int subclass; keep them apart
    if isinstance(value, bool) and kind in (int, float, (int, float)):
        raise ConfigError(f"[{section}].{key} must be a number")
    if value is not None and not isinstance(value, kind):
        raise ConfigError(f"[{section}].{key} has the wrong type")
    return value


# ---------------------------------------- #


def _load_serial(data: dict[str, Any]) -> SerialConfig:
    table = _table(data, "serial")
    defaults = SerialConfig()
    port = _typed(table, "serial", "port", str, defaults.port)
    baud = _typed(table, "serial", "baud", int, defaults.baud)
    if baud <= 0:
        raise ConfigError("[serial].baud must be positive")
    return replace(defaults, port=port, baud=baud)


def _load_voice(data: dict[str, Any]) -> VoiceConfig:
    table = _table(data, "voice")
    enabled = _typed(table, "voice", "enabled", bool, True)
    volume = float(_typed(table, "voice", "volume", (int, float), 0.8))
    if not 0.0 <= volume <= 1.0:
        raise ConfigError("[voice].volume must be between 0 and 1")
    return VoiceConfig(enabled=enabled, volume=volume)


def _load_commands(data: dict[str, Any]) -> tuple[CommandButton, ...]:
    entries = data.get("commands")
    if entries is None:
        return DEFAULT_COMMANDS
    if not isinstance(entries, list):
        raise ConfigError("[[commands]] must be an array of tables")

    buttons: list[CommandButton] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError("[[commands]] entries must be tables")
        command = _typed(entry, "commands", "command", str, "")
        buttons.append(
            CommandButton(
                title=_typed(entry, "commands", "title", str, command),
                command=command,
                count=_typed(entry, "commands", "count", int, 1),
                interval_ms=_typed(entry, "commands", "interval_ms", int, 100),
            )
        )
    return tuple(buttons)


# ---------------------------------------- #


def load_config(path: Path | None = None) -> StationConfig:
    """
    Read ``rocketdeck.toml``.

    A missing file yields the defaults. Present but invalid values raise
    ConfigError rather than being silently replaced.
    """
    if path is None:
        path = Path.cwd() / CONFIG_FILENAME

    try:
        data: Any = tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return StationConfig()
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc

    telemetry = _table(data, "telemetry")
    schema_version = _typed(telemetry, "telemetry", "schema", int, DEFAULT_SCHEMA_VERSION)
    if schema_version not in SCHEMAS:
        raise ConfigError(f"[telemetry].schema must be one of {sorted(SCHEMAS)}")

    return StationConfig(
        serial=_load_serial(data),
        schema_version=schema_version,
        voice=_load_voice(data),
        commands=_load_commands(data),
    )
