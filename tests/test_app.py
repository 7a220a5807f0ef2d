from __future__ import annotations

import sys

from rocketdeck import app
from rocketdeck.config import SerialConfig, StationConfig


def test_overrides_replace_config_values(tmp_path):
    args = app._parse_args(["--port", "loop://", "--baud", "9600", "--schema", "1", "--no-voice"])
    config = app._apply_overrides(StationConfig(serial=SerialConfig(port="/dev/ttyUSB0")), args)

    assert config.serial.port == "loop://"
    assert config.serial.baud == 9600
    assert config.schema_version == 1
    assert not config.voice.enabled


def test_no_overrides_keep_config():
    config = StationConfig(serial=SerialConfig(port="/dev/ttyUSB0", baud=57600))
    assert app._apply_overrides(config, app._parse_args([])) == config


def test_list_ports(monkeypatch, capsys):
    monkeypatch.setattr(
        app,
        "list_serial_ports",
        lambda: [("/dev/ttyUSB0", "CP2102 USB to UART Bridge Controller"), ("/dev/ttyS0", "ttyS0")],
    )
    assert app.main(["--list-ports"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out == ["/dev/ttyUSB0\tCP2102 USB to UART Bridge Controller", "/dev/ttyS0\tttyS0"]


def test_missing_port_is_a_usage_error(tmp_path):
    assert app.main(["--config", str(tmp_path / "absent.toml")]) == 2


def test_invalid_config_is_a_usage_error(tmp_path):
    path = tmp_path / "rocketdeck.toml"
    path.write_text("[telemetry]\nschema = 9\n", encoding="utf-8")
    assert app.main(["--config", str(path), "--port", "loop://"]) == 2


# ---------------------------------------- #
#  Speech backend missing                  #
# ---------------------------------------- #


def test_list_ports_without_speech_backend(monkeypatch, capsys):
    monkeypatch.setitem(sys.modules, "rocketdeck.voice.engine", None)
    monkeypatch.setattr(app, "list_serial_ports", lambda: [("/dev/ttyUSB0", "CH340")])

    assert not hasattr(app, "QtSpeechEngine")
    assert app.main(["--no-voice", "--list-ports"]) == 0
    assert capsys.readouterr().out == "/dev/ttyUSB0\tCH340\n"


def test_missing_speech_backend_disables_voice(monkeypatch, caplog):
    monkeypatch.setitem(sys.modules, "rocketdeck.voice.engine", None)

    assert app._init_speech(0.8) is None
    assert "voice alerts disabled" in caplog.text
