from __future__ import annotations

from concurrent.futures import Future

import pytest
import serial
from PySide6 import QtCore

from rocketdeck.config import SerialConfig


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app


# ---------------------------------------- #


class FakeSpeechEngine:
    """Records utterances; the test decides when each one finishes."""

    def __init__(self, auto_finish: bool = False) -> None:
        self.auto_finish = auto_finish
        self.spoken: list[str] = []
        self.futures: list[Future[None]] = []
        self.max_in_flight = 0

    @property
    def in_flight(self) -> int:
        return sum(1 for f in self.futures if not f.done())

    def speak(self, text: str) -> Future[None]:
        future: Future[None] = Future()
        future.set_running_or_notify_cancel()
        self.spoken.append(text)
        self.futures.append(future)
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.auto_finish:
            future.set_result(None)
        return future

    def finish(self, index: int = -1) -> None:
        self.futures[index].set_result(None)

    def finish_all(self) -> None:
        # Finishing one can submit the next, so loop until nothing is pending.
        while self.in_flight:
            for f in list(self.futures):
                if not f.done():
                    f.set_result(None)


@pytest.fixture
def speech() -> FakeSpeechEngine:
    return FakeSpeechEngine()


# ---------------------------------------- #


@pytest.fixture
def serial_config() -> SerialConfig:
    return SerialConfig(read_timeout_s=0.01)


@pytest.fixture
def loop_port():
    """pyserial loopback: whatever is written to it is read back."""
    ser = serial.serial_for_url("loop://", do_not_open=True)
    yield ser
    if ser.is_open:
        ser.close()


def feed(port, text: str) -> None:
    port.write(text.encode("utf-8"))


TELEMETRY_LINE = "1000,12.5,12.5,21.0,3.9,0.1,0,0,0,0"
