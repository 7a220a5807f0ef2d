from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future
from enum import Enum
from typing import Protocol

from PySide6 import QtCore

logger = logging.getLogger(__name__)


class SpeechEngine(Protocol):
    def speak(self, text: str) -> Future[None]:
        """Start speaking ``text``; the future resolves when the utterance ends."""
        ...


class FlightAnnouncement(Enum):
    PARACHUTE_DEPLOYED = "parachute_deployed"
    MAX_ALTITUDE = "max_altitude"
    APOGEE = "apogee"
    SERVO_DONE = "servo_done"


# ---------------------------------------- #


class AnnouncementSequencer(QtCore.QObject):
    """
    Single-consumer queue in front of a single-voice speech engine.

    Starting an utterance while another is playing would cut it off, so only
    one is ever handed to the engine; the next is submitted when the engine
    reports the previous one finished (or failed). Latches keep each flight
    event to one announcement per flight.
    """

    started = QtCore.Signal(str)
    finished = QtCore.Signal(str)

    # Completion may be reported from an engine thread; the signal hop brings
    # it back to this object's thread.
    _utterance_done = QtCore.Signal()

    def __init__(self, engine: SpeechEngine | None = None, parent=None):
        super().__init__(parent)
        self._engine = engine
        self._queue: deque[str] = deque()
        self._busy = False
        self._current: str | None = None
        self._latches: set[FlightAnnouncement] = set()
        self.enabled = True

        self._utterance_done.connect(self._on_utterance_done)

    # ---------------------------------------- #

    @property
    def available(self) -> bool:
        return self.enabled and self._engine is not None

    @property
    def is_speaking(self) -> bool:
        return self._busy

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._queue)

    def set_engine(self, engine: SpeechEngine | None) -> None:
        self._engine = engine

    def is_latched(self, event: FlightAnnouncement) -> bool:
        return event in self._latches

    # ---------------------------------------- #

    def enqueue(self, text: str) -> bool:
        """Queue ``text``. Returns False (and drops it) when speech is unavailable."""
        if not self.available:
            return False
        self._queue.append(text)
        self._drain()
        return True

    def announce_once(self, event: FlightAnnouncement, text: str) -> bool:
        """
        Queue ``text`` unless ``event`` was already seen this flight.

        Returns True on the first observation, whether or not speech is
        available; the latch is set either way.
        """
        if event in self._latches:
            return False
        self._latches.add(event)
        logger.info("Announcing %s: %s", event.value, text)
        self.enqueue(text)
        return True

    def reset(self) -> None:
        """Drop pending utterances and release all latches."""
        self._queue.clear()
        self._latches.clear()

    # ---------------------------------------- #

    def _drain(self) -> None:
        if self._busy or not self._queue or self._engine is None:
            return

        text = self._queue.popleft()
        self._busy = True
        self._current = text
        self.started.emit(text)

        try:
            future = self._engine.speak(text)
        except Exception as e:
            # Speech is best-effort; a broken engine must not stall the queue.
            logger.warning("Speech engine failed on %r: %s", text, e)
            self._on_utterance_done()
            return

        future.add_done_callback(self._on_future_done)

    def _on_future_done(self, future: Future[None]) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Utterance failed: %s", future.exception())
        self._utterance_done.emit()

    @QtCore.Slot()
    def _on_utterance_done(self) -> None:
        text = self._current
        self._current = None
        self._busy = False
        if text is not None:
            self.finished.emit(text)
        self._drain()
