from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Final

from PySide6 import QtCore
from PySide6.QtTextToSpeech import QTextToSpeech, QVoice

logger = logging.getLogger(__name__)

# An utterance that never reports back is given up after this long.
WATCHDOG_MIN_MS: Final[int] = 3000
WATCHDOG_MS_PER_CHAR: Final[int] = 150


class QtSpeechEngine(QtCore.QObject):
    """
    SpeechEngine backed by QTextToSpeech.

    ``speak`` returns a future that resolves when the engine drops back to
    Ready (or Error) after the utterance started. A backend that is already
    in Error resolves it at once; one that never reports back is cut off by
    a watchdog timer.
    """

    def __init__(
        self,
        volume: float = 0.8,
        rate: float = -0.1,
        pitch: float = 0.1,
        parent=None,
        tts: QtCore.QObject | None = None,
    ):
        super().__init__(parent)
        if tts is None:
            tts = QTextToSpeech(self)
            tts.setVolume(volume)
            tts.setRate(rate)
            tts.setPitch(pitch)
        self._tts = tts
        if isinstance(tts, QTextToSpeech):
            self._select_voice()

        self.watchdog_min_ms = WATCHDOG_MIN_MS
        self.watchdog_ms_per_char = WATCHDOG_MS_PER_CHAR

        self._pending: Future[None] | None = None
        self._started = False
        self._tts.stateChanged.connect(self._on_state_changed)

    # ---------------------------------------- #

    @classmethod
    def create(cls, volume: float = 0.8, parent=None) -> QtSpeechEngine | None:
        """Return an engine, or None if the platform has no working TTS backend."""
        if not QTextToSpeech.availableEngines():
            logger.info("No text-to-speech engine available; voice alerts disabled")
            return None

        engine = cls(volume=volume, parent=parent)
        if engine._tts.state() == QTextToSpeech.State.Error:
            logger.warning("Text-to-speech engine failed to start: %s", engine._tts.errorString())
            engine.deleteLater()
            return None
        return engine

    # ---------------------------------------- #

    def _select_voice(self) -> None:
        for locale in self._tts.availableLocales():
            if locale.name() == "en_US":
                self._tts.setLocale(locale)
                break

        voices = self._tts.availableVoices()
        female = [v for v in voices if v.gender() == QVoice.Gender.Female]
        if female:
            self._tts.setVoice(female[0])

    # ---------------------------------------- #

    def speak(self, text: str) -> Future[None]:
        future: Future[None] = Future()
        future.set_running_or_notify_cancel()

        if self._pending is not None:
            # Callers are expected to serialize; never leave a waiter hanging.
            self._resolve()
        self._pending = future
        self._started = False

        self._tts.say(text)

        # say() on a backend stuck in Error fails again without a state change
        if self._pending is future and self._tts.state() == QTextToSpeech.State.Error:
            logger.warning("Text-to-speech error: %s", self._tts.errorString())
            self._resolve()
            return future

        timeout_ms = max(self.watchdog_min_ms, self.watchdog_ms_per_char * len(text))
        QtCore.QTimer.singleShot(timeout_ms, lambda: self._on_watchdog(future))
        return future

    # ---------------------------------------- #

    def _resolve(self) -> None:
        future, self._pending = self._pending, None
        if future is not None and not future.done():
            future.set_result(None)

    def _on_watchdog(self, future: Future[None]) -> None:
        if self._pending is future:
            logger.warning("Text-to-speech did not report completion; moving on")
            self._resolve()

    # ---------------------------------------- #

    def _on_state_changed(self, state: QTextToSpeech.State) -> None:
        if state == QTextToSpeech.State.Speaking:
            self._started = True
            return

        if self._pending is None:
            return

        if state == QTextToSpeech.State.Error or (state == QTextToSpeech.State.Ready and self._started):
            if state == QTextToSpeech.State.Error:
                logger.warning("Text-to-speech error: %s", self._tts.errorString())
            self._resolve()
