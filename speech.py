"""Voice guidance through Qt's text-to-speech engines."""

import time
from collections import deque
from typing import Callable, Optional, Protocol

from logger import LoggableMixin, LogCategory


class Synthesizer(Protocol):
    def speak(self, text: str) -> None: ...
    def cancel(self) -> None: ...


def has_speech_synthesis() -> bool:
    """Whether QtTextToSpeech is installed and offers at least one engine."""
    try:
        from PySide6.QtTextToSpeech import QTextToSpeech
    except ImportError:
        return False
    return bool(QTextToSpeech.availableEngines())


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class QtSpeechSynthesizer(LoggableMixin):
    """Speaks through ``QTextToSpeech``, interrupting any current utterance.

    Rate and pitch use the browser convention where 1.0 is normal; Qt treats
    0.0 as normal on a -1.0..1.0 scale, so both are shifted by one.
    """

    log_category = LogCategory.SPEECH

    def __init__(self, rate: float = 0.9, pitch: float = 1.1, volume: float = 0.8,
                 language_prefix: str = "en"):
        super().__init__()
        from PySide6.QtTextToSpeech import QTextToSpeech
        self._engine = QTextToSpeech()
        self._engine.setRate(_clamp(rate - 1.0, -1.0, 1.0))
        self._engine.setPitch(_clamp(pitch - 1.0, -1.0, 1.0))
        self._engine.setVolume(_clamp(volume, 0.0, 1.0))
        self._select_voice(language_prefix)

    def _select_voice(self, language_prefix: str):
        for voice in self._engine.availableVoices():
            if voice.locale().name().lower().startswith(language_prefix):
                self._engine.setVoice(voice)
                self.log_debug("Selected speech voice", voice=voice.name())
                return

    def cancel(self) -> None:
        self._engine.stop()

    def speak(self, text: str) -> None:
        self.cancel()
        self._engine.say(text)


class VoiceAnnouncer(LoggableMixin):
    """Gatekeeper for spoken guidance.

    Utterances are dropped while voice is disabled and when they come less
    than ``min_interval_s`` after the previous one.
    """

    log_category = LogCategory.SPEECH

    def __init__(self, synthesizer: Optional[Synthesizer] = None,
                 min_interval_s: float = 3.0,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self.synthesizer = synthesizer
        self.min_interval_s = min_interval_s
        self.clock = clock
        self.enabled = False
        self._last_spoken: Optional[float] = None
        self.spoken = deque(maxlen=50)

    @property
    def available(self) -> bool:
        return self.synthesizer is not None

    def announce(self, text: str) -> bool:
        """Speak ``text`` if allowed; returns whether it was spoken."""
        if not self.enabled or self.synthesizer is None or not text:
            return False
        now = self.clock()
        if self._last_spoken is not None and now - self._last_spoken < self.min_interval_s:
            self.log_debug("Announcement suppressed", text=text)
            return False
        try:
            self.synthesizer.speak(text)
        except Exception as exc:
            self.log_error("Failed to speak instruction", exception=exc, text=text)
            return False
        self._last_spoken = now
        self.spoken.append(text)
        self.log_info("Spoke instruction", text=text)
        return True

    def cancel(self) -> None:
        if self.synthesizer is None:
            return
        try:
            self.synthesizer.cancel()
        except Exception as exc:
            self.log_error("Failed to cancel speech", exception=exc)


def create_synthesizer(rate: float = 0.9, pitch: float = 1.1, volume: float = 0.8) -> Optional[Synthesizer]:
    """A Qt synthesizer when an engine exists, otherwise ``None``."""
    if not has_speech_synthesis():
        return None
    return QtSpeechSynthesizer(rate=rate, pitch=pitch, volume=volume)


__all__ = [
    "QtSpeechSynthesizer",
    "Synthesizer",
    "VoiceAnnouncer",
    "create_synthesizer",
    "has_speech_synthesis",
]
