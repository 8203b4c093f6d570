import logging
from enum import Enum
from typing import List, Optional, Tuple

from .models import AudioResult

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class AudioSink:
    """Platform playback primitive (speech engine or audio element)."""

    def play(self, audio: AudioResult) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class NullAudioSink(AudioSink):
    """Headless sink: records what it was asked to do."""

    def __init__(self):
        self.calls: List[Tuple[str, Optional[AudioResult]]] = []

    def play(self, audio: AudioResult) -> None:
        self.calls.append(("play", audio))

    def pause(self) -> None:
        self.calls.append(("pause", None))

    def resume(self) -> None:
        self.calls.append(("resume", None))

    def stop(self) -> None:
        self.calls.append(("stop", None))


class Narrator:
    """Owns the single playback resource; only one narration exists at a time."""

    def __init__(self, sink: Optional[AudioSink] = None):
        self.sink = sink or NullAudioSink()
        self.state = PlaybackState.STOPPED
        self._current: Optional[AudioResult] = None

    @property
    def current(self) -> Optional[AudioResult]:
        return self._current

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    def start(self, audio: AudioResult) -> None:
        self.release()
        self._current = audio
        self.sink.play(audio)
        self.state = PlaybackState.PLAYING
        logger.info(f"Narration started ({audio.source.value})")

    def toggle(self) -> PlaybackState:
        if self._current is None:
            return self.state
        if self.state == PlaybackState.PLAYING:
            self.sink.pause()
            self.state = PlaybackState.PAUSED
        elif self.state == PlaybackState.PAUSED:
            self.sink.resume()
            self.state = PlaybackState.PLAYING
        else:
            self.sink.play(self._current)
            self.state = PlaybackState.PLAYING
        return self.state

    def release(self) -> None:
        if self._current is not None:
            self.sink.stop()
            logger.info("Narration stopped")
        self._current = None
        self.state = PlaybackState.STOPPED

    def finished(self, audio: AudioResult) -> None:
        """Called by the sink when playback ends; stale notifications are ignored."""
        if audio is not self._current:
            return
        self.state = PlaybackState.STOPPED
