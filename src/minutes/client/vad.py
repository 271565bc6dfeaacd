"""
Energy-based voice activity detection with an adaptive noise floor.

Audio is streamed continuously; the detector only decides where utterances end.
Each detector owns its noise floor, speaking flag and silence timer, so one
instance per audio source runs without shared state.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from minutes.logs import get_logger
from minutes.wire import AudioSource

SILENCE_DURATION_MS = 1500
"""Uninterrupted non-speech required before an utterance is declared over."""

INITIAL_NOISE_FLOOR = 0.01


class TimerHandle(Protocol):
  def cancel(self) -> None: ...


class Scheduler(Protocol):
  """Anything with an event-loop style ``call_later``."""

  def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


SpeechCallback = Callable[[AudioSource, float], None]
"""Receives the source and a millisecond Unix timestamp."""


def float_to_pcm16(samples: np.ndarray) -> bytes:
  """
  Convert float samples in [-1, 1] to 16-bit signed little-endian PCM.

  Samples are clamped first; negatives scale by 0x8000 and the rest by 0x7FFF so
  both -1.0 and 1.0 map to the extremes of the int16 range.
  """
  clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
  scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
  return scaled.astype("<i2").tobytes()


@dataclass(frozen=True)
class FrameDecision:
  is_speech: bool
  rms: float
  peak: float
  threshold: float
  pcm: bytes
  """The frame as PCM16LE, ready to stream regardless of the decision."""


class VoiceActivityDetector:
  """
  Two-state (silent/speaking) detector driven one frame at a time.

  A frame is speech when its RMS exceeds ``noise_floor * threshold_multiplier`` or
  its peak exceeds 1.5 times that threshold. The noise floor is an exponential
  moving average of frame RMS, updated only while silent.

  Speaking starts on the first speech frame. It ends only after
  ``silence_duration_ms`` of uninterrupted non-speech, measured by a cancellable
  timer: any speech frame while the timer is pending cancels it.

  :param source: Audio source reported with each event.
  :param on_speech_end: Called when the hangover timer expires.
  :param on_speech_start: Called on the silent to speaking transition.
  :param scheduler: Timer source; defaults to the running asyncio loop.
  :param clock: Wall-clock seconds used for event timestamps.
  """

  def __init__(
    self,
    source: AudioSource,
    on_speech_end: SpeechCallback,
    on_speech_start: SpeechCallback | None = None,
    scheduler: Scheduler | None = None,
    clock: Callable[[], float] = time.time,
    silence_duration_ms: int = SILENCE_DURATION_MS,
    initial_noise_floor: float = INITIAL_NOISE_FLOOR,
    threshold_multiplier: float = 5.0,
    peak_factor: float = 1.5,
    smoothing: float = 0.95,
  ):
    self.source = source
    self.on_speech_end = on_speech_end
    self.on_speech_start = on_speech_start
    self.clock = clock
    self.silence_duration_ms = silence_duration_ms
    self.threshold_multiplier = threshold_multiplier
    self.peak_factor = peak_factor
    self.smoothing = smoothing
    self.logger = get_logger("vad", source=str(source))

    self._scheduler = scheduler
    self._initial_noise_floor = initial_noise_floor
    self.noise_floor = initial_noise_floor
    self.speaking = False
    self._silence_timer: TimerHandle | None = None

  @property
  def threshold(self) -> float:
    return self.noise_floor * self.threshold_multiplier

  @property
  def silence_pending(self) -> bool:
    return self._silence_timer is not None

  def process(self, frame: np.ndarray) -> FrameDecision:
    """Classify one frame of float samples and update the speaking state."""
    samples = np.asarray(frame, dtype=np.float32).reshape(-1)
    if samples.size:
      rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
      peak = float(np.max(np.abs(samples)))
    else:
      rms = peak = 0.0

    if not self.speaking:
      self.noise_floor = self.noise_floor * self.smoothing + rms * (1.0 - self.smoothing)

    threshold = self.threshold
    is_speech = rms > threshold or peak > threshold * self.peak_factor

    if is_speech:
      if not self.speaking:
        self.speaking = True
        self.logger.debug("Speech started", rms=rms, peak=peak, threshold=threshold)
        if self.on_speech_start is not None:
          self.on_speech_start(self.source, self.clock() * 1000)
      self._cancel_timer()
    elif self.speaking and self._silence_timer is None:
      self._silence_timer = self._get_scheduler().call_later(
        self.silence_duration_ms / 1000, self._on_silence_elapsed
      )

    return FrameDecision(
      is_speech=is_speech,
      rms=rms,
      peak=peak,
      threshold=threshold,
      pcm=float_to_pcm16(samples),
    )

  def cancel(self) -> None:
    """Drop any pending silence timer without emitting an event."""
    self._cancel_timer()

  def flush(self) -> bool:
    """
    End the utterance in progress now, without waiting out the silence window.

    No ``on_speech_end`` callback is made; the caller reports the end itself.

    :returns: True if an utterance was in progress.
    """
    self._cancel_timer()
    was_speaking, self.speaking = self.speaking, False
    if was_speaking:
      self.logger.debug("Speech flushed")
    return was_speaking

  def reset(self) -> None:
    self._cancel_timer()
    self.speaking = False
    self.noise_floor = self._initial_noise_floor

  def _on_silence_elapsed(self) -> None:
    self._silence_timer = None
    self.speaking = False
    self.logger.debug("Speech ended", silence_ms=self.silence_duration_ms)
    self.on_speech_end(self.source, self.clock() * 1000)

  def _cancel_timer(self) -> None:
    if self._silence_timer is not None:
      self._silence_timer.cancel()
      self._silence_timer = None

  def _get_scheduler(self) -> Scheduler:
    return self._scheduler if self._scheduler is not None else asyncio.get_running_loop()
