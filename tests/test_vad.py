"""Tests for the voice activity detector."""

import numpy as np
import pytest

from minutes.client.vad import INITIAL_NOISE_FLOOR, VoiceActivityDetector, float_to_pcm16
from minutes.constants import FRAME_SIZE
from minutes.wire import AudioSource

LOUD = np.full(FRAME_SIZE, 0.5, dtype=np.float32)
SILENT = np.zeros(FRAME_SIZE, dtype=np.float32)


class ManualTimer:
  def __init__(self, scheduler: "ManualScheduler", when: float, callback):
    self.scheduler = scheduler
    self.when = when
    self.callback = callback
    self.cancelled = False

  def cancel(self) -> None:
    self.cancelled = True


class ManualScheduler:
  """Deterministic stand-in for the event loop's call_later; time is in seconds."""

  def __init__(self):
    self.now = 0.0
    self.timers: list[ManualTimer] = []

  def call_later(self, delay, callback):
    timer = ManualTimer(self, self.now + delay, callback)
    self.timers.append(timer)
    return timer

  def advance_to(self, when: float) -> None:
    while True:
      due = [t for t in self.timers if not t.cancelled and t.when <= when]
      if not due:
        break
      timer = min(due, key=lambda t: t.when)
      self.timers.remove(timer)
      self.now = timer.when
      timer.callback()
    self.now = when

  def clock(self) -> float:
    return self.now


@pytest.fixture
def scheduler():
  return ManualScheduler()


@pytest.fixture
def events():
  return []


def make_detector(scheduler, events, source=AudioSource.MICROPHONE):
  return VoiceActivityDetector(
    source,
    on_speech_end=lambda src, ts: events.append(("end", src, ts)),
    on_speech_start=lambda src, ts: events.append(("start", src, ts)),
    scheduler=scheduler,
    clock=scheduler.clock,
  )


def feed(detector, scheduler, frame, start_ms: float, end_ms: float, step_ms: float = 100):
  """Feed ``frame`` every ``step_ms`` from ``start_ms`` (inclusive) to ``end_ms`` (exclusive)."""
  t = start_ms
  while t < end_ms:
    scheduler.advance_to(t / 1000)
    detector.process(frame)
    t += step_ms


def end_events(events):
  return [e for e in events if e[0] == "end"]


class TestHangover:
  def test_speech_end_fires_after_full_silence(self, scheduler, events):
    """Test that speech end fires 1500 ms after silence starts, and not earlier."""
    detector = make_detector(scheduler, events)

    feed(detector, scheduler, LOUD, 0, 2000)
    assert detector.speaking
    feed(detector, scheduler, SILENT, 2000, 3500)

    scheduler.advance_to(3.499)
    assert end_events(events) == []
    assert detector.speaking

    scheduler.advance_to(3.5)
    assert end_events(events) == [("end", AudioSource.MICROPHONE, pytest.approx(3500.0))]
    assert not detector.speaking

  def test_blip_resets_timer(self, scheduler, events):
    """Test that a loud blip during the hangover restarts the silence clock."""
    detector = make_detector(scheduler, events)

    feed(detector, scheduler, LOUD, 0, 2000)
    feed(detector, scheduler, SILENT, 2000, 3000)
    feed(detector, scheduler, LOUD, 3000, 3100)
    feed(detector, scheduler, SILENT, 3100, 4500)

    scheduler.advance_to(4.599)
    assert end_events(events) == []

    scheduler.advance_to(4.601)
    assert len(end_events(events)) == 1
    assert end_events(events)[0][2] == pytest.approx(4600.0)

  def test_single_start_per_utterance(self, scheduler, events):
    detector = make_detector(scheduler, events)

    feed(detector, scheduler, LOUD, 0, 1000)

    assert [e[0] for e in events] == ["start"]

  def test_silence_without_speech_emits_nothing(self, scheduler, events):
    detector = make_detector(scheduler, events)

    feed(detector, scheduler, SILENT, 0, 5000)
    scheduler.advance_to(10.0)

    assert events == []
    assert not detector.silence_pending

  def test_cancel_drops_pending_end(self, scheduler, events):
    detector = make_detector(scheduler, events)
    feed(detector, scheduler, LOUD, 0, 500)
    feed(detector, scheduler, SILENT, 500, 600)
    assert detector.silence_pending

    detector.cancel()
    scheduler.advance_to(5.0)

    assert end_events(events) == []

  def test_flush_ends_utterance_in_progress(self, scheduler, events):
    detector = make_detector(scheduler, events)
    feed(detector, scheduler, LOUD, 0, 500)
    feed(detector, scheduler, SILENT, 500, 600)

    assert detector.flush()
    scheduler.advance_to(5.0)

    assert not detector.speaking
    assert not detector.silence_pending
    assert end_events(events) == []
    assert detector.flush() is False

  def test_flush_while_silent(self, scheduler, events):
    detector = make_detector(scheduler, events)
    feed(detector, scheduler, SILENT, 0, 500)

    assert detector.flush() is False


class TestNoiseFloor:
  def test_floor_rises_with_ambient_noise_while_silent(self, scheduler, events):
    detector = make_detector(scheduler, events)
    thresholds = []

    for level in np.linspace(0.012, 0.04, 20):
      detector.process(np.full(FRAME_SIZE, level, dtype=np.float32))
      thresholds.append(detector.threshold)

    assert not detector.speaking
    assert thresholds[-1] > thresholds[0]
    assert all(b >= a for a, b in zip(thresholds, thresholds[1:]))

  def test_floor_frozen_while_speaking(self, scheduler, events):
    detector = make_detector(scheduler, events)
    detector.process(LOUD)
    assert detector.speaking
    floor = detector.noise_floor

    for level in np.linspace(0.01, 0.08, 20):
      detector.process(np.full(FRAME_SIZE, level, dtype=np.float32))

    assert detector.speaking
    assert detector.noise_floor == floor

  def test_first_frame_update(self, scheduler, events):
    detector = make_detector(scheduler, events)

    decision = detector.process(np.full(FRAME_SIZE, 0.02, dtype=np.float32))

    expected_floor = INITIAL_NOISE_FLOOR * 0.95 + 0.02 * 0.05
    assert detector.noise_floor == pytest.approx(expected_floor)
    assert decision.threshold == pytest.approx(expected_floor * 5)
    assert decision.rms == pytest.approx(0.02)
    assert not decision.is_speech

  def test_peak_alone_can_trigger_speech(self, scheduler, events):
    detector = make_detector(scheduler, events)
    frame = np.zeros(FRAME_SIZE, dtype=np.float32)
    frame[100] = 0.9

    decision = detector.process(frame)

    assert decision.is_speech
    assert decision.peak == pytest.approx(0.9)


class TestIndependentDetectors:
  def test_sources_do_not_share_state(self, scheduler, events):
    mic = make_detector(scheduler, events, AudioSource.MICROPHONE)
    system = make_detector(scheduler, events, AudioSource.SYSTEM_AUDIO)

    feed(mic, scheduler, LOUD, 0, 1000)
    feed(system, scheduler, SILENT, 0, 1000)

    assert mic.speaking
    assert not system.speaking
    assert mic.noise_floor != system.noise_floor

    feed(mic, scheduler, SILENT, 1000, 1100)
    scheduler.advance_to(2.5)

    assert end_events(events) == [("end", AudioSource.MICROPHONE, pytest.approx(2500.0))]


class TestPcmConversion:
  def test_scaling_and_clamping(self):
    samples = np.array([-1.0, -0.5, 0.0, 0.5, 1.0, 2.0, -3.0], dtype=np.float32)

    pcm = np.frombuffer(float_to_pcm16(samples), dtype="<i2")

    assert pcm.tolist() == [-32768, -16384, 0, 16383, 32767, 32767, -32768]

  def test_every_frame_yields_pcm(self, scheduler, events):
    detector = make_detector(scheduler, events)

    silent = detector.process(SILENT)
    loud = detector.process(LOUD)

    assert len(silent.pcm) == FRAME_SIZE * 2
    assert len(loud.pcm) == FRAME_SIZE * 2
