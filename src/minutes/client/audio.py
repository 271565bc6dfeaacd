"""
Audio capture for the meeting client.
"""

import asyncio
from collections.abc import Callable

import numpy as np
import sounddevice as sd

from minutes.constants import CHANNELS, FRAME_SIZE, SAMPLE_RATE

DTYPE = np.float32


class AudioCapture:
  """
  Captures one input device as float32 frames of ``FRAME_SIZE`` samples.

  sounddevice invokes the callback on its own thread; frames are handed to the
  asyncio loop that called :meth:`start_recording` through
  ``call_soon_threadsafe``.
  """

  def __init__(self, on_error: Callable[[str], None], audio_device: str | int | None = None):
    self.audio_queue: asyncio.Queue[np.ndarray] = asyncio.Queue()
    self.audio_stream: sd.InputStream | None = None
    self.audio_device = audio_device
    self.recording = False
    self.on_error = on_error
    self._loop: asyncio.AbstractEventLoop | None = None

  def audio_callback(self, indata: np.ndarray, frames: int, time_info, status):
    """Sounddevice audio callback."""
    if status:
      self._report_error(f"Audio status: {status}")

    if self.recording and self._loop is not None:
      frame = indata[:, 0].astype(DTYPE, copy=True)
      self._loop.call_soon_threadsafe(self.audio_queue.put_nowait, frame)

  def start_recording(self):
    """Start capturing from the configured device."""
    if self.recording:
      return

    self._loop = asyncio.get_running_loop()
    try:
      self.audio_stream = sd.InputStream(
        device=self.audio_device,
        channels=CHANNELS,
        samplerate=SAMPLE_RATE,
        dtype=DTYPE,
        latency="low",
        blocksize=FRAME_SIZE,
        callback=self.audio_callback,
      )
      self.recording = True
      self.audio_stream.start()
    except sd.PortAudioError as e:
      self.recording = False
      self.on_error(f"Error starting audio: {e}")
      raise

  def stop_recording(self):
    """Stop audio capture."""
    if not self.recording:
      return

    self.recording = False
    if self.audio_stream:
      try:
        self.audio_stream.stop()
        self.audio_stream.close()
      except sd.PortAudioError as e:
        self.on_error(f"Error stopping audio: {e}")
      finally:
        self.audio_stream = None

  async def get_audio_data(self, timeout: float = 0.1) -> np.ndarray | None:
    """Get the next captured frame, or None if none arrives within ``timeout``."""
    try:
      return await asyncio.wait_for(self.audio_queue.get(), timeout=timeout)
    except asyncio.TimeoutError:
      return None

  def is_recording(self) -> bool:
    return self.recording

  def _report_error(self, message: str) -> None:
    if self._loop is not None:
      self._loop.call_soon_threadsafe(self.on_error, message)
    else:
      self.on_error(message)
