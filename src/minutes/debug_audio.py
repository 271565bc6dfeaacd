import os
import time

import numpy as np
import soundfile as sf

from minutes.constants import CHANNELS, SAMPLE_RATE
from minutes.logs import get_logger
from minutes.session import SessionKey


class DebugAudioRecorder:
  """
  Mirrors accepted session audio into .wav files for offline analysis.

  One file per session key, named ``<prefix>_<sessionKey>_<unix time>.wav``.
  Files are opened on the first chunk and stay open until :meth:`close`.
  """

  def __init__(self, path_prefix: str, sample_rate: int = SAMPLE_RATE):
    self.path_prefix = path_prefix
    self.sample_rate = sample_rate
    self.logger = get_logger("dbg/audio")
    self.files: dict[SessionKey, tuple[sf.SoundFile, str]] = {}

  def write(self, key: SessionKey, pcm: bytes) -> None:
    if key not in self.files:
      filename = f"{self.path_prefix}_{key}_{int(time.time())}.wav"
      os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
      file_handle = sf.SoundFile(
        filename,
        mode="w",
        samplerate=self.sample_rate,
        channels=CHANNELS,
        format="WAV",
        subtype="PCM_16",
      )
      self.files[key] = (file_handle, filename)
      self.logger.info("Debug audio capture started", session=str(key), filename=filename)

    file_handle, filename = self.files[key]
    samples = np.frombuffer(pcm[: len(pcm) - len(pcm) % 2], dtype="<i2")
    try:
      file_handle.write(samples)
    except (sf.SoundFileError, OSError):
      self.logger.exception("Error writing debug audio", filename=filename)

  def close(self) -> None:
    for key, (file_handle, filename) in list(self.files.items()):
      try:
        file_handle.close()
        self.logger.info("Debug audio capture finished", session=str(key), filename=filename)
      except (sf.SoundFileError, OSError):
        self.logger.exception("Error closing debug audio file", filename=filename)
    self.files.clear()
