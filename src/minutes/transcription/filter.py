import math
import re

FILLER_PHRASES = (
  "ありがとうございました",
  "ありがとうございます",
  "お願いします",
  "すみません",
  "thank you",
  "thank you very much",
  "thanks",
  "please",
  "sorry",
)
"""Acknowledgement phrases that Whisper tends to hallucinate on near-silent audio."""

_FILLER_PATTERN = re.compile(
  r"^(?:" + "|".join(re.escape(phrase) for phrase in FILLER_PHRASES) + r")[.。!！]?$",
  re.IGNORECASE,
)


class NoiseFilter:
  """
  Post-filter for remote transcription results.

  Short backchannel utterances and filler phrases are treated as no speech. The
  confidence fallback used when the backend reports none is a placeholder scoring
  policy based on text length and duration, not a calibrated probability.
  """

  def __init__(
    self,
    max_noise_length: int = 3,
    short_duration: float = 2.0,
    max_short_length: int = 10,
  ) -> None:
    self.max_noise_length = max_noise_length
    self.short_duration = short_duration
    self.max_short_length = max_short_length

  def is_noise(self, text: str, duration: float) -> bool:
    text = text.strip()
    if not text:
      return True
    if _FILLER_PATTERN.match(text):
      return True
    if len(text) <= self.max_noise_length:
      return True
    return duration < self.short_duration and len(text) <= self.max_short_length

  def estimate_confidence(self, text: str, duration: float, reported: float | None = None) -> float:
    if reported is not None and math.isfinite(reported):
      return min(max(reported, 0.0), 1.0)

    length = len(text.strip())
    if length > 20 and duration > 1.0:
      return 0.9
    if length > 10:
      return 0.8
    return 0.6
