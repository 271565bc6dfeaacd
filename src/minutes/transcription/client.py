"""
Remote speech-to-text client.

Sends each utterance as a WAV file to an OpenAI-compatible
``/audio/transcriptions`` endpoint and post-filters the result.
"""

import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from minutes.config import TranscriptionConfig
from minutes.constants import BYTES_PER_SAMPLE, SAMPLE_RATE
from minutes.format import Bytes, Milliseconds, Seconds
from minutes.logs import get_logger
from minutes.transcription.filter import NoiseFilter
from minutes.transcription.wav import pcm_to_wav


class TranscriptionError(Exception):
  """The remote backend failed or timed out for one utterance."""


@dataclass(frozen=True)
class TranscriptionResult:
  text: str
  """Filtered transcript. Empty when no speech was detected."""

  confidence: float
  """In [0, 1]; 0 when ``text`` is empty."""

  duration: float
  """Audio duration in seconds."""

  @classmethod
  def empty(cls, duration: float = 0.0) -> "TranscriptionResult":
    return cls(text="", confidence=0.0, duration=duration)

  @property
  def has_speech(self) -> bool:
    return bool(self.text)


class Transcriber(Protocol):
  async def transcribe(self, pcm: bytes, language: str) -> TranscriptionResult:
    """
    Transcribe one utterance of 16 kHz mono PCM16LE audio.

    :raises TranscriptionError: if the backend fails.
    """
    ...


class RemoteTranscriber:
  """
  Batch transcription through a remote HTTP backend.

  A single ``httpx.AsyncClient`` is shared by all requests; call :meth:`aclose`
  when done. Without an API key every call degrades to an empty result.
  """

  def __init__(
    self,
    config: TranscriptionConfig | None = None,
    noise_filter: NoiseFilter | None = None,
    sample_rate: int = SAMPLE_RATE,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.config = config or TranscriptionConfig()
    self.noise_filter = noise_filter or NoiseFilter()
    self.sample_rate = sample_rate
    self.logger = get_logger("stt/remote")

    if self.config.api_key is None:
      self.logger.warning(
        "No API key configured; transcription is disabled", endpoint=self.config.endpoint
      )

    self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout), transport=transport)
    self._stats: dict[str, Any] = {
      "total_requests": 0,
      "total_failures": 0,
      "last_latency_ms": 0.0,
    }

  @property
  def enabled(self) -> bool:
    return self.config.api_key is not None

  async def aclose(self) -> None:
    await self._client.aclose()

  def get_stats(self) -> dict[str, Any]:
    return {
      "total_requests": self._stats["total_requests"],
      "total_failures": self._stats["total_failures"],
      "last_latency_ms": round(self._stats["last_latency_ms"], 2),
    }

  async def transcribe(self, pcm: bytes, language: str) -> TranscriptionResult:
    audio_duration = (len(pcm) / BYTES_PER_SAMPLE) / self.sample_rate
    if not pcm or not self.enabled:
      return TranscriptionResult.empty(audio_duration)

    assert self.config.api_key is not None
    files = {"file": ("audio.wav", pcm_to_wav(pcm, self.sample_rate), "audio/wav")}
    data = {
      "model": self.config.model,
      "language": language,
      "response_format": "verbose_json",
      "temperature": str(self.config.temperature),
    }
    headers = {"Authorization": f"Bearer {self.config.api_key.get_secret_value()}"}

    self._stats["total_requests"] += 1
    start = time.perf_counter()
    try:
      response = await self._client.post(
        self.config.endpoint, data=data, files=files, headers=headers
      )
      response.raise_for_status()
    except httpx.TimeoutException as e:
      self._stats["total_failures"] += 1
      raise TranscriptionError(f"Transcription timed out after {self.config.timeout}s") from e
    except httpx.HTTPStatusError as e:
      self._stats["total_failures"] += 1
      raise TranscriptionError(
        f"Transcription failed with HTTP {e.response.status_code}: {e.response.text[:200]}"
      ) from e
    except httpx.HTTPError as e:
      self._stats["total_failures"] += 1
      raise TranscriptionError(f"Transcription request failed: {e}") from e

    latency_ms = (time.perf_counter() - start) * 1000
    self._stats["last_latency_ms"] = latency_ms

    try:
      payload = response.json()
    except ValueError:
      self.logger.warning("Backend returned a non-JSON body", body=response.text[:200])
      return TranscriptionResult.empty(audio_duration)
    if not isinstance(payload, dict):
      self.logger.warning("Backend returned an unexpected payload", payload=payload)
      return TranscriptionResult.empty(audio_duration)

    text = str(payload.get("text") or "").strip()
    duration = float(payload.get("duration") or audio_duration)
    reported = payload.get("confidence")

    self.logger.debug(
      "Transcribed utterance",
      audio=Bytes(len(pcm)),
      duration=Seconds(duration),
      latency=Milliseconds(latency_ms),
      text=text,
    )

    if self.noise_filter.is_noise(text, duration):
      if text:
        self.logger.debug("Filtered noise", text=text, duration=Seconds(duration))
      return TranscriptionResult.empty(duration)

    confidence = self.noise_filter.estimate_confidence(
      text, duration, float(reported) if reported is not None else None
    )
    return TranscriptionResult(text=text, confidence=confidence, duration=duration)
