from .client import RemoteTranscriber, Transcriber, TranscriptionError, TranscriptionResult
from .filter import FILLER_PHRASES, NoiseFilter
from .wav import WAV_HEADER_SIZE, pcm_to_wav

__all__ = [
  "FILLER_PHRASES",
  "NoiseFilter",
  "RemoteTranscriber",
  "Transcriber",
  "TranscriptionError",
  "TranscriptionResult",
  "WAV_HEADER_SIZE",
  "pcm_to_wav",
]
