import io
import wave

from minutes.constants import BYTES_PER_SAMPLE, CHANNELS, SAMPLE_RATE

WAV_HEADER_SIZE = 44


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS) -> bytes:
  """
  Wrap raw 16-bit little-endian PCM in a canonical RIFF/WAVE container.

  The result is a 44-byte header followed by ``pcm`` unchanged.
  """
  buffer = io.BytesIO()
  with wave.open(buffer, "wb") as wav_file:
    wav_file.setnchannels(channels)
    wav_file.setsampwidth(BYTES_PER_SAMPLE)
    wav_file.setframerate(sample_rate)
    wav_file.writeframes(pcm)
  return buffer.getvalue()
