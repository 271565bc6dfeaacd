"""
Minutes capture client.

Captures microphone and system audio, segments it with voice activity detection
and streams it to the transcription server. Capture lives in
:mod:`minutes.client.audio` and :mod:`minutes.client.core`, which need PortAudio;
they are not imported here.
"""

from minutes.client.connection import MeetingConnection
from minutes.client.vad import FrameDecision, VoiceActivityDetector, float_to_pcm16

__all__ = [
  "FrameDecision",
  "MeetingConnection",
  "VoiceActivityDetector",
  "float_to_pcm16",
]
