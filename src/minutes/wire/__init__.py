"""
Minutes wire protocol package.

Message types and codecs shared by the transcription server and the capture client.
"""

from .codec import (
  AUDIO_FRAME_MAGIC,
  FrameDecodeError,
  decode_audio_frame,
  deserialize_event,
  deserialize_message,
  encode_audio_frame,
  is_tagged_audio_frame,
  serialize_message,
)
from .messages import (
  AudioMessage,
  AudioSource,
  EndMessage,
  ErrorMessage,
  FinalMessage,
  InboundMessage,
  MeetingInput,
  OutboundMessage,
  PingMessage,
  PongMessage,
  ResetSessionMessage,
  SessionParams,
  SessionResetMessage,
  SessionStartedMessage,
  SpeechEndedMessage,
  StartedParams,
  StartMessage,
)

__all__ = [
  "AUDIO_FRAME_MAGIC",
  "AudioMessage",
  "AudioSource",
  "EndMessage",
  "ErrorMessage",
  "FinalMessage",
  "FrameDecodeError",
  "InboundMessage",
  "MeetingInput",
  "OutboundMessage",
  "PingMessage",
  "PongMessage",
  "ResetSessionMessage",
  "SessionParams",
  "SessionResetMessage",
  "SessionStartedMessage",
  "SpeechEndedMessage",
  "StartMessage",
  "StartedParams",
  "decode_audio_frame",
  "deserialize_event",
  "deserialize_message",
  "encode_audio_frame",
  "is_tagged_audio_frame",
  "serialize_message",
]
