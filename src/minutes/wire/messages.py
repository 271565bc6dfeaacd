"""
Pydantic message models for the meeting transcription websocket protocol.

Attributes are snake_case in Python and camelCase on the wire. Inbound control
messages and all outbound events are JSON text frames discriminated on ``type``;
audio travels separately as binary frames (see :mod:`minutes.wire.codec`).
"""

import time
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AudioSource(StrEnum):
  """Independent audio inputs of a meeting; each one is buffered separately."""

  MICROPHONE = "microphone"
  SYSTEM_AUDIO = "system-audio"


class WireModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MeetingInput(WireModel):
  """Meeting context supplied by the client and passed through untouched."""

  purpose: str
  agenda: list[str] = Field(default_factory=list)


class SessionParams(WireModel):
  """Client-side VAD and transcription parameters sent with ``start``."""

  threshold: float | None = None
  min_speech_ms: int | None = None
  hangover_ms: int | None = None
  max_silence_ms: int | None = None
  min_transcribe_duration_sec: float | None = Field(default=None, ge=0.0)
  mode: str | None = None
  meeting_input: MeetingInput | None = None


# Inbound


class StartMessage(WireModel):
  type: Literal["start"] = "start"
  session_id: str = Field(min_length=1)
  lang: str | None = None
  params: SessionParams = Field(default_factory=SessionParams)


class AudioMessage(WireModel):
  """A chunk of PCM16LE audio for one source. Decoded from a binary frame, never JSON."""

  type: Literal["audio"] = "audio"
  session_id: str = Field(min_length=1)
  source: AudioSource = AudioSource.MICROPHONE
  buffer: bytes = Field(exclude=True)


class SpeechEndedMessage(WireModel):
  type: Literal["speech_ended"] = "speech_ended"
  session_id: str = Field(min_length=1)
  source: AudioSource = AudioSource.MICROPHONE
  timestamp: float = Field(default_factory=lambda: time.time() * 1000)


class EndMessage(WireModel):
  type: Literal["end"] = "end"
  session_id: str = Field(min_length=1)


class ResetSessionMessage(WireModel):
  type: Literal["reset_session"] = "reset_session"
  session_id: str = Field(min_length=1)


class PingMessage(WireModel):
  type: Literal["ping"] = "ping"
  timestamp: float


# Outbound


class StartedParams(WireModel):
  threshold: float
  min_transcribe_duration_sec: float


class SessionStartedMessage(WireModel):
  type: Literal["session_started"] = "session_started"
  session_id: str
  params: StartedParams


class FinalMessage(WireModel):
  """One completed utterance with non-empty filtered text."""

  type: Literal["final"] = "final"
  text: str
  session_id: str
  confidence: float = Field(ge=0.0, le=1.0, allow_inf_nan=False)
  source: AudioSource
  buffer_duration: float = Field(ge=0.0)
  is_final: bool = True


class ErrorMessage(WireModel):
  """Non-fatal error; the session stays usable."""

  type: Literal["error"] = "error"
  message: str
  session_id: str | None = None


class SessionResetMessage(WireModel):
  type: Literal["session_reset"] = "session_reset"
  session_id: str


class PongMessage(WireModel):
  type: Literal["pong"] = "pong"
  timestamp: float
  server_time: float = Field(default_factory=lambda: time.time() * 1000)


InboundMessage = Annotated[
  StartMessage | SpeechEndedMessage | EndMessage | ResetSessionMessage | PingMessage,
  Field(discriminator="type"),
]

OutboundMessage = Annotated[
  SessionStartedMessage | FinalMessage | ErrorMessage | SessionResetMessage | PongMessage,
  Field(discriminator="type"),
]
