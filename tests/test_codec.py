"""Tests for wire message models and the frame codec."""

import json
import struct

import pytest
from pydantic import ValidationError

from minutes.wire import (
  AUDIO_FRAME_MAGIC,
  AudioSource,
  EndMessage,
  ErrorMessage,
  FinalMessage,
  FrameDecodeError,
  PingMessage,
  PongMessage,
  SessionStartedMessage,
  SpeechEndedMessage,
  StartedParams,
  StartMessage,
  decode_audio_frame,
  deserialize_event,
  deserialize_message,
  encode_audio_frame,
  is_tagged_audio_frame,
  serialize_message,
)


class TestControlMessages:
  """Test JSON control message decoding."""

  def test_start_message_with_camel_case_params(self):
    """Test that a start message decodes camelCase params into snake_case attributes."""
    message = deserialize_message(
      json.dumps(
        {
          "type": "start",
          "sessionId": "abc",
          "lang": "ja",
          "params": {
            "threshold": 1.6,
            "minSpeechMs": 400,
            "hangoverMs": 400,
            "maxSilenceMs": 2000,
            "minTranscribeDurationSec": 2.0,
            "mode": "normal",
            "meetingInput": {"purpose": "weekly sync", "agenda": ["budget", "hiring"]},
          },
        }
      )
    )

    assert isinstance(message, StartMessage)
    assert message.session_id == "abc"
    assert message.params.min_speech_ms == 400
    assert message.params.min_transcribe_duration_sec == 2.0
    assert message.params.meeting_input is not None
    assert message.params.meeting_input.agenda == ["budget", "hiring"]

  def test_start_message_params_optional(self):
    """Test that params may be omitted entirely."""
    message = deserialize_message('{"type": "start", "sessionId": "abc"}')

    assert isinstance(message, StartMessage)
    assert message.lang is None
    assert message.params.threshold is None

  def test_speech_ended_defaults_to_microphone(self):
    """Test that speech_ended without a source targets the microphone."""
    message = deserialize_message('{"type": "speech_ended", "sessionId": "abc", "timestamp": 1}')

    assert isinstance(message, SpeechEndedMessage)
    assert message.source is AudioSource.MICROPHONE
    assert message.timestamp == 1

  def test_speech_ended_system_audio(self):
    message = deserialize_message(
      '{"type": "speech_ended", "sessionId": "abc", "source": "system-audio", "timestamp": 1}'
    )
    assert message.source is AudioSource.SYSTEM_AUDIO

  def test_end_and_ping(self):
    assert isinstance(deserialize_message('{"type": "end", "sessionId": "abc"}'), EndMessage)
    ping = deserialize_message('{"type": "ping", "timestamp": 42}')
    assert isinstance(ping, PingMessage)
    assert ping.timestamp == 42

  @pytest.mark.parametrize(
    "payload",
    [
      "not json",
      '{"type": "unknown"}',
      '{"type": "start"}',
      '{"type": "start", "sessionId": ""}',
      '{"type": "speech_ended", "sessionId": "abc", "source": "webcam"}',
      '{"type": "audio", "sessionId": "abc"}',
    ],
  )
  def test_rejects_invalid_messages(self, payload):
    """Test that malformed, unknown and incomplete messages fail validation."""
    with pytest.raises(ValidationError):
      deserialize_message(payload)


class TestServerEvents:
  """Test outbound event serialization."""

  def test_final_message_wire_shape(self):
    """Test that a final event serializes with camelCase keys and isFinal."""
    message = FinalMessage(
      text="こんにちは、今日の議題です",
      session_id="abc",
      confidence=0.8,
      source=AudioSource.SYSTEM_AUDIO,
      buffer_duration=3.0,
    )

    data = json.loads(serialize_message(message))

    assert data == {
      "type": "final",
      "text": "こんにちは、今日の議題です",
      "sessionId": "abc",
      "confidence": 0.8,
      "source": "system-audio",
      "bufferDuration": 3.0,
      "isFinal": True,
    }

  def test_session_started_wire_shape(self):
    message = SessionStartedMessage(
      session_id="abc", params=StartedParams(threshold=1.6, min_transcribe_duration_sec=2.0)
    )

    data = json.loads(serialize_message(message))

    assert data["params"] == {"threshold": 1.6, "minTranscribeDurationSec": 2.0}

  def test_error_without_session(self):
    data = json.loads(serialize_message(ErrorMessage(message="bad")))
    assert data == {"type": "error", "message": "bad", "sessionId": None}

  def test_pong_carries_server_time(self):
    pong = PongMessage(timestamp=5)
    assert pong.server_time > 0

  def test_deserialize_event(self):
    event = deserialize_event('{"type": "session_reset", "sessionId": "abc"}')
    assert event.type == "session_reset"
    assert event.session_id == "abc"

  def test_confidence_out_of_range_rejected(self):
    with pytest.raises(ValidationError):
      FinalMessage(
        text="x", session_id="a", confidence=1.5, source="microphone", buffer_duration=1.0
      )


class TestAudioFrames:
  """Test tagged binary audio frames."""

  def test_encode_decode(self):
    """Test that a tagged frame carries its session, source and payload."""
    pcm = bytes(range(256)) * 4
    frame = encode_audio_frame("abc", AudioSource.SYSTEM_AUDIO, pcm)

    assert is_tagged_audio_frame(frame)
    message = decode_audio_frame(frame)
    assert message.session_id == "abc"
    assert message.source is AudioSource.SYSTEM_AUDIO
    assert message.buffer == pcm

  def test_payload_may_start_with_header_like_bytes(self):
    pcm = b'{"sessionId": "evil"}'
    message = decode_audio_frame(encode_audio_frame("abc", AudioSource.MICROPHONE, pcm))
    assert message.session_id == "abc"
    assert message.buffer == pcm

  def test_untagged_frame_rejected(self):
    assert not is_tagged_audio_frame(b"\x00\x01" * 10)
    with pytest.raises(FrameDecodeError, match="magic"):
      decode_audio_frame(b"\x00\x01" * 10)

  def test_truncated_frame(self):
    with pytest.raises(FrameDecodeError, match="truncated"):
      decode_audio_frame(AUDIO_FRAME_MAGIC + b"\x00")

    with pytest.raises(FrameDecodeError, match="truncated"):
      decode_audio_frame(AUDIO_FRAME_MAGIC + struct.pack(">H", 100) + b"{}")

  def test_invalid_header(self):
    header = b"not json"
    frame = AUDIO_FRAME_MAGIC + struct.pack(">H", len(header)) + header
    with pytest.raises(FrameDecodeError, match="Invalid frame header"):
      decode_audio_frame(frame)

  def test_header_must_name_session(self):
    header = b'{"source": "microphone"}'
    frame = AUDIO_FRAME_MAGIC + struct.pack(">H", len(header)) + header
    with pytest.raises(FrameDecodeError):
      decode_audio_frame(frame)
