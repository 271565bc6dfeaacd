"""
Message codec for wire protocol serialization and deserialization.

JSON text frames carry control messages and server events. Audio is carried in
binary frames laid out as::

  b"MNA1" | uint16 big-endian header length | UTF-8 JSON header | PCM16LE payload

where the header is ``{"sessionId": ..., "source": ...}``. Binary frames that do
not start with the magic are the deprecated untagged form and are left to the
caller to attribute.
"""

import json
import struct

from pydantic import TypeAdapter, ValidationError

from .messages import AudioMessage, AudioSource, InboundMessage, OutboundMessage, WireModel

AUDIO_FRAME_MAGIC = b"MNA1"
_HEADER_LENGTH = struct.Struct(">H")

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
_outbound_adapter: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)


class FrameDecodeError(ValueError):
  """A binary audio frame carried the magic but could not be decoded."""


def serialize_message(message: WireModel) -> str:
  """Serialize any wire model to its camelCase JSON form."""
  return message.model_dump_json(by_alias=True)


def deserialize_message(json_str: str | bytes) -> InboundMessage:
  """
  Deserialize a client control message.

  :raises pydantic.ValidationError: malformed JSON, unknown ``type`` or bad fields.
  """
  return _inbound_adapter.validate_json(json_str)


def deserialize_event(json_str: str | bytes) -> OutboundMessage:
  """Deserialize a server event (used by the client)."""
  return _outbound_adapter.validate_json(json_str)


def is_tagged_audio_frame(data: bytes) -> bool:
  return data.startswith(AUDIO_FRAME_MAGIC)


def encode_audio_frame(session_id: str, source: AudioSource, pcm: bytes) -> bytes:
  header = json.dumps({"sessionId": session_id, "source": str(source)}).encode("utf-8")
  return AUDIO_FRAME_MAGIC + _HEADER_LENGTH.pack(len(header)) + header + pcm


def decode_audio_frame(data: bytes) -> AudioMessage:
  """
  Decode a tagged binary audio frame.

  :raises FrameDecodeError: if the frame is untagged, truncated, or its header is invalid.
  """
  if not is_tagged_audio_frame(data):
    raise FrameDecodeError("Frame does not carry the audio frame magic")

  offset = len(AUDIO_FRAME_MAGIC)
  if len(data) < offset + _HEADER_LENGTH.size:
    raise FrameDecodeError("Frame truncated before header length")

  (header_length,) = _HEADER_LENGTH.unpack_from(data, offset)
  offset += _HEADER_LENGTH.size
  if len(data) < offset + header_length:
    raise FrameDecodeError(f"Frame truncated inside header ({header_length} bytes declared)")

  try:
    header = json.loads(data[offset : offset + header_length].decode("utf-8"))
    if not isinstance(header, dict):
      raise FrameDecodeError("Frame header must be a JSON object")
    return AudioMessage.model_validate({**header, "buffer": data[offset + header_length :]})
  except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
    raise FrameDecodeError(f"Invalid frame header: {e}") from e
