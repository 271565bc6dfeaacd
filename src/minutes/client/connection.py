"""
WebSocket connection and protocol handling for the meeting client.
"""

import time
from collections.abc import Callable

import websockets
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from minutes.wire import (
  AudioSource,
  EndMessage,
  ErrorMessage,
  FinalMessage,
  PingMessage,
  PongMessage,
  ResetSessionMessage,
  SessionParams,
  SessionResetMessage,
  SessionStartedMessage,
  SpeechEndedMessage,
  StartMessage,
  deserialize_event,
  encode_audio_frame,
  serialize_message,
)


class MeetingConnection:
  """Manages the websocket to the transcription server for one meeting session."""

  def __init__(
    self,
    url: str,
    session_id: str,
    on_final: Callable[[FinalMessage], None],
    on_error: Callable[[str], None],
    on_session_started: Callable[[SessionStartedMessage], None] | None = None,
    on_session_reset: Callable[[SessionResetMessage], None] | None = None,
    on_pong: Callable[[PongMessage], None] | None = None,
  ):
    self.url = url
    self.session_id = session_id
    self.on_final = on_final
    self.on_error = on_error
    self.on_session_started = on_session_started
    self.on_session_reset = on_session_reset
    self.on_pong = on_pong

    self.ws: ClientConnection | None = None
    self.connected = False

  async def connect(self, lang: str | None = None, params: SessionParams | None = None):
    """Open the websocket and start the session."""
    self.ws = await websockets.connect(self.url)
    self.connected = True
    await self._send_json(
      StartMessage(session_id=self.session_id, lang=lang, params=params or SessionParams())
    )

  async def disconnect(self):
    if self.ws:
      await self.ws.close()
      self.ws = None
      self.connected = False

  async def handle_messages(self):
    """Dispatch server events to callbacks until the connection closes."""
    if not self.ws:
      return

    try:
      async for message in self.ws:
        self._process_message(message)
    except ConnectionClosed as e:
      self.on_error(f"Connection closed: {e}")
    finally:
      self.connected = False

  def _process_message(self, message_json: str | bytes):
    try:
      event = deserialize_event(message_json)
    except ValidationError as e:
      self.on_error(f"Error processing message: {e}")
      return

    match event:
      case FinalMessage() as final:
        if final.session_id == self.session_id:
          self.on_final(final)

      case ErrorMessage() as error:
        if error.session_id in (self.session_id, None):
          self.on_error(error.message)

      case SessionStartedMessage() as started:
        if self.on_session_started:
          self.on_session_started(started)

      case SessionResetMessage() as reset:
        if self.on_session_reset:
          self.on_session_reset(reset)

      case PongMessage() as pong:
        if self.on_pong:
          self.on_pong(pong)

  async def send_audio(self, source: AudioSource, pcm: bytes):
    """Send one PCM16LE chunk as a tagged binary frame."""
    if not self.ws or not self.connected:
      return
    try:
      await self.ws.send(encode_audio_frame(self.session_id, source, pcm))
    except ConnectionClosed as e:
      self.on_error(f"Error sending audio data: {e}")

  async def send_speech_ended(self, source: AudioSource, timestamp: float | None = None):
    await self._send_json(
      SpeechEndedMessage(
        session_id=self.session_id,
        source=source,
        timestamp=timestamp if timestamp is not None else time.time() * 1000,
      )
    )

  async def end(self):
    await self._send_json(EndMessage(session_id=self.session_id))

  async def reset_session(self):
    await self._send_json(ResetSessionMessage(session_id=self.session_id))

  async def ping(self):
    await self._send_json(PingMessage(timestamp=time.time() * 1000))

  def is_connected(self) -> bool:
    return self.connected and self.ws is not None

  async def _send_json(self, message) -> None:
    if not self.ws or not self.connected:
      return
    try:
      await self.ws.send(serialize_message(message))
    except ConnectionClosed as e:
      self.on_error(f"Error sending {message.type}: {e}")
