"""
Per-connection session protocol.

A :class:`SessionProtocolHandler` turns decoded client messages into session store
operations and transcription calls, and reports results through a
:class:`MessageSink`. It never touches the transport directly, so it can be
driven in tests with plain message objects.
"""

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Protocol

from pydantic import ValidationError

from minutes.config import SessionDefaults
from minutes.format import Bytes, Seconds
from minutes.logs import get_logger
from minutes.session import SessionKey, SessionStore
from minutes.transcript_log import TranscriptLog
from minutes.transcription import Transcriber, TranscriptionError, TranscriptionResult
from minutes.wire import (
  AudioMessage,
  AudioSource,
  EndMessage,
  ErrorMessage,
  FinalMessage,
  FrameDecodeError,
  InboundMessage,
  OutboundMessage,
  PingMessage,
  PongMessage,
  ResetSessionMessage,
  SessionResetMessage,
  SessionStartedMessage,
  SpeechEndedMessage,
  StartedParams,
  StartMessage,
  decode_audio_frame,
  deserialize_message,
  is_tagged_audio_frame,
)


class MessageSink(Protocol):
  async def send(self, message: OutboundMessage) -> None:
    """Deliver one event to the client. Must not raise if the client is gone."""
    ...


AudioObserver = Callable[[SessionKey, bytes], None]
"""Called with every chunk of audio accepted into a session buffer."""


class SessionProtocolHandler:
  """
  Message handling for one client connection.

  Sessions live in the shared :class:`SessionStore`; this handler only remembers
  which session the connection started last (for untagged audio) and which
  transcriptions it still has in flight.

  ``speech_ended`` takes the utterance out of the store synchronously, before any
  await, so audio arriving while the backend is busy always belongs to the next
  utterance. Transcription then runs in a background task; tasks for the same
  session key are serialized so ``final`` events keep utterance order per source.
  """

  def __init__(
    self,
    store: SessionStore,
    transcriber: Transcriber,
    sink: MessageSink,
    defaults: SessionDefaults | None = None,
    transcript_log: TranscriptLog | None = None,
    on_audio: AudioObserver | None = None,
    name: str = "client",
  ) -> None:
    self.store = store
    self.transcriber = transcriber
    self.sink = sink
    self.defaults = defaults or SessionDefaults()
    self.transcript_log = transcript_log
    self.on_audio = on_audio
    self.logger = get_logger("proto/handler", client=name)

    self._pending: set[asyncio.Task] = set()
    self._utterance_locks: dict[SessionKey, asyncio.Lock] = {}
    self._lock_users: dict[SessionKey, int] = {}
    self._last_started: str | None = None
    self._warned_untagged = False

  # Frame entry points

  async def handle_text(self, data: str | bytes) -> None:
    """Decode and handle one JSON control message."""
    try:
      message = deserialize_message(data)
    except ValidationError as e:
      first = e.errors()[0]
      self.logger.warning(
        "Rejected malformed message", error_count=e.error_count(), error=first["msg"]
      )
      await self.sink.send(ErrorMessage(message=f"Invalid message: {first['msg']}"))
      return
    await self.handle(message)

  async def handle_binary(self, data: bytes) -> None:
    """Handle one binary audio frame, tagged or in the deprecated untagged form."""
    if is_tagged_audio_frame(data):
      try:
        message = decode_audio_frame(data)
      except FrameDecodeError as e:
        self.logger.warning("Rejected malformed audio frame", error=str(e))
        await self.sink.send(ErrorMessage(message=f"Invalid audio frame: {e}"))
        return
      await self.handle(message)
      return

    if not self._warned_untagged:
      self._warned_untagged = True
      self.logger.warning(
        "Received untagged audio; this form is deprecated, send tagged audio frames instead"
      )

    if self._last_started is None:
      self.logger.debug("Dropped untagged audio before any session started", audio=Bytes(len(data)))
      return

    await self.handle(
      AudioMessage(session_id=self._last_started, source=AudioSource.MICROPHONE, buffer=data)
    )

  async def handle(self, message: InboundMessage | AudioMessage) -> None:
    """Dispatch one decoded message."""
    match message:
      case StartMessage():
        await self._on_start(message)
      case AudioMessage():
        self._on_audio(message)
      case SpeechEndedMessage():
        self._on_speech_ended(message)
      case EndMessage():
        self._on_end(message)
      case ResetSessionMessage():
        await self._on_reset_session(message)
      case PingMessage():
        await self.sink.send(PongMessage(timestamp=message.timestamp))

  # Message handlers

  async def _on_start(self, message: StartMessage) -> None:
    params = message.params
    language = message.lang or self.defaults.language
    mode = params.mode or self.defaults.mode
    min_duration = (
      params.min_transcribe_duration_sec
      if params.min_transcribe_duration_sec is not None
      else self.defaults.min_transcribe_duration_sec
    )
    threshold = params.threshold if params.threshold is not None else self.defaults.threshold

    self.store.create_session(
      SessionKey(message.session_id),
      language=language,
      mode=mode,
      min_transcribe_duration_sec=min_duration,
      meeting_input=params.meeting_input,
    )
    self._last_started = message.session_id

    await self.sink.send(
      SessionStartedMessage(
        session_id=message.session_id,
        params=StartedParams(threshold=threshold, min_transcribe_duration_sec=min_duration),
      )
    )

  def _on_audio(self, message: AudioMessage) -> None:
    session = self.store.derive_session(message.session_id, message.source)
    if session is None:
      self.logger.debug(
        "Dropped audio for unknown session",
        session_id=message.session_id,
        source=str(message.source),
      )
      return

    if self.store.append_audio(session.key, message.buffer) and self.on_audio is not None:
      self.on_audio(session.key, message.buffer)

  def _on_speech_ended(self, message: SpeechEndedMessage) -> None:
    key = SessionKey(message.session_id, message.source)
    session = self.store.get_session(key)
    if session is None:
      self.logger.info("Speech ended for unknown session", session=str(key))
      return

    pcm = self.store.take_buffer(key)
    if not pcm:
      self.logger.debug("Speech ended with no buffered audio", session=str(key))
      return

    task = asyncio.create_task(
      self._transcribe_utterance(key, pcm, session.settings.language),
      name=f"transcribe-{key}",
    )
    self._pending.add(task)
    task.add_done_callback(self._pending.discard)

  def _on_end(self, message: EndMessage) -> None:
    removed = self.store.delete_sessions(message.session_id)
    if self._last_started == message.session_id:
      self._last_started = None

    if self.transcript_log is not None:
      self.transcript_log.discard(message.session_id)

    self.logger.info("Session ended", session_id=message.session_id, removed=len(removed))

  async def _on_reset_session(self, message: ResetSessionMessage) -> None:
    for key in self.store.keys():
      if key.session_id == message.session_id:
        self.store.update_session(key, log_row=None, log_text="")
    if self.transcript_log is not None:
      self.transcript_log.reset(message.session_id)

    self.logger.info("Session reset", session_id=message.session_id)
    await self.sink.send(SessionResetMessage(session_id=message.session_id))

  # Transcription

  async def _transcribe_utterance(self, key: SessionKey, pcm: bytes, language: str) -> None:
    assert key.source is not None
    async with self._serialized(key):
      duration = self.store.duration_of(len(pcm))
      self.logger.debug("Transcribing utterance", session=str(key), duration=Seconds(duration))

      try:
        result = await self.transcriber.transcribe(pcm, language)
        if not result.has_speech:
          self.logger.debug("No speech detected", session=str(key), duration=Seconds(duration))
          return

        final = FinalMessage(
          text=result.text,
          session_id=key.session_id,
          confidence=result.confidence,
          source=key.source,
          buffer_duration=duration,
        )
      except TranscriptionError as e:
        self.logger.warning("Transcription failed", session=str(key), error=str(e))
        await self._send_failure(key)
        return
      except Exception:
        self.logger.exception("Unexpected error while transcribing", session=str(key))
        await self._send_failure(key)
        return

      await self.sink.send(final)
      self._record(key, result)

  @asynccontextmanager
  async def _serialized(self, key: SessionKey):
    """Hold the utterance lock of ``key``; the lock is dropped once nothing waits on it."""
    lock = self._utterance_locks.setdefault(key, asyncio.Lock())
    self._lock_users[key] = self._lock_users.get(key, 0) + 1
    try:
      async with lock:
        yield
    finally:
      self._lock_users[key] -= 1
      if not self._lock_users[key]:
        del self._lock_users[key]
        del self._utterance_locks[key]

  async def _send_failure(self, key: SessionKey) -> None:
    await self.sink.send(
      ErrorMessage(message="Speech-to-text processing failed", session_id=key.session_id)
    )

  def _record(self, key: SessionKey, result: TranscriptionResult) -> None:
    if self.transcript_log is None or key not in self.store:
      return
    assert key.source is not None
    entry = self.transcript_log.append(key.session_id, key.source, result.text)
    self.store.update_session(key, log_row=entry.row, log_text=entry.text)

  # Lifecycle

  @property
  def pending(self) -> int:
    return len(self._pending)

  async def wait_idle(self) -> None:
    """Wait until every in-flight transcription has finished."""
    while self._pending:
      await asyncio.wait(list(self._pending))

  async def close(self) -> None:
    """Let in-flight transcriptions finish. Sessions stay in the store until ended or evicted."""
    if self._pending:
      self.logger.debug("Waiting for pending transcriptions", pending=len(self._pending))
    await self.wait_idle()
