"""
In-memory session store: per-session audio buffers, lifecycle, and idle eviction.
"""

import asyncio
import threading
import time
from collections.abc import Callable

from minutes.config import SessionStoreConfig
from minutes.constants import BYTES_PER_SAMPLE
from minutes.format import Bytes, Seconds
from minutes.logs import get_logger
from minutes.session.models import MUTABLE_FIELDS, Session, SessionKey, SessionSettings
from minutes.wire import AudioSource, MeetingInput


class SessionStore:
  """
  Maps session keys to buffered audio plus metadata.

  A store is an explicitly constructed object with its own lifecycle: ``start()``
  launches the periodic idle sweep on the running event loop and ``stop()`` cancels
  it, so tests can create isolated stores without shared process state.
  ``on_evict`` is called with the keys removed by each sweep that removes any.

  Buffers only change through :meth:`append_audio`, :meth:`clear_buffer` and
  :meth:`take_buffer`, so a buffer always holds exactly the bytes appended since
  its last clear.

  Thread Safety:
    The server drives the store from a single event loop, but every public
    method also takes an internal lock so callers on other threads keep the
    append/clear/take invariants.
  """

  def __init__(
    self,
    config: SessionStoreConfig | None = None,
    clock: Callable[[], float] = time.monotonic,
    on_evict: Callable[[list[SessionKey]], None] | None = None,
  ) -> None:
    self.config = config or SessionStoreConfig()
    self.clock = clock
    self.on_evict = on_evict
    self.logger = get_logger("session/store")

    self._sessions: dict[SessionKey, Session] = {}
    self._lock = threading.Lock()
    self._sweep_task: asyncio.Task | None = None

  # Lifecycle

  def start(self) -> None:
    """Start the background idle sweep. Must be called from a running event loop."""
    if self._sweep_task is not None and not self._sweep_task.done():
      return
    self._sweep_task = asyncio.create_task(self._sweep_loop(), name="session-sweep")
    self.logger.info(
      "Session sweep started",
      interval=Seconds(self.config.sweep_interval),
      timeout=Seconds(self.config.session_timeout),
    )

  async def stop(self) -> None:
    """Stop the background sweep, if running."""
    task, self._sweep_task = self._sweep_task, None
    if task is None:
      return
    task.cancel()
    try:
      await task
    except asyncio.CancelledError:
      pass
    self.logger.info("Session sweep stopped")

  async def _sweep_loop(self) -> None:
    while True:
      await asyncio.sleep(self.config.sweep_interval)
      try:
        self.sweep()
      except Exception:
        self.logger.exception("Session sweep failed")

  def sweep(self) -> list[SessionKey]:
    """Delete every session idle for longer than the timeout. Returns the evicted keys."""
    now = self.clock()
    with self._lock:
      expired = [
        key
        for key, session in self._sessions.items()
        if now - session.last_activity > self.config.session_timeout
      ]
      for key in expired:
        del self._sessions[key]

    for key in expired:
      self.logger.info("Evicted idle session", session=str(key))
    if expired and self.on_evict is not None:
      self.on_evict(expired)
    return expired

  # Creation and lookup

  def create_session(
    self,
    key: SessionKey | str,
    language: str = "ja",
    mode: str = "normal",
    min_transcribe_duration_sec: float = 2.0,
    meeting_input: MeetingInput | None = None,
  ) -> Session:
    """Insert a fresh session with an empty buffer, replacing any existing entry for the key."""
    key = _as_key(key)
    settings = SessionSettings(
      language=language,
      mode=mode,
      min_transcribe_duration_sec=min_transcribe_duration_sec,
      meeting_input=meeting_input,
    )
    with self._lock:
      replaced = key in self._sessions
      session = self._new_session(key, settings)
      self._sessions[key] = session

    self.logger.info(
      "Created session",
      session=str(key),
      language=language,
      mode=mode,
      replaced=replaced,
    )
    return session

  def derive_session(self, session_id: str, source: AudioSource) -> Session | None:
    """
    Resolve the per-source session for ``session_id``, creating it on first use.

    A new derived session copies the base session's settings. Returns None when
    neither the derived nor the base session exists.
    """
    key = SessionKey(session_id, source)
    with self._lock:
      session = self._sessions.get(key)
      if session is not None:
        return session

      base = self._sessions.get(key.base())
      if base is None:
        return None

      session = self._new_session(key, base.settings)
      self._sessions[key] = session

    self.logger.info("Created derived session", session=str(key))
    return session

  def get_session(self, key: SessionKey | str) -> Session | None:
    with self._lock:
      return self._sessions.get(_as_key(key))

  def update_session(self, key: SessionKey | str, **changes: object) -> bool:
    """
    Merge ``changes`` into a session and refresh its activity time.

    Only ``is_active``, ``log_row`` and ``log_text`` may change; settings and
    buffers are immutable through this path.

    :returns: False if the session does not exist.
    :raises ValueError: if ``changes`` names any other field.
    """
    illegal = set(changes) - MUTABLE_FIELDS
    if illegal:
      raise ValueError(f"Cannot update session fields: {sorted(illegal)}")

    key = _as_key(key)
    with self._lock:
      session = self._sessions.get(key)
      if session is None:
        return False
      for name, value in changes.items():
        setattr(session, name, value)
      session.last_activity = self.clock()
    return True

  def delete_session(self, key: SessionKey | str) -> bool:
    key = _as_key(key)
    with self._lock:
      removed = self._sessions.pop(key, None) is not None

    if removed:
      self.logger.info("Deleted session", session=str(key))
    return removed

  def delete_sessions(self, session_id: str) -> list[SessionKey]:
    """Delete the base session and every per-source session of ``session_id``."""
    with self._lock:
      doomed = [key for key in self._sessions if key.session_id == session_id]
      for key in doomed:
        del self._sessions[key]

    if doomed:
      self.logger.info(
        "Deleted sessions", session_id=session_id, keys=[str(key) for key in doomed]
      )
    return doomed

  def keys(self) -> list[SessionKey]:
    with self._lock:
      return list(self._sessions)

  def __len__(self) -> int:
    with self._lock:
      return len(self._sessions)

  def __contains__(self, key: object) -> bool:
    if isinstance(key, str):
      key = SessionKey(key)
    with self._lock:
      return key in self._sessions

  # Buffers

  def append_audio(self, key: SessionKey | str, data: bytes) -> bool:
    """
    Append PCM bytes to a session buffer.

    Unknown sessions and appends that would exceed ``max_buffer_bytes`` are
    dropped whole and logged; the buffer is left untouched. An accepted append
    refreshes the activity time of the session and of its base session.

    :returns: True if the bytes were appended.
    """
    key = _as_key(key)
    with self._lock:
      session = self._sessions.get(key)
      if session is None:
        dropped_reason = "unknown session"
      elif len(session.buffer) + len(data) > self.config.max_buffer_bytes:
        dropped_reason = "buffer full"
        buffered = len(session.buffer)
      else:
        session.buffer.extend(data)
        self._touch(session)
        return True

    if session is None:
      self.logger.warning("Dropped audio", session=str(key), reason=dropped_reason)
    else:
      self.logger.warning(
        "Dropped audio",
        session=str(key),
        reason=dropped_reason,
        buffered=Bytes(buffered),
        incoming=Bytes(len(data)),
        limit=Bytes(self.config.max_buffer_bytes),
      )
    return False

  def get_buffer(self, key: SessionKey | str) -> bytes | None:
    with self._lock:
      session = self._sessions.get(_as_key(key))
      return bytes(session.buffer) if session is not None else None

  def clear_buffer(self, key: SessionKey | str) -> None:
    """Empty a session buffer without deleting the session."""
    with self._lock:
      session = self._sessions.get(_as_key(key))
      if session is not None:
        self._reset_buffer(session)

  def take_buffer(self, key: SessionKey | str) -> bytes | None:
    """
    Atomically read and clear a session buffer.

    :returns: the buffered bytes (possibly empty), or None if the session does not exist.
    """
    with self._lock:
      session = self._sessions.get(_as_key(key))
      if session is None:
        return None
      data = bytes(session.buffer)
      self._reset_buffer(session)
      return data

  def get_buffer_duration(self, key: SessionKey | str) -> float:
    """Seconds of audio currently buffered, assuming 16-bit mono PCM."""
    with self._lock:
      session = self._sessions.get(_as_key(key))
      byte_count = len(session.buffer) if session is not None else 0
    return self.duration_of(byte_count)

  def duration_of(self, byte_count: int) -> float:
    return (byte_count / BYTES_PER_SAMPLE) / self.config.sample_rate

  def _new_session(self, key: SessionKey, settings: SessionSettings) -> Session:
    now = self.clock()
    return Session(
      key=key,
      settings=settings,
      created_at=now,
      last_activity=now,
      buffer_start_time=now,
    )

  def _reset_buffer(self, session: Session) -> None:
    now = self.clock()
    session.buffer = bytearray()
    session.buffer_start_time = now
    session.last_activity = now

  def _touch(self, session: Session) -> None:
    # A meeting stays alive while any of its sources is streaming.
    now = self.clock()
    session.last_activity = now
    if not session.key.is_base:
      base = self._sessions.get(session.key.base())
      if base is not None:
        base.last_activity = now


def _as_key(key: SessionKey | str) -> SessionKey:
  return key if isinstance(key, SessionKey) else SessionKey(key)
