"""Session records held by the session store."""

from dataclasses import dataclass, field
from typing import NamedTuple

from minutes.wire import AudioSource, MeetingInput


class SessionKey(NamedTuple):
  """
  Composite key of a buffering context.

  ``source=None`` addresses the base (logical) session created by ``start``; a key
  with a source addresses the per-source session derived from it.
  """

  session_id: str
  source: AudioSource | None = None

  @property
  def is_base(self) -> bool:
    return self.source is None

  def base(self) -> "SessionKey":
    return SessionKey(self.session_id)

  def __str__(self) -> str:
    if self.source is None:
      return self.session_id
    return f"{self.session_id}_{self.source}"


@dataclass(frozen=True)
class SessionSettings:
  """Per-session transcription configuration, fixed at creation."""

  language: str = "ja"
  mode: str = "normal"
  min_transcribe_duration_sec: float = 2.0
  meeting_input: MeetingInput | None = None


@dataclass
class Session:
  key: SessionKey
  settings: SessionSettings
  created_at: float
  last_activity: float
  buffer_start_time: float
  buffer: bytearray = field(default_factory=bytearray)
  is_active: bool = True

  log_row: int | None = None
  """Row of this session in the transcript log, None until the first final result."""

  log_text: str = ""
  """Text accumulated in the transcript log row."""

  @property
  def session_id(self) -> str:
    return self.key.session_id

  @property
  def source(self) -> AudioSource | None:
    return self.key.source


MUTABLE_FIELDS = frozenset({"is_active", "log_row", "log_text"})
"""Fields that update_session may change; everything else is owned by the store."""
