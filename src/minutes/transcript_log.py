"""
Row-per-session transcript log.

Each (session, source) pair owns one row; every final transcript is appended to
that row, labelled with its source. Rows live in process memory only and are
discarded when their session ends.
"""

import threading
from typing import NamedTuple

from minutes.logs import get_logger
from minutes.session import SessionKey
from minutes.wire import AudioSource

SOURCE_LABELS = {
  AudioSource.MICROPHONE: "mic",
  AudioSource.SYSTEM_AUDIO: "system",
}


class LogEntry(NamedTuple):
  row: int
  """1-based row number."""

  text: str
  """Full accumulated text of the row after the append."""


class TranscriptLog:
  def __init__(self) -> None:
    self.logger = get_logger("log/transcript")
    self._rows: dict[int, str] = {}
    self._row_of: dict[SessionKey, int] = {}
    self._rows_by_session: dict[str, list[int]] = {}
    self._last_row = 0
    self._lock = threading.Lock()

  def append(self, session_id: str, source: AudioSource, text: str) -> LogEntry:
    """Append ``text`` to the row of this session and source, opening a new row on first use."""
    key = SessionKey(session_id, source)
    labelled = f"[{SOURCE_LABELS[source]}] {text}"

    with self._lock:
      row = self._row_of.get(key)
      if row is None:
        self._last_row += 1
        row = self._last_row
        self._rows[row] = labelled
        self._row_of[key] = row
        self._rows_by_session.setdefault(session_id, []).append(row)
        opened = True
      else:
        self._rows[row] = f"{self._rows[row]} {labelled}"
        opened = False
      entry = LogEntry(row=row, text=self._rows[row])

    if opened:
      self.logger.debug("Opened transcript row", session=str(key), row=row)
    return entry

  def reset(self, session_id: str) -> None:
    """Forget the row mapping of every source of ``session_id``; later appends open new rows."""
    with self._lock:
      for key in [key for key in self._row_of if key.session_id == session_id]:
        del self._row_of[key]
    self.logger.debug("Reset transcript rows", session_id=session_id)

  def discard(self, session_id: str) -> int:
    """Drop every row ever opened for ``session_id``. Returns the number of rows dropped."""
    with self._lock:
      for key in [key for key in self._row_of if key.session_id == session_id]:
        del self._row_of[key]
      rows = self._rows_by_session.pop(session_id, [])
      for row in rows:
        del self._rows[row]

    if rows:
      self.logger.debug("Discarded transcript rows", session_id=session_id, rows=len(rows))
    return len(rows)

  def row_for(self, key: SessionKey) -> str | None:
    with self._lock:
      row = self._row_of.get(key)
      return self._rows[row] if row is not None else None

  def rows(self) -> list[str]:
    """Text of every live row, in the order the rows were opened."""
    with self._lock:
      return list(self._rows.values())

  def __len__(self) -> int:
    with self._lock:
      return len(self._rows)
