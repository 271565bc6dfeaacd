"""Tests for MeetingTranscriber shutdown."""

import asyncio

import numpy as np
import pytest

from minutes.constants import FRAME_SIZE
from minutes.wire import AudioSource, FinalMessage

try:
  from minutes.client.core import MeetingTranscriber
except OSError:
  pytest.skip("PortAudio library is not available", allow_module_level=True)

MIC = AudioSource.MICROPHONE
SYSTEM = AudioSource.SYSTEM_AUDIO
LOUD = np.full(FRAME_SIZE, 0.3, dtype=np.float32)


class FakeConnection:
  """Records outgoing messages; answers speech_ended with a final unless told not to."""

  def __init__(self, transcriber: MeetingTranscriber, answer: bool = True):
    self.transcriber = transcriber
    self.answer = answer
    self.sent: list[tuple] = []

  def is_connected(self) -> bool:
    return True

  async def send_speech_ended(self, source, timestamp=None):
    self.sent.append(("speech_ended", source))
    if self.answer:
      asyncio.get_running_loop().call_soon(
        self.transcriber._handle_final,
        FinalMessage(
          text=f"last words from {source}",
          session_id=self.transcriber.session_id,
          confidence=0.9,
          source=source,
          buffer_duration=1.0,
        ),
      )

  async def end(self):
    self.sent.append(("end",))

  async def disconnect(self):
    self.sent.append(("disconnect",))


def make_transcriber(answer: bool = True, **kwargs) -> tuple[MeetingTranscriber, list]:
  finals = []
  transcriber = MeetingTranscriber(
    "ws://unused", system_device="loopback", on_final=finals.append, **kwargs
  )
  transcriber.connection = FakeConnection(transcriber, answer=answer)
  return transcriber, finals


class TestShutdown:
  @pytest.mark.asyncio
  async def test_utterance_in_progress_is_sent_before_end(self):
    transcriber, finals = make_transcriber()
    transcriber.pipelines[MIC].vad.process(LOUD)

    await transcriber._shutdown()

    assert transcriber.connection.sent == [("speech_ended", MIC), ("end",), ("disconnect",)]
    assert [final.source for final in finals] == [MIC]
    assert not transcriber.pipelines[MIC].vad.speaking

  @pytest.mark.asyncio
  async def test_silent_sources_send_only_end(self):
    transcriber, finals = make_transcriber()

    await transcriber._shutdown()

    assert transcriber.connection.sent == [("end",), ("disconnect",)]
    assert finals == []

  @pytest.mark.asyncio
  async def test_missing_transcript_does_not_block_shutdown(self):
    transcriber, finals = make_transcriber(answer=False, drain_timeout=0.05)
    transcriber.pipelines[MIC].vad.process(LOUD)
    transcriber.pipelines[SYSTEM].vad.process(LOUD)

    await transcriber._shutdown()

    assert transcriber.connection.sent == [
      ("speech_ended", MIC),
      ("speech_ended", SYSTEM),
      ("end",),
      ("disconnect",),
    ]
    assert finals == []
