"""
MeetingTranscriber: capture, segment and stream a meeting to the transcription server.
"""

import asyncio
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from minutes.client.audio import AudioCapture
from minutes.client.connection import MeetingConnection
from minutes.client.vad import VoiceActivityDetector
from minutes.logs import get_logger
from minutes.wire import AudioSource, FinalMessage, MeetingInput, SessionParams

logger = get_logger("cli")

DEFAULT_PARAMS = SessionParams(
  threshold=1.6,
  min_speech_ms=400,
  hangover_ms=400,
  max_silence_ms=2000,
  min_transcribe_duration_sec=2.0,
  mode="normal",
)


@dataclass
class SourcePipeline:
  capture: AudioCapture
  vad: VoiceActivityDetector


class MeetingTranscriber:
  """
  Runs one capture and one VAD per audio source against a single meeting session.

  Every captured frame is streamed to the server as it arrives; when a source's
  VAD declares the end of an utterance, ``speech_ended`` is sent for that source.
  """

  def __init__(
    self,
    url: str,
    mic_device: str | int | None = None,
    system_device: str | int | None = None,
    lang: str = "ja",
    meeting_input: MeetingInput | None = None,
    session_id: str | None = None,
    on_final: Callable[[FinalMessage], None] | None = None,
    on_error: Callable[[str], None] | None = None,
    drain_timeout: float = 5.0,
  ):
    self.url = url
    self.lang = lang
    self.session_id = session_id or f"meeting-{secrets.token_hex(4)}"
    self.params = DEFAULT_PARAMS.model_copy(update={"meeting_input": meeting_input})
    self.on_final = on_final or (lambda _: None)
    self.on_error = on_error or self._log_error
    self.drain_timeout = drain_timeout

    self.connection = MeetingConnection(
      url=url,
      session_id=self.session_id,
      on_final=self._handle_final,
      on_error=self._handle_error,
    )

    devices = {AudioSource.MICROPHONE: mic_device}
    if system_device is not None:
      devices[AudioSource.SYSTEM_AUDIO] = system_device
    self.pipelines: dict[AudioSource, SourcePipeline] = {
      source: SourcePipeline(
        capture=AudioCapture(on_error=self.on_error, audio_device=device),
        vad=VoiceActivityDetector(source, on_speech_end=self._on_speech_end),
      )
      for source, device in devices.items()
    }

    self._stop_event = asyncio.Event()
    self._background_tasks: set[asyncio.Task[Any]] = set()
    self._awaiting: set[AudioSource] = set()
    self._drained = asyncio.Event()

  async def run(self) -> None:
    """Stream until :meth:`stop` is called or the connection drops."""
    await self.connection.connect(lang=self.lang, params=self.params)
    logger.info("Session started", session_id=self.session_id, sources=list(self.pipelines))

    self._spawn(self.connection.handle_messages(), name="messages")
    for source, pipeline in self.pipelines.items():
      pipeline.capture.start_recording()
      self._spawn(self._pump(source, pipeline), name=f"pump-{source}")

    try:
      await self._stop_event.wait()
    finally:
      await self._shutdown()

  def stop(self) -> None:
    self._stop_event.set()

  async def _pump(self, source: AudioSource, pipeline: SourcePipeline) -> None:
    while not self._stop_event.is_set():
      frame = await pipeline.capture.get_audio_data()
      if frame is None:
        if not self.connection.is_connected():
          self.on_error("Connection lost")
          self.stop()
        continue
      decision = pipeline.vad.process(frame)
      await self.connection.send_audio(source, decision.pcm)

  def _on_speech_end(self, source: AudioSource, timestamp: float) -> None:
    self._spawn(self.connection.send_speech_ended(source, timestamp), name=f"speech-ended-{source}")

  def _handle_final(self, message: FinalMessage) -> None:
    self._settle(message.source)
    self.on_final(message)

  def _handle_error(self, message: str) -> None:
    self._settle(*self._awaiting)
    self.on_error(message)

  def _settle(self, *sources: AudioSource) -> None:
    self._awaiting.difference_update(sources)
    if not self._awaiting:
      self._drained.set()

  async def _shutdown(self) -> None:
    for pipeline in self.pipelines.values():
      pipeline.capture.stop_recording()

    if self.connection.is_connected():
      await self._drain()
    for pipeline in self.pipelines.values():
      pipeline.vad.cancel()

    await self.connection.end()
    await self.connection.disconnect()

    for task in list(self._background_tasks):
      task.cancel()
    await asyncio.gather(*self._background_tasks, return_exceptions=True)
    logger.info("Session finished", session_id=self.session_id)

  async def _drain(self) -> None:
    """Report utterances cut off by the stop and wait briefly for their transcripts."""
    self._drained.clear()
    for source, pipeline in self.pipelines.items():
      if pipeline.vad.flush():
        self._awaiting.add(source)
        await self.connection.send_speech_ended(source)
    if not self._awaiting:
      return

    try:
      await asyncio.wait_for(self._drained.wait(), timeout=self.drain_timeout)
    except TimeoutError:
      logger.info(
        "No transcript for the final utterance",
        sources=[str(source) for source in self._awaiting],
        timeout=self.drain_timeout,
      )

  def _spawn(self, coro, name: str) -> None:
    task = asyncio.create_task(coro, name=name)
    self._background_tasks.add(task)
    task.add_done_callback(self._background_tasks.discard)

  @staticmethod
  def _log_error(message: str) -> None:
    logger.error("Client error", message=message)
