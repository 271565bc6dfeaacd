from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from minutes.config import MinutesConfig
from minutes.debug_audio import DebugAudioRecorder
from minutes.logs import get_logger
from minutes.protocol import SessionProtocolHandler
from minutes.session import SessionKey, SessionStore
from minutes.transcript_log import TranscriptLog
from minutes.transcription import RemoteTranscriber, Transcriber
from minutes.websocket import WebSocketClientManager, WebSocketServer
from minutes.wire import OutboundMessage, serialize_message


class WebSocketMessageSink:
  """Sends protocol events as JSON text frames; events for a closed socket are dropped."""

  def __init__(self, websocket: ServerConnection):
    self.websocket = websocket
    self.logger = get_logger("ws/sink", websocket_id=websocket.id)

  async def send(self, message: OutboundMessage) -> None:
    try:
      await self.websocket.send(serialize_message(message))
    except ConnectionClosed:
      self.logger.debug("Dropped event for closed connection", type=message.type)


class TranscriptionServer:
  """
  Meeting transcription server.

  Owns the shared session store, the speech-to-text client and the transcript
  log, and gives every websocket connection its own protocol handler.
  """

  def __init__(
    self,
    config: MinutesConfig | None = None,
    transcriber: Transcriber | None = None,
    debug_audio_path: str | None = None,
  ):
    self.config = config or MinutesConfig()
    self.logger = get_logger("server")

    self.transcript_log = TranscriptLog()
    self.store = SessionStore(self.config.store, on_evict=self._on_evict)
    self.client_manager = WebSocketClientManager()
    self.debug_audio_path = debug_audio_path
    self.websocket_server: WebSocketServer | None = None

    self._owned_transcriber: RemoteTranscriber | None = None
    if transcriber is None:
      self._owned_transcriber = RemoteTranscriber(
        self.config.transcription, sample_rate=self.config.store.sample_rate
      )
      transcriber = self._owned_transcriber
    self.transcriber = transcriber

  def _on_evict(self, keys: list[SessionKey]) -> None:
    for key in keys:
      if key.is_base:
        self.transcript_log.discard(key.session_id)

  async def handle_connection(self, websocket: ServerConnection) -> None:
    """Serve one client until it disconnects."""
    recorder = (
      DebugAudioRecorder(self.debug_audio_path, self.config.store.sample_rate)
      if self.debug_audio_path
      else None
    )
    handler = SessionProtocolHandler(
      store=self.store,
      transcriber=self.transcriber,
      sink=WebSocketMessageSink(websocket),
      defaults=self.config.defaults,
      transcript_log=self.transcript_log,
      on_audio=recorder.write if recorder else None,
      name=str(websocket.id)[:8],
    )
    self.client_manager.add_client(websocket, handler)

    try:
      async for frame in websocket:
        if isinstance(frame, bytes):
          await handler.handle_binary(frame)
        else:
          await handler.handle_text(frame)
    finally:
      await self.client_manager.remove_client(websocket)
      if recorder is not None:
        recorder.close()

  async def run(self, host: str, port: int = 9090) -> None:
    """
    Run the transcription server until cancelled.

    :param host: Interface to bind.
    :param port: TCP port to listen on; 0 picks a free port.
    """
    self.store.start()
    self.websocket_server = WebSocketServer(self.handle_connection, host, port, max_size=2**22)
    try:
      await self.websocket_server.start()
    finally:
      self.logger.info("Shutting down")
      await self.store.stop()
      if self._owned_transcriber is not None:
        await self._owned_transcriber.aclose()
