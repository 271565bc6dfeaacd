import asyncio
import time
from collections.abc import Awaitable, Callable

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed, InvalidMessage

from minutes.logs import get_logger
from minutes.protocol import SessionProtocolHandler


class WebSocketClientManager:
  """Tracks the protocol handler of every open connection."""

  def __init__(self):
    self.clients: dict[ServerConnection, SessionProtocolHandler] = {}
    self.start_times: dict[ServerConnection, float] = {}
    self.logger = get_logger("ws/clientmgr")

  def add_client(self, websocket: ServerConnection, handler: SessionProtocolHandler) -> None:
    self.clients[websocket] = handler
    self.start_times[websocket] = time.time()
    self.logger.debug("Client added", websocket_id=websocket.id, total=len(self.clients))

  async def remove_client(self, websocket: ServerConnection) -> None:
    """
    Stop tracking a connection and let its in-flight transcriptions finish.

    :param websocket: The connection whose handler should be released.
    """
    handler = self.clients.pop(websocket, None)
    started = self.start_times.pop(websocket, None)
    if handler is None:
      self.logger.debug("No client found for websocket during removal")
      return

    await handler.close()
    self.logger.debug(
      "Client removed",
      websocket_id=websocket.id,
      connected_for=time.time() - started if started else None,
      remaining=len(self.clients),
    )

  def __len__(self) -> int:
    return len(self.clients)


class WebSocketServer:
  """Wrapper around the websockets server that contains per-connection errors."""

  def __init__(
    self,
    handler: Callable[[ServerConnection], Awaitable[None]],
    host: str,
    port: int,
    **kwargs,
  ):
    self.handler = handler
    self.host = host
    self.port = port
    self.kwargs = kwargs
    self.logger = get_logger("ws/server")
    self.server: Server | None = None
    self.ready = asyncio.Event()

  @property
  def bound_port(self) -> int | None:
    """Actual listening port, useful when started on port 0."""
    if self.server is None:
      return None
    return self.server.sockets[0].getsockname()[1]

  async def start(self):
    self.logger.info("Starting WebSocket server", host=self.host, port=self.port)
    async with serve(
      self.error_handling_wrapper,
      self.host,
      self.port,
      **self.kwargs,
    ) as server:
      self.server = server
      self.ready.set()
      try:
        await server.serve_forever()
      finally:
        self.server = None
        self.ready.clear()

  async def error_handling_wrapper(self, websocket: ServerConnection):
    """Run the connection handler, logging connection errors without crashing the server."""
    addr = websocket.remote_address

    try:
      self.logger.info("Connection begin", address=addr, websocket_id=websocket.id)
      await self.handler(websocket)
    except (EOFError, InvalidMessage):
      self.logger.debug(
        "Connection from failed handshake (likely port scan/health check)",
        websocket_id=websocket.id,
      )
    except ConnectionClosed as e:
      self.logger.debug("Connection closed", error=e, websocket_id=websocket.id)
    except (KeyboardInterrupt, SystemExit):
      raise
    except Exception:
      self.logger.exception("Connection unexpected error", websocket_id=websocket.id)
    finally:
      self.logger.info("Connection end", address=addr, websocket_id=websocket.id)
