"""WebSocket broadcast relay.

Start the relay with ``python -m jamrelay relay`` (default port 3002, path ``/ws``).

Every connected client is assigned an integer identity (1, 2, 3, ... - never
reused while the process lives) and told about it with an ``info`` message. Any
JSON frame a client sends is forwarded, byte for byte, to every *other* open
client. Frames that are not JSON are logged and dropped; the sender stays
connected.

The relay is a flat broadcast domain: no rooms, no history, no departure
notices. A peer that is disconnected when a message goes out never sees it.
"""

import asyncio
import http
import itertools
import logging
import typing

import websockets
import websockets.asyncio.server
import websockets.exceptions
import websockets.http11
import websockets.protocol

import jamrelay.errors
import jamrelay.event_emitter
import jamrelay.protocol


logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3002
DEFAULT_PATH = "/ws"

# A peer whose unsent data exceeds this many bytes is treated as failed.
DEFAULT_MAX_BUFFER = 1024 * 1024

# Close code for peers pruned because they could not keep up.
CLOSE_TOO_SLOW = 1008


class RelayServer:

	"""
	Async WebSocket server that fans each inbound message out to all other clients.

	Events emitted on ``relay.events``:

	- ``connect(client_id)``
	- ``disconnect(client_id)``
	- ``message(client_id, raw, recipients)`` - after a frame was forwarded
	"""

	def __init__ (
		self,
		host: str = DEFAULT_HOST,
		port: int = DEFAULT_PORT,
		path: typing.Optional[str] = DEFAULT_PATH,
		max_buffer: int = DEFAULT_MAX_BUFFER
	) -> None:

		self.host = host
		self._port = port
		self.path = path
		self.max_buffer = max_buffer
		self.events = jamrelay.event_emitter.EventEmitter()

		self._server: typing.Optional[websockets.asyncio.server.Server] = None
		self._clients: typing.Dict[websockets.asyncio.server.ServerConnection, int] = {}
		self._ids = itertools.count(1)
		self._closing: typing.Set[asyncio.Task] = set()


	@property
	def port (self) -> int:

		"""The bound port (resolves port 0 to the ephemeral port once started)."""

		if self._server is not None:
			for sock in self._server.sockets:
				return sock.getsockname()[1]

		return self._port

	@property
	def client_count (self) -> int:

		return len(self._clients)

	@property
	def client_ids (self) -> typing.List[int]:

		return sorted(self._clients.values())


	async def start (self) -> None:

		"""Start listening for connections."""

		self._server = await websockets.asyncio.server.serve(
			self._handle_client,
			self.host,
			self._port,
			process_request = self._check_path
		)

		logger.info(f"Relay listening on ws://{self.host}:{self.port}{self.path or ''}")

	async def stop (self) -> None:

		"""Close every connection and shut the server down."""

		if self._server is not None:
			self._server.close()
			await self._server.wait_closed()
			self._server = None
			logger.info("Relay stopped")

	async def serve_forever (self) -> None:

		"""Start the relay (if needed) and run until cancelled."""

		if self._server is None:
			await self.start()

		assert self._server is not None
		await self._server.serve_forever()


	def _check_path (
		self,
		connection: websockets.asyncio.server.ServerConnection,
		request: websockets.http11.Request
	) -> typing.Optional[websockets.http11.Response]:

		"""Reject handshakes for any path other than the configured one."""

		if not self.path:
			return None

		if request.path.split("?", 1)[0] != self.path:
			logger.info(f"Rejected connection for path {request.path!r}")
			return connection.respond(http.HTTPStatus.NOT_FOUND, "Not found\n")

		return None


	async def _handle_client (self, websocket: websockets.asyncio.server.ServerConnection) -> None:

		"""Register a client, tell it its identity, then relay its messages until it leaves."""

		client_id = next(self._ids)
		self._clients[websocket] = client_id

		logger.info(f"Client {client_id} connected from {websocket.remote_address} ({self.client_count} live)")
		self.events.emit_sync("connect", client_id)

		try:
			await websocket.send(jamrelay.protocol.encode(jamrelay.protocol.InfoMessage(client_id=client_id)))

			async for raw in websocket:
				self._relay(websocket, client_id, raw)

		except websockets.exceptions.ConnectionClosed as exc:
			logger.info(f"Client {client_id} connection lost: {exc}")

		finally:
			self._clients.pop(websocket, None)
			logger.info(f"Client {client_id} disconnected ({self.client_count} live)")
			self.events.emit_sync("disconnect", client_id)


	def _relay (
		self,
		sender: websockets.asyncio.server.ServerConnection,
		sender_id: int,
		raw: typing.Union[str, bytes]
	) -> None:

		"""Forward one frame from ``sender`` to every other open client without waiting."""

		try:
			jamrelay.protocol.parse_json(raw)
		except jamrelay.errors.MalformedMessage as exc:
			logger.warning(f"Dropped message from client {sender_id}: {exc}")
			return

		recipients: typing.List[websockets.asyncio.server.ServerConnection] = []

		for peer, peer_id in list(self._clients.items()):

			if peer is sender or peer.state is not websockets.protocol.State.OPEN:
				continue

			if self._is_congested(peer):
				self._prune(peer, peer_id)
				continue

			recipients.append(peer)

		websockets.broadcast(recipients, raw)

		logger.debug(f"Relayed {len(raw)} bytes from client {sender_id} to {len(recipients)} peers")

		self.events.emit_sync("message", sender_id, raw, len(recipients))


	def _is_congested (self, peer: websockets.asyncio.server.ServerConnection) -> bool:

		transport = getattr(peer, "transport", None)

		if transport is None:
			return False

		return transport.get_write_buffer_size() > self.max_buffer


	def _prune (self, peer: websockets.asyncio.server.ServerConnection, peer_id: int) -> None:

		"""Drop a peer that cannot keep up and close its connection in the background."""

		self._clients.pop(peer, None)
		logger.warning(f"Client {peer_id} cannot keep up - disconnecting")

		task = asyncio.get_running_loop().create_task(peer.close(CLOSE_TOO_SLOW, "Client too slow"))
		self._closing.add(task)
		task.add_done_callback(self._closing.discard)
