"""Client-side connection to the relay.

``ConnectionManager`` keeps one logical connection open to the relay for as long
as it runs:

- On ``start()`` it connects straight away (state ``connecting``).
- When the socket opens the state becomes ``connected`` and the reconnect
  counter resets to 0.
- When the socket closes or fails the state becomes ``disconnected`` and a
  reconnect is scheduled after ``min(1s * 2**attempt, 30s)``. When it fires the
  attempt counter increments and the state goes back to ``connecting``.
- While connected, a ``{"type": "ping"}`` hint is sent every 30 seconds. Dead
  links are detected by the WebSocket protocol's own ping/pong, which the
  websockets library runs in both directions.

Inbound ``sequence`` messages are handed to subscribers only when they differ
from the last one delivered, so a duplicated message does not restart playback.

Messages sent while not connected are dropped with a warning - never queued.
"""

import asyncio
import logging
import typing

import websockets.asyncio.client
import websockets.exceptions

import jamrelay.errors
import jamrelay.event_emitter
import jamrelay.protocol
import jamrelay.sequence


logger = logging.getLogger(__name__)

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

DEFAULT_URL = "ws://localhost:3002/ws"
DEFAULT_PING_INTERVAL = 30.0
DEFAULT_RECONNECT_BASE = 1.0
DEFAULT_RECONNECT_CAP = 30.0

# WebSocket protocol-level ping/pong used to detect dead links.
DEFAULT_TRANSPORT_PING_INTERVAL = 20.0
DEFAULT_TRANSPORT_PING_TIMEOUT = 20.0


def reconnect_delay (attempt: int, base: float = DEFAULT_RECONNECT_BASE, cap: float = DEFAULT_RECONNECT_CAP) -> float:

	"""
	Seconds to wait before reconnect number ``attempt`` (0-based).

	Example:
		```python
		[reconnect_delay(n) for n in range(7)]
		# [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
		```
	"""

	if attempt < 0:
		raise ValueError("Reconnect attempt cannot be negative")

	# Cap the exponent too, so huge attempt counts cannot overflow.
	return min(base * 2 ** min(attempt, 62), cap)


class ConnectionManager:

	"""
	Maintains a reconnecting WebSocket connection to the relay and dispatches messages.

	Events emitted on ``manager.events``:

	- ``state(state)`` - on every state transition
	- ``info(client_id)`` - the relay assigned an identity
	- ``sequence(sequence)`` - a new (non-duplicate) sequence arrived
	- ``error(reason)`` - the relay reported an error
	- ``connection_lost(error)`` - the socket closed or failed (a ``ConnectionLost``)
	"""

	def __init__ (
		self,
		url: str = DEFAULT_URL,
		ping_interval: float = DEFAULT_PING_INTERVAL,
		reconnect_base: float = DEFAULT_RECONNECT_BASE,
		reconnect_cap: float = DEFAULT_RECONNECT_CAP,
		transport_ping_interval: typing.Optional[float] = DEFAULT_TRANSPORT_PING_INTERVAL,
		transport_ping_timeout: typing.Optional[float] = DEFAULT_TRANSPORT_PING_TIMEOUT
	) -> None:

		if ping_interval <= 0:
			raise ValueError("Ping interval must be positive")

		if reconnect_base <= 0 or reconnect_cap < reconnect_base:
			raise ValueError("Reconnect delays must be positive and the cap at least the base")

		self.url = url
		self.ping_interval = ping_interval
		self.reconnect_base = reconnect_base
		self.reconnect_cap = reconnect_cap
		self.transport_ping_interval = transport_ping_interval
		self.transport_ping_timeout = transport_ping_timeout

		self.state = DISCONNECTED
		self.reconnect_attempt = 0
		self.client_id: typing.Optional[int] = None
		self.events = jamrelay.event_emitter.EventEmitter()

		self._socket: typing.Optional[websockets.asyncio.client.ClientConnection] = None
		self._generation = 0
		self._running = False
		self._task: typing.Optional[asyncio.Task] = None
		self._connected = asyncio.Event()
		self._last_sequence: typing.Optional[jamrelay.sequence.Sequence] = None


	@property
	def connected (self) -> bool:

		return self.state == CONNECTED

	@property
	def last_sequence (self) -> typing.Optional[jamrelay.sequence.Sequence]:

		return self._last_sequence


	def on_sequence (self, callback: typing.Callable[[jamrelay.sequence.Sequence], typing.Any]) -> None:

		"""Subscribe to new sequences (e.g. ``manager.on_sequence(scheduler.play)``)."""

		self.events.on("sequence", callback)


	def start (self) -> None:

		"""Begin connecting. Must be called from within the running event loop."""

		if self._task is not None:
			return

		self._running = True
		self._set_state(CONNECTING)
		self._task = asyncio.get_running_loop().create_task(self._run())

	async def stop (self) -> None:

		"""Cancel any pending reconnect, close the socket and stay disconnected."""

		self._running = False

		if self._task is not None:
			self._task.cancel()

			try:
				await self._task
			except asyncio.CancelledError:
				pass

			self._task = None

		self._set_state(DISCONNECTED)

	async def wait_connected (self, timeout: typing.Optional[float] = None) -> None:

		"""Wait until the manager is connected (raises ``asyncio.TimeoutError`` on timeout)."""

		await asyncio.wait_for(self._connected.wait(), timeout)


	async def send (self, message: jamrelay.protocol.Message) -> bool:

		"""
		Send a message to the relay.

		Returns False (and logs a warning) if not connected; the message is dropped.
		"""

		websocket = self._socket

		if self.state != CONNECTED or websocket is None:
			logger.warning("Cannot send message: connection not open")
			return False

		try:
			await websocket.send(jamrelay.protocol.encode(message))
		except websockets.exceptions.ConnectionClosed as exc:
			logger.warning(f"Send failed, connection closed: {exc}")
			return False

		return True

	async def send_sequence (self, sequence: jamrelay.sequence.Sequence) -> bool:

		return await self.send(jamrelay.protocol.SequenceMessage(payload=sequence))


	async def _run (self) -> None:

		"""Connect, serve until the socket closes, back off, repeat."""

		while self._running:

			self._set_state(CONNECTING)
			await self._connect_once()

			if not self._running:
				break

			delay = reconnect_delay(self.reconnect_attempt, self.reconnect_base, self.reconnect_cap)
			logger.info(f"Reconnecting to {self.url} in {delay:g}s (attempt {self.reconnect_attempt + 1})")

			await asyncio.sleep(delay)

			self.reconnect_attempt += 1

	async def _connect_once (self) -> None:

		"""Run one socket from open to close. Never raises for network failures."""

		logger.info(f"Connecting to {self.url} (attempt {self.reconnect_attempt + 1})")

		lost: typing.Optional[jamrelay.errors.ConnectionLost] = None

		try:
			async with websockets.asyncio.client.connect(
				self.url,
				ping_interval = self.transport_ping_interval,
				ping_timeout = self.transport_ping_timeout
			) as websocket:

				generation = self._on_open(websocket)
				keepalive = asyncio.get_running_loop().create_task(self._keepalive(websocket, generation))

				try:
					async for raw in websocket:
						self._handle_message(generation, raw)
				finally:
					keepalive.cancel()

				lost = jamrelay.errors.ConnectionLost(f"Closed by relay ({websocket.close_code})")

		except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
			lost = jamrelay.errors.ConnectionLost(str(exc) or type(exc).__name__)

		finally:
			self._on_close(lost)


	def _on_open (self, websocket: websockets.asyncio.client.ClientConnection) -> int:

		"""Make ``websocket`` the current socket and return its generation number."""

		self._generation += 1
		self._socket = websocket
		self.reconnect_attempt = 0

		logger.info(f"Connected to {self.url}")

		self._set_state(CONNECTED)

		return self._generation

	def _on_close (self, lost: typing.Optional[jamrelay.errors.ConnectionLost]) -> None:

		# Any late events from this socket belong to a stale generation from now on.
		self._generation += 1
		self._socket = None
		self.client_id = None

		if lost is not None:
			logger.warning(f"Connection to {self.url} lost: {lost}")
			self.events.emit_sync("connection_lost", lost)

		self._set_state(DISCONNECTED)


	def _set_state (self, state: str) -> None:

		if state == self.state:
			return

		logger.debug(f"Connection state {self.state} -> {state}")
		self.state = state

		if state == CONNECTED:
			self._connected.set()
		else:
			self._connected.clear()

		self.events.emit_sync("state", state)


	async def _keepalive (self, websocket: websockets.asyncio.client.ClientConnection, generation: int) -> None:

		"""Send a ping hint on a fixed interval while this socket is current."""

		ping = jamrelay.protocol.encode(jamrelay.protocol.PingMessage())

		while True:

			await asyncio.sleep(self.ping_interval)

			if generation != self._generation or self.state != CONNECTED:
				return

			try:
				await websocket.send(ping)
			except websockets.exceptions.ConnectionClosed:
				return


	def _handle_message (self, generation: int, raw: typing.Union[str, bytes]) -> None:

		"""Decode and dispatch one inbound frame from the socket of ``generation``."""

		if generation != self._generation:
			logger.debug("Ignoring message from a superseded connection")
			return

		try:
			message = jamrelay.protocol.decode(raw)
			self._dispatch(message)

		except jamrelay.errors.MalformedMessage as exc:
			logger.warning(f"Dropped malformed message: {exc}")

		# One bad frame must not end the receive loop.
		except Exception as exc:
			logger.exception(f"Dropped message that failed to process: {type(exc).__name__}")


	def _dispatch (self, message: typing.Optional[jamrelay.protocol.Message]) -> None:

		if isinstance(message, jamrelay.protocol.InfoMessage):
			logger.info(f"Assigned client ID: {message.client_id}")
			self.client_id = message.client_id
			self.events.emit_sync("info", message.client_id)

		elif isinstance(message, jamrelay.protocol.SequenceMessage):
			self._deliver_sequence(message.payload)

		elif isinstance(message, jamrelay.protocol.ErrorMessage):
			logger.error(f"Relay error: {message.reason}")
			self.events.emit_sync("error", message.reason)

		elif message is None:
			logger.debug("Ignoring message of unknown type")


	def _deliver_sequence (self, sequence: jamrelay.sequence.Sequence) -> None:

		if sequence == self._last_sequence:
			logger.info("Sequence unchanged, skipping")
			return

		self._last_sequence = sequence

		logger.info(f"Received sequence ({sequence.event_count} events)")

		self.events.emit_sync("sequence", sequence)
