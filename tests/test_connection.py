import asyncio
import json
import typing

import pytest
import websockets.asyncio.client

import jamrelay.connection
import jamrelay.protocol
import jamrelay.relay
import jamrelay.scheduler
import jamrelay.sequence


SEQUENCE = {"bpm": 120, "drums": [{"piece": "Kick", "time": 0}, {"piece": "Snare", "time": "0:1"}]}


def _frame (message_type: str, **fields: typing.Any) -> str:

	return json.dumps({"type": message_type, **fields})


async def _until (condition: typing.Callable[[], bool], timeout: float = 3.0) -> None:

	"""Poll until ``condition()`` holds or fail after ``timeout`` seconds."""

	async def poll () -> None:
		while not condition():
			await asyncio.sleep(0.01)

	await asyncio.wait_for(poll(), timeout=timeout)


# --- Backoff ---


def test_reconnect_delay_doubles_up_to_cap () -> None:

	"""1s, 2s, 4s, 8s, 16s, then capped at 30s."""

	assert [jamrelay.connection.reconnect_delay(n) for n in range(7)] == [1, 2, 4, 8, 16, 30, 30]


def test_reconnect_delay_custom_base_and_cap () -> None:

	assert jamrelay.connection.reconnect_delay(0, base=0.5, cap=3) == 0.5
	assert jamrelay.connection.reconnect_delay(3, base=0.5, cap=3) == 3
	assert jamrelay.connection.reconnect_delay(10_000) == 30


def test_reconnect_delay_rejects_negative_attempt () -> None:

	with pytest.raises(ValueError):
		jamrelay.connection.reconnect_delay(-1)


@pytest.mark.parametrize("kwargs", [
	{"ping_interval": 0},
	{"reconnect_base": 0},
	{"reconnect_base": 5, "reconnect_cap": 1},
])
def test_invalid_timing_settings_raise (kwargs: typing.Dict[str, float]) -> None:

	with pytest.raises(ValueError):
		jamrelay.connection.ConnectionManager(**kwargs)


def test_starts_disconnected () -> None:

	manager = jamrelay.connection.ConnectionManager()

	assert manager.state == jamrelay.connection.DISCONNECTED
	assert manager.reconnect_attempt == 0
	assert manager.client_id is None
	assert not manager.connected


# --- Inbound dispatch ---


def test_duplicate_sequence_is_delivered_once () -> None:

	"""An identical sequence arriving twice only reaches subscribers the first time."""

	manager = jamrelay.connection.ConnectionManager()
	received: list[jamrelay.sequence.Sequence] = []
	manager.on_sequence(received.append)

	raw = _frame("sequence", data=SEQUENCE)

	manager._handle_message(0, raw)
	manager._handle_message(0, raw)

	assert len(received) == 1
	assert received[0] == jamrelay.sequence.Sequence.from_dict(SEQUENCE)
	assert manager.last_sequence == received[0]


def test_changed_sequence_is_delivered () -> None:

	"""Any difference in content counts as a new sequence."""

	manager = jamrelay.connection.ConnectionManager()
	received: list[jamrelay.sequence.Sequence] = []
	manager.on_sequence(received.append)

	manager._handle_message(0, _frame("sequence", data=SEQUENCE))
	manager._handle_message(0, _frame("sequence", data={**SEQUENCE, "bpm": 100}))
	manager._handle_message(0, _frame("sequence", data=SEQUENCE))

	assert [sequence.bpm for sequence in received] == [120, 100, 120]


def test_messages_from_stale_socket_are_ignored () -> None:

	"""Frames tagged with a superseded connection generation are dropped."""

	manager = jamrelay.connection.ConnectionManager()
	received: list[jamrelay.sequence.Sequence] = []
	manager.on_sequence(received.append)

	manager._handle_message(5, _frame("sequence", data=SEQUENCE))

	assert received == []


def test_info_sets_client_id () -> None:

	manager = jamrelay.connection.ConnectionManager()
	ids: list[int] = []
	manager.events.on("info", ids.append)

	manager._handle_message(0, _frame("info", clientId=4))

	assert manager.client_id == 4
	assert ids == [4]


def test_error_message_is_surfaced () -> None:

	manager = jamrelay.connection.ConnectionManager()
	errors: list[str] = []
	manager.events.on("error", errors.append)

	manager._handle_message(0, _frame("error", message="relay overloaded"))

	assert errors == ["relay overloaded"]


@pytest.mark.parametrize("raw", [
	"not json",
	'{"type": "sequence", "data": {"drums": [{"piece": "Gong"}]}}',
	'{"type": "chat", "text": "hi"}',
	'{"type": "ping"}',
	'{"type": "sequence", "data": {"bpm": ' + "1" * 400 + "}}",
	'{"type": "sequence", "data": {"piano": [{"note": "C4", "velocity": ' + "9" * 400 + "}]}}",
	"[" * 100000,
], ids=["not-json", "unknown-piece", "unknown-type", "ping", "huge-bpm", "huge-velocity", "deep-nesting"])
def test_malformed_and_unknown_messages_are_ignored (raw: str) -> None:

	"""Bad or unrecognised frames never raise and never deliver a sequence."""

	manager = jamrelay.connection.ConnectionManager()
	received: list[jamrelay.sequence.Sequence] = []
	manager.on_sequence(received.append)

	manager._handle_message(0, raw)

	assert received == []


def test_unexpected_decode_failure_is_logged_and_dropped (monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:

	"""An error nobody anticipated drops the frame; the next frame is still handled."""

	manager = jamrelay.connection.ConnectionManager()
	received: list[jamrelay.sequence.Sequence] = []
	manager.on_sequence(received.append)

	decode = jamrelay.protocol.decode
	calls: list[str] = []

	def failing_once (raw: str) -> typing.Optional[jamrelay.protocol.Message]:
		calls.append(raw)
		if len(calls) == 1:
			raise OverflowError("int too large to convert to float")
		return decode(raw)

	monkeypatch.setattr(jamrelay.protocol, "decode", failing_once)

	manager._handle_message(0, _frame("sequence", data=SEQUENCE))

	assert received == []
	assert "OverflowError" in caplog.text

	manager._handle_message(0, _frame("sequence", data=SEQUENCE))

	assert received == [jamrelay.sequence.Sequence.from_dict(SEQUENCE)]


@pytest.mark.asyncio
async def test_send_while_disconnected_is_dropped (caplog: pytest.LogCaptureFixture) -> None:

	"""Sending without an open socket returns False with a warning; nothing is queued."""

	manager = jamrelay.connection.ConnectionManager()

	sent = await manager.send(jamrelay.protocol.PingMessage())

	assert sent is False
	assert "connection not open" in caplog.text


# --- Against a live relay ---


async def _start_relay (port: int = 0) -> jamrelay.relay.RelayServer:

	relay = jamrelay.relay.RelayServer(host="127.0.0.1", port=port)
	await relay.start()
	return relay


def _manager (relay: jamrelay.relay.RelayServer, **kwargs: typing.Any) -> jamrelay.connection.ConnectionManager:

	return jamrelay.connection.ConnectionManager(url=f"ws://127.0.0.1:{relay.port}/ws", **kwargs)


@pytest.mark.asyncio
async def test_sequence_reaches_peer_but_not_sender () -> None:

	"""A sequence sent by one client is played by the other and not echoed back."""

	relay = await _start_relay()

	sender = _manager(relay)
	receiver = _manager(relay)

	sent_back: list[jamrelay.sequence.Sequence] = []
	arrived = asyncio.Event()
	received: list[jamrelay.sequence.Sequence] = []

	def on_sequence (sequence: jamrelay.sequence.Sequence) -> None:
		received.append(sequence)
		arrived.set()

	sender.on_sequence(sent_back.append)
	receiver.on_sequence(on_sequence)

	try:
		sender.start()
		receiver.start()

		await sender.wait_connected(timeout=3.0)
		await receiver.wait_connected(timeout=3.0)
		await _until(lambda: sender.client_id is not None and receiver.client_id is not None)

		assert {sender.client_id, receiver.client_id} == {1, 2}

		sequence = jamrelay.sequence.Sequence.from_dict(SEQUENCE)
		assert await sender.send_sequence(sequence) is True

		await asyncio.wait_for(arrived.wait(), timeout=3.0)
		await asyncio.sleep(0.1)

		assert received == [sequence]
		assert sent_back == []

	finally:
		await sender.stop()
		await receiver.stop()
		await relay.stop()


@pytest.mark.asyncio
async def test_out_of_range_sequence_keeps_connection_open () -> None:

	"""A peer's sequence with a 400-digit bpm is dropped; later sequences still play."""

	relay = await _start_relay()
	receiver = _manager(relay)
	received: list[jamrelay.sequence.Sequence] = []
	states: list[str] = []

	receiver.on_sequence(received.append)
	receiver.events.on("state", states.append)

	try:
		receiver.start()
		await receiver.wait_connected(timeout=3.0)

		async with websockets.asyncio.client.connect(f"ws://127.0.0.1:{relay.port}/ws") as peer:

			await peer.recv()
			await peer.send('{"type": "sequence", "data": {"bpm": ' + "1" * 400 + "}}")
			await peer.send(_frame("sequence", data=SEQUENCE))

			await _until(lambda: len(received) == 1)

		assert received == [jamrelay.sequence.Sequence.from_dict(SEQUENCE)]
		assert receiver.connected
		assert receiver.reconnect_attempt == 0
		assert jamrelay.connection.DISCONNECTED not in states

	finally:
		await receiver.stop()
		await relay.stop()


@pytest.mark.asyncio
async def test_reconnects_after_relay_restart () -> None:

	"""When the relay goes away the client backs off, reconnects, and resets its attempt counter."""

	relay = await _start_relay()
	port = relay.port

	manager = _manager(relay, reconnect_base=0.05, reconnect_cap=0.2)
	states: list[str] = []
	lost: list[Exception] = []
	manager.events.on("state", states.append)
	manager.events.on("connection_lost", lost.append)

	try:
		manager.start()
		await manager.wait_connected(timeout=3.0)

		await relay.stop()
		await _until(lambda: manager.reconnect_attempt > 0)

		assert not manager.connected
		assert manager.client_id is None

		relay = await _start_relay(port)

		await manager.wait_connected(timeout=3.0)

		assert manager.reconnect_attempt == 0
		assert states[:2] == [jamrelay.connection.CONNECTING, jamrelay.connection.CONNECTED]
		assert jamrelay.connection.DISCONNECTED in states
		assert states[-1] == jamrelay.connection.CONNECTED
		assert lost

	finally:
		await manager.stop()
		await relay.stop()


@pytest.mark.asyncio
async def test_stop_stays_disconnected () -> None:

	"""After stop() the manager does not reconnect."""

	relay = await _start_relay()
	manager = _manager(relay, reconnect_base=0.05, reconnect_cap=0.1)

	try:
		manager.start()
		await manager.wait_connected(timeout=3.0)

		await manager.stop()
		await _until(lambda: relay.client_count == 0)
		await asyncio.sleep(0.2)

		assert manager.state == jamrelay.connection.DISCONNECTED
		assert relay.client_count == 0

	finally:
		await relay.stop()


@pytest.mark.asyncio
async def test_keepalive_pings_while_connected () -> None:

	"""A ping hint goes out on every interval while the socket is open."""

	relay = await _start_relay()
	pings: list[int] = []

	def on_message (sender_id: int, raw: str, recipients: int) -> None:
		if json.loads(raw) == {"type": "ping"}:
			pings.append(sender_id)

	relay.events.on("message", on_message)
	manager = _manager(relay, ping_interval=0.05)

	try:
		manager.start()
		await manager.wait_connected(timeout=3.0)
		await _until(lambda: len(pings) >= 2)

		assert set(pings) == {1}

	finally:
		await manager.stop()
		await relay.stop()


@pytest.mark.asyncio
async def test_duplicate_sequence_plays_once (engine: typing.Any) -> None:

	"""Wired to a scheduler, a duplicated sequence message results in a single play()."""

	manager = jamrelay.connection.ConnectionManager()
	scheduler = jamrelay.scheduler.SequenceScheduler(engine)
	plays: list[jamrelay.sequence.Sequence] = []

	scheduler.events.on("play", lambda sequence, handle: plays.append(sequence))
	manager.on_sequence(scheduler.play)

	raw = _frame("sequence", data=SEQUENCE)

	manager._handle_message(0, raw)
	manager._handle_message(0, raw)

	assert len(plays) == 1

	scheduler.stop()
