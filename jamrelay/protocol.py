"""Relay wire protocol.

Messages are JSON text frames with a ``type`` discriminator:

- ``{"type": "info", "clientId": 3}`` - server to client, the assigned identity
- ``{"type": "ping"}`` - keepalive hint, no reply expected
- ``{"type": "sequence", "data": {...}}`` - a sequence to play
- ``{"type": "error", "message": "..."}`` - an error report

No binary framing, no compression, no version field. ``decode`` returns ``None``
for message types it does not know; they are ignored, never fatal.
"""

import dataclasses
import json
import typing

import jamrelay.errors
import jamrelay.sequence


INFO = "info"
PING = "ping"
SEQUENCE = "sequence"
ERROR = "error"


@dataclasses.dataclass (frozen=True)
class InfoMessage:

	client_id: int


@dataclasses.dataclass (frozen=True)
class PingMessage:

	pass


@dataclasses.dataclass (frozen=True)
class SequenceMessage:

	payload: jamrelay.sequence.Sequence


@dataclasses.dataclass (frozen=True)
class ErrorMessage:

	reason: str


Message = typing.Union[InfoMessage, PingMessage, SequenceMessage, ErrorMessage]


def to_dict (message: Message) -> typing.Dict[str, typing.Any]:

	"""Convert a message to its JSON-compatible wire object."""

	if isinstance(message, InfoMessage):
		return {"type": INFO, "clientId": message.client_id}

	if isinstance(message, PingMessage):
		return {"type": PING}

	if isinstance(message, SequenceMessage):
		return {"type": SEQUENCE, "data": message.payload.to_dict()}

	if isinstance(message, ErrorMessage):
		return {"type": ERROR, "message": message.reason}

	raise TypeError(f"Not a relay message: {message!r}")


def encode (message: Message) -> str:

	"""Serialise a message to a JSON text frame."""

	return json.dumps(to_dict(message))


def parse_json (raw: typing.Union[str, bytes]) -> typing.Any:

	"""
	Parse a raw frame as JSON.

	Raises:
		MalformedMessage: If the frame is not valid UTF-8 JSON, holds an integer
			longer than the interpreter will convert, or nests too deeply to parse.
	"""

	# ValueError covers JSONDecodeError, UnicodeDecodeError and the int digit limit.
	try:
		return json.loads(raw)
	except ValueError as exc:
		raise jamrelay.errors.MalformedMessage(f"Frame is not valid JSON: {exc}") from exc
	except RecursionError as exc:
		raise jamrelay.errors.MalformedMessage("Frame is nested too deeply") from exc


def decode (raw: typing.Union[str, bytes]) -> typing.Optional[Message]:

	"""
	Parse a text frame into a typed message.

	Returns ``None`` for a well-formed object whose ``type`` is not recognised.

	Raises:
		MalformedMessage: If the frame is not JSON, not an object, or a known
			message type with the wrong fields.
	"""

	data = parse_json(raw)

	if not isinstance(data, dict):
		raise jamrelay.errors.MalformedMessage("Frame must be a JSON object")

	message_type = data.get("type")

	if message_type == INFO:

		client_id = data.get("clientId")

		if isinstance(client_id, bool) or not isinstance(client_id, int):
			raise jamrelay.errors.MalformedMessage(f"info.clientId must be an integer, got {client_id!r}")

		return InfoMessage(client_id=client_id)

	if message_type == PING:
		return PingMessage()

	if message_type == SEQUENCE:

		# Older senders put the payload under "sequence" rather than "data".
		payload = data.get("data")

		if payload is None:
			payload = data.get("sequence")

		return SequenceMessage(payload=jamrelay.sequence.Sequence.from_dict(payload))

	if message_type == ERROR:

		reason = data.get("message", "")

		return ErrorMessage(reason=str(reason))

	return None
