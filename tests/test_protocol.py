import json
import sys

import pytest

import jamrelay.errors
import jamrelay.protocol
import jamrelay.sequence


NEEDS_INT_DIGIT_LIMIT = pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="interpreter has no int digit limit")


def test_encode_info () -> None:

	"""Info messages carry the client id under clientId."""

	raw = jamrelay.protocol.encode(jamrelay.protocol.InfoMessage(client_id=3))

	assert json.loads(raw) == {"type": "info", "clientId": 3}


def test_encode_ping_and_error () -> None:

	assert json.loads(jamrelay.protocol.encode(jamrelay.protocol.PingMessage())) == {"type": "ping"}
	assert json.loads(jamrelay.protocol.encode(jamrelay.protocol.ErrorMessage(reason="bad"))) == {"type": "error", "message": "bad"}


def test_encode_sequence_puts_payload_under_data () -> None:

	"""The sequence travels as the data field."""

	sequence = jamrelay.sequence.Sequence.from_dict({"bpm": 120, "drums": [{"piece": "Kick", "time": 0}]})
	raw = jamrelay.protocol.encode(jamrelay.protocol.SequenceMessage(payload=sequence))

	assert json.loads(raw) == {"type": "sequence", "data": {"bpm": 120.0, "drums": [{"piece": "Kick", "time": 0, "velocity": 0.7}]}}


def test_decode_sequence () -> None:

	message = jamrelay.protocol.decode('{"type": "sequence", "data": {"piano": [{"note": "A4"}]}}')

	assert isinstance(message, jamrelay.protocol.SequenceMessage)
	assert message.payload.piano[0].pitch == "A4"


def test_decode_sequence_under_legacy_key () -> None:

	"""Payloads under "sequence" are accepted when "data" is absent."""

	message = jamrelay.protocol.decode('{"type": "sequence", "sequence": {"bpm": 90}}')

	assert isinstance(message, jamrelay.protocol.SequenceMessage)
	assert message.payload.bpm == 90.0


def test_decode_accepts_bytes () -> None:

	message = jamrelay.protocol.decode(b'{"type": "info", "clientId": 7}')

	assert message == jamrelay.protocol.InfoMessage(client_id=7)


def test_decode_ping_and_error () -> None:

	assert jamrelay.protocol.decode('{"type": "ping"}') == jamrelay.protocol.PingMessage()
	assert jamrelay.protocol.decode('{"type": "error", "message": "oops"}') == jamrelay.protocol.ErrorMessage(reason="oops")


def test_unknown_type_decodes_to_none () -> None:

	"""Unrecognised message types are ignorable, not errors."""

	assert jamrelay.protocol.decode('{"type": "chat", "text": "hi"}') is None
	assert jamrelay.protocol.decode('{"text": "no type"}') is None


@pytest.mark.parametrize("raw", [
	"not json",
	"[1, 2, 3]",
	'"just a string"',
	b"\xff\xfe",
	'{"type": "info", "clientId": "one"}',
	'{"type": "info", "clientId": true}',
	'{"type": "sequence"}',
	'{"type": "sequence", "data": {"drums": [{"piece": "Gong"}]}}',
])
def test_malformed_frames_raise (raw: object) -> None:

	"""Non-JSON frames, non-objects and bad known messages raise MalformedMessage."""

	with pytest.raises(jamrelay.errors.MalformedMessage):
		jamrelay.protocol.decode(raw)  # type: ignore[arg-type]


@pytest.mark.parametrize("raw", [
	pytest.param('{"type": "sequence", "data": {"bpm": ' + "1" * 5000 + "}}", id="huge-integer", marks=NEEDS_INT_DIGIT_LIMIT),
	pytest.param("[" * 100000 + "]" * 100000, id="deep-nesting"),
])
def test_unparseable_json_raises_malformed (raw: str) -> None:

	"""Integers past the conversion limit and runaway nesting are malformed frames, not crashes."""

	with pytest.raises(jamrelay.errors.MalformedMessage):
		jamrelay.protocol.parse_json(raw)

	with pytest.raises(jamrelay.errors.MalformedMessage):
		jamrelay.protocol.decode(raw)


def test_huge_integer_bpm_is_malformed () -> None:

	"""A 400-digit bpm is valid JSON but not a usable tempo."""

	with pytest.raises(jamrelay.errors.MalformedMessage):
		jamrelay.protocol.decode('{"type": "sequence", "data": {"bpm": ' + "1" * 400 + "}}")


def test_to_dict_rejects_non_messages () -> None:

	with pytest.raises(TypeError):
		jamrelay.protocol.to_dict("hello")  # type: ignore[arg-type]
