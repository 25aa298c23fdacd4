import time
import typing

import mido
import pytest

import jamrelay.errors
import jamrelay.sound_engine


class FakeMidiOut:

	"""MIDI output stub that records every message sent to it."""

	def __init__ (self) -> None:

		self.messages: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record an outgoing MIDI message."""

		self.messages.append(message)


	def close (self) -> None:

		"""Mark the fake device closed."""

		self.closed = True


# Module-level reference so tests can inspect the most recently opened FakeMidiOut.
_current_fake_output: typing.Optional[FakeMidiOut] = None


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	global _current_fake_output
	fake = FakeMidiOut()
	_current_fake_output = fake
	return fake


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI output for all tests that need it."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def fake_midi_out (patch_midi: None) -> typing.Callable[[], FakeMidiOut]:

	"""Return an accessor for the most recently opened fake MIDI output."""

	def _get () -> FakeMidiOut:
		assert _current_fake_output is not None, "No MIDI output has been opened"
		return _current_fake_output

	return _get


class FakeSoundEngine:

	"""
	Sound engine stub that records triggers instead of making sound.

	The clock is ``time.perf_counter()``, matching the real engines.
	"""

	def __init__ (self, available: bool = True) -> None:

		self.available = available
		self.triggers: typing.List[typing.Tuple[str, jamrelay.sound_engine.VoiceParams, float, float]] = []
		self.silence_count = 0

	def now (self) -> float:

		if not self.available:
			raise jamrelay.errors.EngineUnavailable("Fake engine not started")

		return time.perf_counter()

	def trigger_at (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams, absolute_time: float) -> None:

		if not self.available:
			raise jamrelay.errors.EngineUnavailable("Fake engine not started")

		self.triggers.append((voice_id, params, absolute_time, time.perf_counter()))

	def silence_all (self) -> None:

		self.silence_count += 1

	@property
	def voice_ids (self) -> typing.List[str]:

		return [voice_id for voice_id, _, _, _ in self.triggers]


@pytest.fixture
def engine () -> FakeSoundEngine:

	"""A recording sound engine that is ready to play."""

	return FakeSoundEngine()
