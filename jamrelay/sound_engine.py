"""Sound engine boundary and the scheduler-owned voice pool.

The scheduler needs exactly three things from an audio subsystem, captured by the
``SoundEngine`` protocol:

- ``trigger_at(voice_id, params, absolute_time)`` - sound a voice at a time on
  the engine clock (immediately if that time has passed)
- ``silence_all()`` - cut every voice off now, including release tails
- ``now()`` - the engine clock, in seconds

Timbre, envelopes and rendering are the engine's own configuration.

The ``VoicePool`` is the scheduler's bookkeeping of what each voice is currently
sounding. ``Voice.reset()`` returns a voice to its freshly constructed state -
no sounding notes, no pending release timers - which is how ``stop()`` guarantees
nothing from a previous playback bleeds into the next.
"""

import asyncio
import dataclasses
import itertools
import typing

import jamrelay.constants.drums
import jamrelay.pitch


PIANO = "piano"
GUITAR = "guitar"

VOICE_IDS: typing.Tuple[str, ...] = (PIANO, GUITAR) + tuple(jamrelay.constants.drums.VOICE_IDS.values())


@dataclasses.dataclass (frozen=True)
class VoiceParams:

	"""
	What to sound: pitch (``None`` for unpitched voices such as the snare),
	duration in seconds and normalised velocity.
	"""

	pitch: typing.Optional[str]
	duration: float
	velocity: float
	midi_note: typing.Optional[int] = None

	@property
	def frequency (self) -> typing.Optional[float]:

		if self.midi_note is None:
			return None

		return jamrelay.pitch.midi_to_frequency(self.midi_note)


@typing.runtime_checkable
class SoundEngine (typing.Protocol):

	"""
	Protocol for anything the scheduler can drive.
	"""

	def trigger_at (self, voice_id: str, params: VoiceParams, absolute_time: float) -> None:

		"""
		Sound ``voice_id`` with ``params`` at ``absolute_time`` on the engine clock.
		"""

		...

	def silence_all (self) -> None:

		"""
		Silence every voice immediately.
		"""

		...

	def now (self) -> float:

		"""
		Current engine time in seconds.
		"""

		...


class Voice:

	"""
	Tracks the notes one voice is sounding and the timers that will end them.
	"""

	def __init__ (self, voice_id: str) -> None:

		self.voice_id = voice_id
		self._sounding: typing.Dict[int, typing.Tuple[VoiceParams, typing.Optional[asyncio.TimerHandle]]] = {}
		self._keys = itertools.count()

	def sound (self, params: VoiceParams, release_handle: typing.Optional[asyncio.TimerHandle] = None) -> int:

		"""Record a sounding note and return a key for releasing it later."""

		key = next(self._keys)
		self._sounding[key] = (params, release_handle)

		return key

	def attach_release (self, key: int, release_handle: asyncio.TimerHandle) -> None:

		params, _ = self._sounding[key]
		self._sounding[key] = (params, release_handle)

	def release (self, key: int) -> typing.Optional[VoiceParams]:

		"""Forget a note that finished on its own. Returns ``None`` if it was already reset."""

		entry = self._sounding.pop(key, None)

		return entry[0] if entry is not None else None

	def reset (self) -> typing.List[VoiceParams]:

		"""
		Cancel all pending releases and forget every sounding note.

		Returns the params of the notes that were cut short.
		"""

		cut: typing.List[VoiceParams] = []

		for params, handle in self._sounding.values():
			if handle is not None:
				handle.cancel()
			cut.append(params)

		self._sounding.clear()
		self._keys = itertools.count()

		return cut

	@property
	def active (self) -> bool:

		return bool(self._sounding)

	@property
	def sounding (self) -> typing.List[VoiceParams]:

		return [params for params, _ in self._sounding.values()]


class VoicePool:

	"""
	One ``Voice`` per instrument voice, owned by a single scheduler.
	"""

	def __init__ (self, voice_ids: typing.Iterable[str] = VOICE_IDS) -> None:

		self._voices: typing.Dict[str, Voice] = {voice_id: Voice(voice_id) for voice_id in voice_ids}

	def get (self, voice_id: str) -> Voice:

		if voice_id not in self._voices:
			raise KeyError(f"Unknown voice {voice_id!r}")

		return self._voices[voice_id]

	def __iter__ (self) -> typing.Iterator[Voice]:

		return iter(self._voices.values())

	def reset_all (self) -> typing.List[typing.Tuple[str, VoiceParams]]:

		"""Reset every voice, returning ``(voice_id, params)`` for each note cut short."""

		cut: typing.List[typing.Tuple[str, VoiceParams]] = []

		for voice in self._voices.values():
			cut.extend((voice.voice_id, params) for params in voice.reset())

		return cut

	def is_idle (self) -> bool:

		return not any(voice.active for voice in self._voices.values())
