"""Typed sequence model.

A ``Sequence`` is the declarative description of what to play: an optional tempo
and up to three tracks. Piano and guitar tracks hold ``Note`` events, the drum
track holds ``Hit`` events. All three classes are frozen dataclasses, so two
sequences compare equal exactly when their content does and a sequence cannot
change underneath a playback.

JSON shape (as exchanged over the relay)::

    {
        "bpm": 120,
        "piano": [{"note": "C4", "time": 0, "duration": "4n", "velocity": 0.7}],
        "guitar": [{"note": "E2", "time": "0:1"}],
        "drums": [{"piece": "Kick", "time": 0}, {"piece": "Snare", "time": "0:1"}]
    }

Times are validated lazily by the scheduler so that one malformed time only
skips its own event; everything else is checked here and raises
``MalformedMessage``.
"""

import dataclasses
import logging
import typing

import jamrelay.constants.drums
import jamrelay.constants.velocity
import jamrelay.errors
import jamrelay.time_model


logger = logging.getLogger(__name__)

TRACK_NAMES: typing.Tuple[str, ...] = ("piano", "guitar", "drums")


@dataclasses.dataclass (frozen=True)
class Note:

	"""
	A pitched event on the piano or guitar track.
	"""

	pitch: str
	time: jamrelay.time_model.TimeValue = 0
	duration: typing.Optional[jamrelay.time_model.TimeValue] = None
	velocity: float = jamrelay.constants.velocity.DEFAULT_VELOCITY

	def to_dict (self) -> typing.Dict[str, typing.Any]:

		data: typing.Dict[str, typing.Any] = {"note": self.pitch, "time": self.time}

		if self.duration is not None:
			data["duration"] = self.duration

		data["velocity"] = self.velocity

		return data


@dataclasses.dataclass (frozen=True)
class Hit:

	"""
	A percussion event on the drum track.
	"""

	piece: str
	time: jamrelay.time_model.TimeValue = 0
	velocity: float = jamrelay.constants.velocity.DEFAULT_VELOCITY

	def to_dict (self) -> typing.Dict[str, typing.Any]:

		return {"piece": self.piece, "time": self.time, "velocity": self.velocity}


@dataclasses.dataclass (frozen=True)
class Sequence:

	"""
	A complete sequence: tempo plus piano, guitar and drum tracks.

	``bpm`` is ``None`` when the sender did not specify one; use
	``effective_bpm`` to get the tempo the receiver plays at.
	"""

	bpm: typing.Optional[float] = None
	piano: typing.Tuple[Note, ...] = ()
	guitar: typing.Tuple[Note, ...] = ()
	drums: typing.Tuple[Hit, ...] = ()

	@property
	def effective_bpm (self) -> float:

		"""The sequence tempo, or the default when none was given."""

		return self.bpm if self.bpm is not None else jamrelay.time_model.DEFAULT_BPM

	@property
	def event_count (self) -> int:

		"""Total number of notes and hits across all tracks."""

		return len(self.piano) + len(self.guitar) + len(self.drums)

	def is_empty (self) -> bool:

		return self.event_count == 0

	def to_dict (self) -> typing.Dict[str, typing.Any]:

		"""Serialise to the JSON-compatible wire shape."""

		data: typing.Dict[str, typing.Any] = {}

		if self.bpm is not None:
			data["bpm"] = self.bpm

		if self.piano:
			data["piano"] = [note.to_dict() for note in self.piano]

		if self.guitar:
			data["guitar"] = [note.to_dict() for note in self.guitar]

		if self.drums:
			data["drums"] = [hit.to_dict() for hit in self.drums]

		return data

	@classmethod
	def from_dict (cls, data: typing.Any) -> "Sequence":

		"""
		Validate a decoded JSON object and build a ``Sequence``.

		Raises:
			MalformedMessage: If the object does not match the sequence schema.
		"""

		if not isinstance(data, dict):
			raise jamrelay.errors.MalformedMessage(f"Sequence must be an object, got {type(data).__name__}")

		bpm = data.get("bpm")

		if bpm is not None and not _is_positive_number(bpm):
			raise jamrelay.errors.MalformedMessage("Sequence bpm must be a positive finite number")

		return cls(
			bpm = float(bpm) if bpm is not None else None,
			piano = tuple(_parse_note(item, "piano", i) for i, item in enumerate(_track(data, "piano"))),
			guitar = tuple(_parse_note(item, "guitar", i) for i, item in enumerate(_track(data, "guitar"))),
			drums = tuple(_parse_hit(item, i) for i, item in enumerate(_track(data, "drums")))
		)


def json_schema () -> typing.Dict[str, typing.Any]:

	"""
	Describe the sequence wire shape as a JSON Schema document.

	Tools that generate sequences (editors, language-model agents) can use this
	to build valid payloads for ``send``. ``from_dict`` remains the authority:
	it also clamps velocities and leaves time strings to the scheduler.
	"""

	time = {
		"oneOf": [
			{"type": "number", "minimum": 0},
			{"type": "string"},
		],
		"description": "Seconds, or 'bar:beat[:subdivision]' (zero-indexed, four beats to a bar)",
	}

	velocity = {"type": "number", "minimum": 0, "maximum": 1}

	note = {
		"type": "object",
		"properties": {
			"note": {"type": "string", "description": "Scientific pitch, e.g. 'C4' or 'F#3'"},
			"time": time,
			"duration": {
				"oneOf": [
					{"type": "number", "minimum": 0},
					{"type": "string"},
				],
				"description": "Seconds, 'bar:beat', or a note value such as '4n', '8n.' or '8t'",
			},
			"velocity": velocity,
		},
		"required": ["note"],
	}

	hit = {
		"type": "object",
		"properties": {
			"piece": {"type": "string", "enum": list(jamrelay.constants.drums.PIECES)},
			"time": time,
			"velocity": velocity,
		},
		"required": ["piece"],
	}

	return {
		"$schema": "https://json-schema.org/draft/2020-12/schema",
		"title": "Sequence",
		"type": "object",
		"properties": {
			"bpm": {"type": "number", "exclusiveMinimum": 0},
			"piano": {"type": "array", "items": note},
			"guitar": {"type": "array", "items": note},
			"drums": {"type": "array", "items": hit},
		},
	}


def _is_positive_number (value: typing.Any) -> bool:

	number = jamrelay.time_model.finite_number(value)

	return number is not None and number > 0


def _track (data: typing.Dict[str, typing.Any], name: str) -> typing.List[typing.Any]:

	"""Return a track's event list, treating an absent or null track as empty."""

	events = data.get(name)

	if events is None:
		return []

	if not isinstance(events, list):
		raise jamrelay.errors.MalformedMessage(f"Track {name!r} must be a list")

	return events


def _parse_time (item: typing.Dict[str, typing.Any], where: str) -> jamrelay.time_model.TimeValue:

	time = item.get("time", 0)

	if time is None:
		return 0

	if isinstance(time, bool) or not isinstance(time, (int, float, str)):
		raise jamrelay.errors.MalformedMessage(f"{where}: time must be a number or string, got {time!r}")

	return time


def _parse_velocity (item: typing.Dict[str, typing.Any], where: str) -> float:

	"""Read a velocity, clamping out-of-range values into [0, 1]."""

	velocity = item.get("velocity")

	if velocity is None:
		return jamrelay.constants.velocity.DEFAULT_VELOCITY

	number = jamrelay.time_model.finite_number(velocity)

	if number is None:
		raise jamrelay.errors.MalformedMessage(f"{where}: velocity must be a finite number")

	clamped = min(jamrelay.constants.velocity.MAX_VELOCITY, max(jamrelay.constants.velocity.MIN_VELOCITY, number))

	if clamped != velocity:
		logger.warning(f"{where}: velocity {velocity} clamped to {clamped}")

	return clamped


def _parse_note (item: typing.Any, track: str, index: int) -> Note:

	where = f"{track}[{index}]"

	if not isinstance(item, dict):
		raise jamrelay.errors.MalformedMessage(f"{where}: note must be an object")

	pitch = item.get("note")

	if not isinstance(pitch, str) or not pitch:
		raise jamrelay.errors.MalformedMessage(f"{where}: 'note' must be a non-empty string")

	duration = item.get("duration")

	if duration is not None and (isinstance(duration, bool) or not isinstance(duration, (int, float, str))):
		raise jamrelay.errors.MalformedMessage(f"{where}: duration must be a string or number, got {duration!r}")

	return Note(
		pitch = pitch,
		time = _parse_time(item, where),
		duration = duration,
		velocity = _parse_velocity(item, where)
	)


def _parse_hit (item: typing.Any, index: int) -> Hit:

	where = f"drums[{index}]"

	if not isinstance(item, dict):
		raise jamrelay.errors.MalformedMessage(f"{where}: hit must be an object")

	piece = item.get("piece")

	if piece not in jamrelay.constants.drums.PIECES:
		raise jamrelay.errors.MalformedMessage(
			f"{where}: unknown drum piece {piece!r} (expected one of {', '.join(jamrelay.constants.drums.PIECES)})"
		)

	return Hit(
		piece = piece,
		time = _parse_time(item, where),
		velocity = _parse_velocity(item, where)
	)
