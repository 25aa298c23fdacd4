"""Conversion between symbolic musical time and seconds.

A sequence can place an event in two ways:

- **Seconds** - a plain non-negative number (``0``, ``0.5``, ``1.25``) or a string
  holding one (``"1.5"``). Returned unchanged: it is already an offset from the
  start of playback.
- **Bars and beats** - ``"bar:beat"`` or ``"bar:beat:subdivision"``, all
  zero-indexed. There are four beats to a bar and a subdivision is a sixteenth
  (a quarter of a beat), so ``"0:1:2"`` is one and a half beats in.

Durations additionally accept note values: ``"4n"`` (quarter), ``"8n"``
(eighth), ``"16n"``, ``"2n"``, ``"1n"``, dotted (``"4n."``) and triplet (``"8t"``).

Every function here is pure - no clock is read - so the same logical event always
resolves to the same offset.
"""

import math
import re
import typing

import jamrelay.constants.durations
import jamrelay.errors


BEATS_PER_BAR = 4
SUBDIVISIONS_PER_BEAT = 4
DEFAULT_BPM = 120.0

TimeValue = typing.Union[int, float, str]

_NUMBER = r"(?:\d+(?:\.\d*)?|\.\d+)"
_SECONDS_RE = re.compile(rf"^{_NUMBER}$")
_BAR_BEAT_RE = re.compile(rf"^({_NUMBER}):({_NUMBER})(?::({_NUMBER}))?$")
_NOTE_VALUE_RE = re.compile(r"^(\d+)([nt])(\.?)$")


def finite_number (value: typing.Any) -> typing.Optional[float]:

	"""
	Return ``value`` as a float if it is a finite real number, else ``None``.

	Booleans are not numbers here, and integers too large for a float
	(``10 ** 400`` is valid JSON) count as non-finite.
	"""

	if isinstance(value, bool) or not isinstance(value, (int, float)):
		return None

	try:
		number = float(value)
	except OverflowError:
		return None

	return number if math.isfinite(number) else None


def seconds_per_beat (bpm: float) -> float:

	"""Length of one beat in seconds at the given tempo."""

	number = finite_number(bpm)

	if number is None or number <= 0:
		raise jamrelay.errors.InvalidTimeFormat(f"BPM must be a positive number, got {_describe(bpm)}")

	return 60.0 / number


def to_seconds (time: TimeValue, bpm: float = DEFAULT_BPM) -> float:

	"""
	Resolve an event time to seconds from the start of playback.

	Parameters:
		time: Seconds as a number or numeric string, or ``"bar:beat[:subdivision]"``.
		bpm: Tempo used for bar/beat times.

	Raises:
		InvalidTimeFormat: For negative numbers, malformed strings, or a
			non-positive tempo.

	Example:
		```python
		to_seconds(0.25, 120)      # 0.25
		to_seconds("0:1", 120)     # 0.5
		to_seconds("1:0", 120)     # 2.0
		to_seconds("0:0:2", 120)   # 0.25
		```
	"""

	beat_length = seconds_per_beat(bpm)

	if isinstance(time, bool):
		raise jamrelay.errors.InvalidTimeFormat(f"Invalid time {time!r}")

	if isinstance(time, (int, float)):

		seconds = finite_number(time)

		if seconds is None or seconds < 0:
			raise jamrelay.errors.InvalidTimeFormat(f"Time must be a non-negative number of seconds, got {_describe(time)}")

		return seconds

	if not isinstance(time, str):
		raise jamrelay.errors.InvalidTimeFormat(f"Invalid time {time!r}")

	text = time.strip()

	if _SECONDS_RE.match(text):
		seconds = float(text)
	else:
		seconds = _bar_beat_to_beats(text, time) * beat_length

	# Very long digit strings parse to inf rather than raising.
	if not math.isfinite(seconds):
		raise jamrelay.errors.InvalidTimeFormat(f"Time {_describe(time)} is out of range")

	return seconds


def duration_to_seconds (duration: TimeValue, bpm: float = DEFAULT_BPM) -> float:

	"""
	Resolve a note duration to seconds.

	Accepts everything ``to_seconds`` does plus note values such as ``"4n"``,
	``"8n."`` (dotted eighth) and ``"8t"`` (eighth-note triplet).

	Example:
		```python
		duration_to_seconds("4n", 120)    # 0.5
		duration_to_seconds("16n", 120)   # 0.125
		duration_to_seconds("4n.", 120)   # 0.75
		```
	"""

	if isinstance(duration, str):

		match = _NOTE_VALUE_RE.match(duration.strip())

		if match is not None:
			return _note_value_to_beats(match, duration) * seconds_per_beat(bpm)

	return to_seconds(duration, bpm)


def _describe (value: typing.Any) -> str:

	"""repr() for error messages, shortened so a huge value cannot flood the log."""

	if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 10 ** 30:
		return "an integer too large to represent"

	text = repr(value)

	return text if len(text) <= 60 else text[:57] + "..."


def _bar_beat_to_beats (text: str, original: str) -> float:

	"""Parse ``bar:beat[:subdivision]`` into a number of beats."""

	match = _BAR_BEAT_RE.match(text)

	if match is None:
		raise jamrelay.errors.InvalidTimeFormat(f"Malformed time {original!r} (expected seconds or 'bar:beat[:subdivision]')")

	bars = float(match.group(1))
	beats = float(match.group(2))
	subdivisions = float(match.group(3)) if match.group(3) is not None else 0.0

	return bars * BEATS_PER_BAR + beats + subdivisions / SUBDIVISIONS_PER_BEAT


def _note_value_to_beats (match: typing.Match[str], original: str) -> float:

	"""Convert a matched note value (``"8n"``, ``"4n."``, ``"8t"``) into beats."""

	denominator = int(match.group(1))

	if denominator not in jamrelay.constants.durations.NOTE_VALUES:
		raise jamrelay.errors.InvalidTimeFormat(f"Unsupported note value {original!r}")

	beats = jamrelay.constants.durations.NOTE_VALUES[denominator]

	if match.group(2) == "t":
		beats *= jamrelay.constants.durations.TRIPLET

	if match.group(3):
		beats *= jamrelay.constants.durations.DOTTED

	return beats
