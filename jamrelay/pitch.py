"""Pitch name utilities.

Notes in a sequence are named ``<Pitch><Octave>`` - ``"C4"``, ``"F#3"``, ``"Bb2"``.
Convention: **C4 = 60** (Middle C), so C1 = 24 and A4 = 69 = 440 Hz.

Module-level constants:
- `NOTE_NAME_TO_PC`: Maps note names (e.g., `"C"`, `"F#"`, `"Bb"`) to pitch classes (0-11)
- `PC_TO_NOTE_NAME`: Maps pitch classes to note names

Module-level helpers:
- `name_to_midi(name)`: Parse a pitch name into a MIDI note number. Raises `ValueError`
  for anything that is not a valid name in the MIDI range.
- `midi_to_frequency(note)`: Equal-tempered frequency in Hz.
"""

import re
import typing


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"C": 0,
	"C#": 1,
	"Db": 1,
	"D": 2,
	"D#": 3,
	"Eb": 3,
	"E": 4,
	"F": 5,
	"F#": 6,
	"Gb": 6,
	"G": 7,
	"G#": 8,
	"Ab": 8,
	"A": 9,
	"A#": 10,
	"Bb": 10,
	"B": 11,
}

PC_TO_NOTE_NAME: typing.List[str] = [
	"C",
	"C#",
	"D",
	"D#",
	"E",
	"F",
	"F#",
	"G",
	"G#",
	"A",
	"A#",
	"B",
]

A4_MIDI = 69
A4_FREQUENCY = 440.0

_PITCH_RE = re.compile(r"^([A-Ga-g][#b]?)(-?\d+)$")


def name_to_midi (name: str) -> int:

	"""
	Convert a pitch name like ``"F#3"`` to its MIDI note number.

	The letter is case-insensitive; the accidental (``#`` or ``b``) is not.

	Example:
		```python
		name_to_midi("C4")   # 60
		name_to_midi("Bb3")  # 58
		name_to_midi("C1")   # 24
		```
	"""

	match = _PITCH_RE.match(name.strip()) if isinstance(name, str) else None

	if match is None:
		raise ValueError(f"Unknown pitch name {name!r}")

	letter, octave = match.group(1), int(match.group(2))
	letter = letter[0].upper() + letter[1:]

	if letter not in NOTE_NAME_TO_PC:
		raise ValueError(f"Unknown pitch name {name!r}")

	note = (octave + 1) * 12 + NOTE_NAME_TO_PC[letter]

	if not 0 <= note <= 127:
		raise ValueError(f"Pitch {name!r} is outside the MIDI range")

	return note


def midi_to_name (note: int) -> str:

	"""Return the sharp-spelled name of a MIDI note number (60 -> ``"C4"``)."""

	return f"{PC_TO_NOTE_NAME[note % 12]}{note // 12 - 1}"


def midi_to_frequency (note: int) -> float:

	"""Equal-tempered frequency of a MIDI note, A4 = 440 Hz."""

	return A4_FREQUENCY * 2.0 ** ((note - A4_MIDI) / 12.0)
