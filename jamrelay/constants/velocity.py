"""Velocity constants.

Sequences carry velocity as a normalised float in ``[0, 1]``. Engines that speak
MIDI scale it to the 0-127 attack range.
"""

DEFAULT_VELOCITY = 0.7

MIN_VELOCITY = 0.0
MAX_VELOCITY = 1.0

# MIDI standard range
MIN_MIDI_VELOCITY = 0
MAX_MIDI_VELOCITY = 127


def to_midi (velocity: float) -> int:

	"""Scale a normalised velocity to a MIDI velocity, clamped to 0-127."""

	scaled = int(round(velocity * MAX_MIDI_VELOCITY))

	return max(MIN_MIDI_VELOCITY, min(MAX_MIDI_VELOCITY, scaled))
