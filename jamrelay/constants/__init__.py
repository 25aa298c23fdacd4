"""Constants for jamrelay.

This package contains:

- ``jamrelay.constants.durations`` - Note-value durations (``"4n"``, ``"8t"``) in beats
- ``jamrelay.constants.drums`` - Drum piece names, their fixed pitches and GM note numbers
- ``jamrelay.constants.velocity`` - Normalised velocity defaults and MIDI scaling bounds
"""
