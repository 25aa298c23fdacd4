"""Note-value duration constants.

Sequences express durations the way a score does - ``"4n"`` is a quarter note,
``"8n"`` an eighth, ``"16n"`` a sixteenth. A trailing ``.`` makes the value dotted
(x1.5) and a ``t`` suffix instead of ``n`` makes it a triplet (x2/3).

All values are in **beats**, where 1.0 = one quarter note::

    import jamrelay.constants.durations as dur

    dur.NOTE_VALUES[8]     # 0.5 beats
    dur.DOTTED             # 1.5
"""

import typing


# Denominator of the note value -> length in beats.
NOTE_VALUES: typing.Dict[int, float] = {
	1: 4.0,
	2: 2.0,
	4: 1.0,
	8: 0.5,
	16: 0.25,
	32: 0.125,
	64: 0.0625,
}

DOTTED = 1.5
TRIPLET = 2 / 3

# Default note lengths per track when a note carries no duration.
PIANO_DEFAULT = "8n"
GUITAR_DEFAULT = "4n"

# Drums ignore any supplied duration.
SNARE_DURATION = "16n"
DRUM_DURATION = "8n"
