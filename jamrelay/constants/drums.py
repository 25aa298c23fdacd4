"""Drum piece names and their fixed mappings.

A sequence names its percussion by piece (``"Kick"``, ``"Snare"``, ``"Hi-Hat"``,
``"Crash"``). Each piece has its own voice in the engine. Tonal pieces are
triggered at a fixed pitch; the snare is a pitchless noise burst.

``GM_DRUM_NOTES`` gives the General MIDI percussion key used by MIDI engines
(channel 10, 0-indexed channel 9).
"""

import typing


KICK = "Kick"
SNARE = "Snare"
HI_HAT = "Hi-Hat"
CRASH = "Crash"

PIECES: typing.Tuple[str, ...] = (KICK, SNARE, HI_HAT, CRASH)

# Piece -> voice identifier in the voice pool.
VOICE_IDS: typing.Dict[str, str] = {
	KICK: "kick",
	SNARE: "snare",
	HI_HAT: "hihat",
	CRASH: "crash",
}

# Fixed trigger pitch per tonal piece. The snare is noise and has none.
PIECE_PITCHES: typing.Dict[str, str] = {
	KICK: "C1",
	HI_HAT: "F#1",
	CRASH: "C#2",
}

GM_DRUM_CHANNEL = 9

GM_DRUM_NOTES: typing.Dict[str, int] = {
	KICK: 36,
	SNARE: 38,
	HI_HAT: 42,
	CRASH: 49,
}
