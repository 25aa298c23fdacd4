"""Concrete sound engines.

- ``log`` - ``LogSoundEngine``, logs triggers (default, needs no hardware)
- ``midi`` - ``MidiSoundEngine``, MIDI notes through mido
- ``osc`` - ``OscSoundEngine``, OSC messages to an external synth through python-osc
"""

import typing

from jamrelay.engines.base import ClockedEngine
import jamrelay.engines.log
import jamrelay.engines.midi
import jamrelay.engines.osc


ENGINE_TYPES: typing.Tuple[str, ...] = ("log", "midi", "osc")


def create_engine (config: typing.Dict[str, typing.Any]) -> ClockedEngine:

	"""
	Build an (unstarted) engine from the ``engine`` config section.
	"""

	engine_type = config.get("type", "log")

	if engine_type == "log":
		return jamrelay.engines.log.LogSoundEngine()

	if engine_type == "midi":
		return jamrelay.engines.midi.MidiSoundEngine(output_device_name=config.get("midi_device"))

	if engine_type == "osc":
		return jamrelay.engines.osc.OscSoundEngine(
			host = config.get("osc_host", "127.0.0.1"),
			port = int(config.get("osc_port", 57120))
		)

	raise ValueError(f"Unknown engine type {engine_type!r} (expected one of {', '.join(ENGINE_TYPES)})")
