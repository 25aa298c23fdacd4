import logging
import typing

import mido

import jamrelay.constants.drums
import jamrelay.constants.velocity
from jamrelay.engines.base import ClockedEngine
import jamrelay.sound_engine


logger = logging.getLogger(__name__)

PIANO_CHANNEL = 0
GUITAR_CHANNEL = 1

_PIECE_BY_VOICE: typing.Dict[str, str] = {voice_id: piece for piece, voice_id in jamrelay.constants.drums.VOICE_IDS.items()}


def open_output (device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Open a MIDI output port.

	With ``device_name`` set, only that port is tried. Without it the first
	available port is used; clients run unattended, so there is no prompt.

	Returns ``(name, port)``, or ``(None, None)`` if nothing could be opened.
	"""

	try:
		outputs = mido.get_output_names()
	except Exception as e:
		logger.error(f"Could not list MIDI outputs: {e}")
		return None, None

	logger.info(f"Available MIDI outputs: {outputs}")

	if not outputs:
		logger.error("No MIDI output devices found")
		return None, None

	if device_name is not None and device_name not in outputs:
		logger.error(f"MIDI output {device_name!r} not found (available: {outputs})")
		return None, None

	selected = device_name if device_name is not None else outputs[0]

	if device_name is None and len(outputs) > 1:
		logger.warning(f"Several MIDI outputs found - using {selected!r}; set engine.midi_device to choose another")

	try:
		port = mido.open_output(selected)
	except Exception as e:
		logger.error(f"Failed to open MIDI output {selected!r}: {e}")
		return None, None

	logger.info(f"Opened MIDI output: {selected}")

	return selected, port


class MidiSoundEngine (ClockedEngine):

	"""
	Renders triggers as MIDI note messages on an output port.

	Piano and guitar play on their own channels at the note's pitch. Drum voices
	play on the General MIDI percussion channel using the GM key for the piece,
	so a GM drum kit sounds the right instrument regardless of the trigger pitch.
	"""

	def __init__ (
		self,
		output_device_name: typing.Optional[str] = None,
		piano_channel: int = PIANO_CHANNEL,
		guitar_channel: int = GUITAR_CHANNEL,
		drum_channel: int = jamrelay.constants.drums.GM_DRUM_CHANNEL
	) -> None:

		super().__init__()

		self.output_device_name = output_device_name
		self.midi_out: typing.Optional[typing.Any] = None
		# (channel, note) -> number of triggers currently sounding it
		self._note_counts: typing.Dict[typing.Tuple[int, int], int] = {}

		self._channels: typing.Dict[str, int] = {
			jamrelay.sound_engine.PIANO: piano_channel,
			jamrelay.sound_engine.GUITAR: guitar_channel,
		}
		self._drum_channel = drum_channel


	@property
	def active_notes (self) -> typing.Set[typing.Tuple[int, int]]:

		"""The (channel, note) pairs currently held on."""

		return set(self._note_counts)


	def start (self) -> None:

		"""Open the MIDI output. The engine stays unavailable if no port could be opened."""

		device_name, midi_out = open_output(self.output_device_name)

		if midi_out is None:
			logger.error("MIDI engine has no output port - sequences will not play")
			return

		self.output_device_name = device_name
		self.midi_out = midi_out

		super().start()

	def close (self) -> None:

		super().close()

		if self.midi_out is not None:
			self.midi_out.close()
			self.midi_out = None


	def _address (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> typing.Optional[typing.Tuple[int, int]]:

		"""Return the (channel, note) a trigger plays on, or None if it has no MIDI mapping."""

		if voice_id in _PIECE_BY_VOICE:
			return self._drum_channel, jamrelay.constants.drums.GM_DRUM_NOTES[_PIECE_BY_VOICE[voice_id]]

		if voice_id in self._channels and params.midi_note is not None:
			return self._channels[voice_id], params.midi_note

		return None


	def _note_on (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		address = self._address(voice_id, params)

		if address is None or self.midi_out is None:
			return

		channel, note = address

		# Retrigger: end the previous instance of the same note first.
		if address in self._note_counts:
			self.midi_out.send(mido.Message('note_off', channel=channel, note=note, velocity=0))

		self.midi_out.send(mido.Message(
			'note_on',
			channel = channel,
			note = note,
			velocity = jamrelay.constants.velocity.to_midi(params.velocity)
		))

		self._note_counts[address] = self._note_counts.get(address, 0) + 1


	def _note_off (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		"""Release a note once every trigger that sounded it has ended."""

		address = self._address(voice_id, params)

		if address is None or self.midi_out is None or address not in self._note_counts:
			return

		self._note_counts[address] -= 1

		# A later retrigger of the same note is still sounding.
		if self._note_counts[address] > 0:
			return

		del self._note_counts[address]

		channel, note = address
		self.midi_out.send(mido.Message('note_off', channel=channel, note=note, velocity=0))


	def _all_off (self) -> None:

		"""Note-off every tracked note, then All Notes Off / All Sound Off on every channel."""

		if self.midi_out is None:
			self._note_counts.clear()
			return

		for channel, note in list(self._note_counts):
			self.midi_out.send(mido.Message('note_off', channel=channel, note=note, velocity=0))

		self._note_counts.clear()

		for channel in range(16):
			self.midi_out.send(mido.Message('control_change', channel=channel, control=123, value=0))
			self.midi_out.send(mido.Message('control_change', channel=channel, control=120, value=0))
