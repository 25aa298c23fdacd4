"""OSC sound engine.

Sends one message per trigger to an external synth (SuperCollider, Pure Data,
Max, a hardware bridge) which owns the actual sound:

- ``/jamrelay/<voice_id> <midi_note> <frequency> <duration> <velocity>`` - sound a voice.
  Unpitched voices (the snare) send ``-1`` and ``0.0`` for note and frequency.
- ``/jamrelay/silence`` - cut everything off now.

The receiver is expected to handle the envelope; no note-off is sent.
"""

import logging
import typing

import pythonosc.udp_client

from jamrelay.engines.base import ClockedEngine
import jamrelay.sound_engine


logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "/jamrelay"


class OscSoundEngine (ClockedEngine):

	"""Triggers voices on a remote synth over OSC/UDP."""

	def __init__ (self, host: str = "127.0.0.1", port: int = 57120) -> None:

		super().__init__()

		self.host = host
		self.port = port
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None


	def start (self) -> None:

		self._client = pythonosc.udp_client.SimpleUDPClient(self.host, self.port)
		super().start()

		logger.info(f"OSC engine sending to {self.host}:{self.port}")

	def close (self) -> None:

		super().close()
		self._client = None


	def _send (self, address: str, *args: typing.Any) -> None:

		if self._client:
			try:
				self._client.send_message(address, list(args))
			except Exception as e:
				logger.warning(f"OSC send error: {e}")


	def _note_on (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		midi_note = params.midi_note if params.midi_note is not None else -1
		frequency = params.frequency if params.frequency is not None else 0.0

		self._send(f"{ADDRESS_PREFIX}/{voice_id}", midi_note, float(frequency), float(params.duration), float(params.velocity))

	def _note_off (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		return None

	def _all_off (self) -> None:

		self._send(f"{ADDRESS_PREFIX}/silence")
