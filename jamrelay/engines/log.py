import logging

from jamrelay.engines.base import ClockedEngine
import jamrelay.sound_engine


logger = logging.getLogger(__name__)


class LogSoundEngine (ClockedEngine):

	"""Engine that only logs what it would play. Useful without audio hardware."""

	def _note_on (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		pitch = params.pitch if params.pitch is not None else "-"
		logger.info(f"{voice_id:<7} {pitch:<4} vel={params.velocity:.2f} dur={params.duration:.3f}s")

	def _note_off (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		logger.debug(f"{voice_id} released")

	def _all_off (self) -> None:

		logger.info("All voices silenced")
