import asyncio
import logging
import time
import typing

import jamrelay.errors
import jamrelay.sound_engine


logger = logging.getLogger(__name__)


class ClockedEngine:

	"""
	Base class for engines that render triggers as timed output messages.

	The engine clock is ``time.perf_counter()``. A trigger sounds at its absolute
	time (immediately if that has passed) and is released ``params.duration``
	seconds later. Subclasses implement ``_note_on``, ``_note_off`` and
	``_all_off``.

	An engine must be started with ``start()`` before use; until then ``now()``
	and ``trigger_at()`` raise ``EngineUnavailable``.
	"""

	def __init__ (self) -> None:

		self.running = False
		self._pending: typing.Set[asyncio.TimerHandle] = set()


	def start (self) -> None:

		self.running = True

	def close (self) -> None:

		if self.running:
			self.silence_all()

		self.running = False


	def now (self) -> float:

		self._require_running()

		return time.perf_counter()


	def trigger_at (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams, absolute_time: float) -> None:

		self._require_running()

		delay = max(0.0, absolute_time - time.perf_counter())

		self._call_later(delay, self._note_on, voice_id, params)
		self._call_later(delay + params.duration, self._note_off, voice_id, params)


	def silence_all (self) -> None:

		self._require_running()

		for handle in self._pending:
			handle.cancel()

		self._pending.clear()

		try:
			self._all_off()
		except Exception:
			logger.exception(f"{type(self).__name__} failed to silence voices")


	def _call_later (self, delay: float, callback: typing.Callable[..., None], *args: typing.Any) -> None:

		loop = asyncio.get_running_loop()
		handle: typing.Optional[asyncio.TimerHandle] = None

		def run () -> None:
			self._pending.discard(handle)  # type: ignore[arg-type]
			try:
				callback(*args)
			except Exception:
				logger.exception(f"{type(self).__name__} output failed")

		handle = loop.call_later(delay, run)
		self._pending.add(handle)


	def _require_running (self) -> None:

		if not self.running:
			raise jamrelay.errors.EngineUnavailable(f"{type(self).__name__} is not running")


	def _note_on (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		raise NotImplementedError

	def _note_off (self, voice_id: str, params: jamrelay.sound_engine.VoiceParams) -> None:

		raise NotImplementedError

	def _all_off (self) -> None:

		raise NotImplementedError
