import asyncio
import dataclasses
import logging
import typing

import jamrelay.constants.drums
import jamrelay.constants.durations
import jamrelay.errors
import jamrelay.event_emitter
import jamrelay.pitch
import jamrelay.sequence
import jamrelay.sound_engine
import jamrelay.time_model


logger = logging.getLogger(__name__)

# Tie-break offsets (seconds). Nominally simultaneous events land piano first,
# then guitar, then drums; within a track, earlier-declared events land first.
PIANO_OFFSET = 0.0
GUITAR_OFFSET = 0.002
DRUM_OFFSET = 0.003
TIE_BREAK_EPOCH = 0.0001

# Tail allowance after the last trigger before a playback counts as complete.
RING_OUT_SECONDS = 2.0


class CancelToken:

	"""
	Settles exactly once: either claimed by the firing callback or cancelled.
	"""

	_PENDING = "pending"
	_FIRED = "fired"
	_CANCELLED = "cancelled"

	def __init__ (self) -> None:

		self._state = CancelToken._PENDING

	def claim (self) -> bool:

		"""Mark the trigger as fired. Returns False if it was already settled."""

		if self._state != CancelToken._PENDING:
			return False

		self._state = CancelToken._FIRED

		return True

	def cancel (self) -> bool:

		"""Mark the trigger as cancelled. Returns False if it was already settled."""

		if self._state != CancelToken._PENDING:
			return False

		self._state = CancelToken._CANCELLED

		return True

	@property
	def pending (self) -> bool:
		return self._state == CancelToken._PENDING

	@property
	def fired (self) -> bool:
		return self._state == CancelToken._FIRED

	@property
	def cancelled (self) -> bool:
		return self._state == CancelToken._CANCELLED


@dataclasses.dataclass (order=True)
class ScheduledTrigger:

	"""
	A single voice trigger computed from a sequence event.
	"""

	absolute_time: float
	voice_id: str = dataclasses.field(compare=False)
	params: jamrelay.sound_engine.VoiceParams = dataclasses.field(compare=False)
	track: str = dataclasses.field(compare=False, default="")
	index: int = dataclasses.field(compare=False, default=0)
	token: CancelToken = dataclasses.field(compare=False, default_factory=CancelToken)
	handle: typing.Optional[asyncio.TimerHandle] = dataclasses.field(compare=False, default=None)


@dataclasses.dataclass
class SchedulerStatistics:

	"""Lifetime counters. ``armed == fired + cancelled + pending`` at all times."""

	armed: int = 0
	fired: int = 0
	cancelled: int = 0
	skipped: int = 0


class PlaybackHandle:

	"""
	Awaitable result of ``SequenceScheduler.play()``.

	Resolves to ``True`` once the playback deadline (last trigger plus the ring-out
	allowance) passes, or ``False`` if the playback was stopped, superseded, or
	never started because the engine was unavailable.
	"""

	def __init__ (
		self,
		future: "asyncio.Future[bool]",
		triggers: typing.Sequence[ScheduledTrigger] = (),
		end_time: typing.Optional[float] = None
	) -> None:

		self._future = future
		self.triggers: typing.Tuple[ScheduledTrigger, ...] = tuple(triggers)
		self.end_time = end_time

	def __await__ (self) -> typing.Generator[typing.Any, None, bool]:

		return self._future.__await__()

	def done (self) -> bool:

		return self._future.done()

	def result (self) -> bool:

		return self._future.result()

	def _resolve (self, completed: bool) -> None:

		if not self._future.done():
			self._future.set_result(completed)


class SequenceScheduler:

	"""
	Turns a ``Sequence`` into timed, cancellable triggers on a ``SoundEngine``.

	One playback at a time: ``play()`` always stops the previous playback before
	arming the new one, and ``stop()`` cancels every trigger that has not fired yet,
	silences the engine and resets the voice pool.

	Events emitted on ``scheduler.events``:

	- ``play(sequence, handle)`` - a playback was armed
	- ``voice_active(voice_id, params)`` - a trigger fired
	- ``voice_inactive(voice_id, params)`` - the note ended or was cut short
	- ``complete(handle)`` - a playback reached its deadline
	- ``stop()`` - a playback was stopped
	"""

	def __init__ (
		self,
		engine: jamrelay.sound_engine.SoundEngine,
		voices: typing.Optional[jamrelay.sound_engine.VoicePool] = None
	) -> None:

		self.engine = engine
		self.voices = voices if voices is not None else jamrelay.sound_engine.VoicePool()
		self.events = jamrelay.event_emitter.EventEmitter()
		self.statistics = SchedulerStatistics()

		self._triggers: typing.List[ScheduledTrigger] = []
		self._handle: typing.Optional[PlaybackHandle] = None
		self._deadline: typing.Optional[asyncio.TimerHandle] = None


	@property
	def active (self) -> bool:

		"""True while a playback is armed and has not reached its deadline."""

		return self._handle is not None

	@property
	def pending_count (self) -> int:

		return sum(1 for trigger in self._triggers if trigger.token.pending)


	def play (self, sequence: jamrelay.sequence.Sequence) -> PlaybackHandle:

		"""
		Schedule every event of ``sequence`` and return a completion handle.

		Must be called from within the running event loop. Scheduling never waits
		on the passage of time - only the returned handle does.
		"""

		loop = asyncio.get_running_loop()

		self.stop()

		future: "asyncio.Future[bool]" = loop.create_future()

		try:
			start_time = self.engine.now()
		except jamrelay.errors.EngineUnavailable as exc:
			logger.warning(f"Sound engine unavailable, sequence not played: {exc}")
			handle = PlaybackHandle(future)
			handle._resolve(False)
			return handle

		triggers = self.plan(sequence, start_time)

		if not triggers:
			logger.info("Empty sequence - nothing to schedule")
			handle = PlaybackHandle(future, end_time=start_time)
			handle._resolve(True)
			return handle

		for trigger in triggers:
			delay = max(0.0, trigger.absolute_time - start_time)
			trigger.handle = loop.call_later(delay, self._fire, trigger)

		self.statistics.armed += len(triggers)

		end_time = max(trigger.absolute_time for trigger in triggers) + RING_OUT_SECONDS

		handle = PlaybackHandle(future, triggers, end_time)

		self._triggers = list(triggers)
		self._handle = handle
		self._deadline = loop.call_later(end_time - start_time, self._complete, handle)

		logger.info(f"Scheduled {len(triggers)} triggers at {sequence.effective_bpm:g} BPM ({end_time - start_time:.2f}s)")

		self.events.emit_sync("play", sequence, handle)

		return handle


	def plan (self, sequence: jamrelay.sequence.Sequence, start_time: float) -> typing.List[ScheduledTrigger]:

		"""
		Compute the triggers for a sequence starting at ``start_time``.

		Deterministic: the same sequence and start time always produce the same
		triggers. Events with a malformed time, duration or pitch are skipped
		with a warning; the rest of the sequence is kept.
		"""

		bpm = sequence.effective_bpm
		triggers: typing.List[ScheduledTrigger] = []

		tracks: typing.List[typing.Tuple[str, typing.Sequence[typing.Any], float]] = [
			("piano", sequence.piano, PIANO_OFFSET),
			("guitar", sequence.guitar, GUITAR_OFFSET),
			("drums", sequence.drums, DRUM_OFFSET),
		]

		for track, events, base_offset in tracks:

			for index, event in enumerate(events):

				try:
					offset = jamrelay.time_model.to_seconds(event.time, bpm)

					if track == "drums":
						voice_id, params = self._hit_params(event, bpm)
					else:
						voice_id, params = self._note_params(track, event, bpm)

				except ValueError as exc:
					self.statistics.skipped += 1
					logger.warning(f"Skipping {track}[{index}]: {exc}")
					continue

				triggers.append(ScheduledTrigger(
					absolute_time = start_time + offset + base_offset + TIE_BREAK_EPOCH * index,
					voice_id = voice_id,
					params = params,
					track = track,
					index = index
				))

		return triggers


	def stop (self) -> None:

		"""
		Cancel the active playback, silence the engine and reset every voice.

		Safe to call when nothing is playing, and idempotent.
		"""

		if self._handle is None and not self._triggers and self.voices.is_idle():
			return

		cancelled = 0

		for trigger in self._triggers:

			if trigger.token.cancel():
				cancelled += 1

			if trigger.handle is not None:
				trigger.handle.cancel()

		self.statistics.cancelled += cancelled
		self._triggers = []

		if self._deadline is not None:
			self._deadline.cancel()
			self._deadline = None

		try:
			self.engine.silence_all()
		except jamrelay.errors.EngineUnavailable as exc:
			logger.debug(f"silence_all skipped: {exc}")

		for voice_id, params in self.voices.reset_all():
			self.events.emit_sync("voice_inactive", voice_id, params)

		handle = self._handle
		self._handle = None

		if handle is not None:
			handle._resolve(False)

		logger.info(f"Playback stopped ({cancelled} pending triggers cancelled)")

		self.events.emit_sync("stop")


	def _note_params (
		self,
		track: str,
		note: jamrelay.sequence.Note,
		bpm: float
	) -> typing.Tuple[str, jamrelay.sound_engine.VoiceParams]:

		if note.duration is not None:
			duration = note.duration
		elif track == "piano":
			duration = jamrelay.constants.durations.PIANO_DEFAULT
		else:
			duration = jamrelay.constants.durations.GUITAR_DEFAULT

		params = jamrelay.sound_engine.VoiceParams(
			pitch = note.pitch,
			duration = jamrelay.time_model.duration_to_seconds(duration, bpm),
			velocity = note.velocity,
			midi_note = jamrelay.pitch.name_to_midi(note.pitch)
		)

		return track, params


	def _hit_params (
		self,
		hit: jamrelay.sequence.Hit,
		bpm: float
	) -> typing.Tuple[str, jamrelay.sound_engine.VoiceParams]:

		voice_id = jamrelay.constants.drums.VOICE_IDS[hit.piece]

		# The snare is a short noise burst: no pitch, fixed sixteenth.
		if hit.piece == jamrelay.constants.drums.SNARE:
			params = jamrelay.sound_engine.VoiceParams(
				pitch = None,
				duration = jamrelay.time_model.duration_to_seconds(jamrelay.constants.durations.SNARE_DURATION, bpm),
				velocity = hit.velocity
			)

		else:
			pitch = jamrelay.constants.drums.PIECE_PITCHES[hit.piece]
			params = jamrelay.sound_engine.VoiceParams(
				pitch = pitch,
				duration = jamrelay.time_model.duration_to_seconds(jamrelay.constants.durations.DRUM_DURATION, bpm),
				velocity = hit.velocity,
				midi_note = jamrelay.pitch.name_to_midi(pitch)
			)

		return voice_id, params


	def _fire (self, trigger: ScheduledTrigger) -> None:

		"""Timer callback: fire the trigger unless it was cancelled in the meantime."""

		if not trigger.token.claim():
			return

		self.statistics.fired += 1

		try:
			self.engine.trigger_at(trigger.voice_id, trigger.params, trigger.absolute_time)
		except jamrelay.errors.EngineUnavailable as exc:
			logger.warning(f"Trigger for {trigger.voice_id} dropped: {exc}")
			return
		except Exception:
			logger.exception(f"Sound engine failed to trigger {trigger.voice_id}")
			return

		logger.debug(f"Fired {trigger.voice_id} {trigger.params.pitch or ''} at {trigger.absolute_time:.4f}")

		voice = self.voices.get(trigger.voice_id)
		key = voice.sound(trigger.params)
		release = asyncio.get_running_loop().call_later(trigger.params.duration, self._release, voice, key)
		voice.attach_release(key, release)

		self.events.emit_sync("voice_active", trigger.voice_id, trigger.params)


	def _release (self, voice: jamrelay.sound_engine.Voice, key: int) -> None:

		params = voice.release(key)

		if params is not None:
			self.events.emit_sync("voice_inactive", voice.voice_id, params)


	def _complete (self, handle: PlaybackHandle) -> None:

		"""Deadline callback: the playback has run its course."""

		if handle is not self._handle:
			return

		self._deadline = None
		self._triggers = []
		self._handle = None

		handle._resolve(True)

		logger.info("Playback complete")

		self.events.emit_sync("complete", handle)
