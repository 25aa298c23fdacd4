import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named-event observer hub used by the scheduler, connection manager and relay.

	Listeners are purely observational: an exception raised by one listener is
	logged and does not stop the remaining listeners or reach the emitter.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}


	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)

	def listener_count (self, event_name: str) -> int:

		return len(self._listeners.get(event_name, []))


	def emit_sync (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for the event immediately.

		Coroutine listeners are scheduled as tasks on the running loop; with no
		running loop they are skipped with a warning.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			try:
				result = callback(*args, **kwargs)

				if asyncio.iscoroutine(result):
					self._spawn(event_name, result)

			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")


	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""
		Call every listener for the event and await the coroutine ones.
		"""

		pending: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			try:
				result = callback(*args, **kwargs)
			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")
				continue

			if asyncio.iscoroutine(result):
				pending.append(result)

		if pending:
			results = await asyncio.gather(*pending, return_exceptions=True)

			for result in results:
				if isinstance(result, Exception):
					logger.error(f"Async listener for {event_name!r} failed: {result!r}")


	def _spawn (self, event_name: str, coroutine: typing.Coroutine) -> None:

		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			coroutine.close()
			logger.warning(f"No running event loop for async listener of {event_name!r}")
			return

		task = loop.create_task(coroutine)
		task.add_done_callback(lambda t: _log_task_failure(event_name, t))


def _log_task_failure (event_name: str, task: asyncio.Task) -> None:

	if not task.cancelled() and task.exception() is not None:
		logger.error(f"Async listener for {event_name!r} failed: {task.exception()!r}")
