"""Error taxonomy for jamrelay.

Every error here is recovered locally by the component that sees it - none of
them is allowed to terminate a relay or a client.

- ``InvalidTimeFormat`` - a malformed symbolic time or duration. The scheduler
  skips just the offending event.
- ``MalformedMessage`` - a relay payload that is not JSON or does not match the
  message schema. Dropped and logged, the connection stays open.
- ``ConnectionLost`` - the socket closed or errored. Triggers a backoff reconnect.
- ``EngineUnavailable`` - the sound engine has not been started (or was closed).
  Scheduling is rejected for that playback.
"""


class JamRelayError (Exception):
	pass


class InvalidTimeFormat (JamRelayError, ValueError):
	pass


class MalformedMessage (JamRelayError, ValueError):
	pass


class ConnectionLost (JamRelayError, ConnectionError):
	pass


class EngineUnavailable (JamRelayError, RuntimeError):
	pass
