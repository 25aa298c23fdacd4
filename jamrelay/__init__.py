
"""
jamrelay - real-time sequence sharing and deterministic playback.

Any number of clients connect to a relay and exchange symbolic musical
sequences. Each receiving client turns a sequence into precisely timed voice
triggers on its own sound engine.

Two halves:

- **The relay.** ``RelayServer`` accepts WebSocket connections, assigns each
  client an identity and forwards every message to all other connected peers.
  No rooms, no history, no echo to the sender.
- **The player.** ``ConnectionManager`` keeps a reconnecting link to the relay
  and hands new sequences to a ``SequenceScheduler``, which resolves bar/beat
  times against the tempo, nudges simultaneous events into a stable order and
  arms one cancellable trigger per note or drum hit on a ``SoundEngine``.

Sequences are plain JSON::

    {
        "bpm": 120,
        "piano": [{"note": "C4", "time": 0, "duration": "4n"}],
        "guitar": [{"note": "E2", "time": "0:1", "duration": "8n"}],
        "drums": [{"piece": "Kick", "time": 0}, {"piece": "Snare", "time": "0:1"}]
    }

Minimal player::

    import asyncio
    import jamrelay

    async def main () -> None:
        engine = jamrelay.LogSoundEngine()
        engine.start()

        scheduler = jamrelay.SequenceScheduler(engine)
        connection = jamrelay.ConnectionManager("ws://localhost:3002/ws")
        connection.on_sequence(scheduler.play)
        connection.start()

        await asyncio.Event().wait()

    asyncio.run(main())

Or from the command line: ``python -m jamrelay relay`` and
``python -m jamrelay client``.

Package-level exports: ``ConnectionManager``, ``RelayServer``, ``Sequence``,
``SequenceScheduler``, ``LogSoundEngine``, ``MidiSoundEngine``, ``OscSoundEngine``.
"""

import jamrelay.connection
import jamrelay.engines.log
import jamrelay.engines.midi
import jamrelay.engines.osc
import jamrelay.relay
import jamrelay.scheduler
import jamrelay.sequence


ConnectionManager = jamrelay.connection.ConnectionManager
RelayServer = jamrelay.relay.RelayServer
Sequence = jamrelay.sequence.Sequence
SequenceScheduler = jamrelay.scheduler.SequenceScheduler
LogSoundEngine = jamrelay.engines.log.LogSoundEngine
MidiSoundEngine = jamrelay.engines.midi.MidiSoundEngine
OscSoundEngine = jamrelay.engines.osc.OscSoundEngine
