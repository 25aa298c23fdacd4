"""Command-line entry point.

Usage::

    python -m jamrelay relay [--host 0.0.0.0] [--port 3002]
    python -m jamrelay client [--url ws://localhost:3002/ws] [--engine log|midi|osc]
    python -m jamrelay send song.json [--url ...]
    python -m jamrelay play song.json [--engine ...]
    python -m jamrelay schema

Settings are read from a YAML file (``--config``, default ``jamrelay.yaml``);
command-line flags override it. Recognised sections::

    relay:   {host: 0.0.0.0, port: 3002, path: /ws, max_buffer: 1048576}
    client:  {url: ws://localhost:3002/ws, ping_interval: 30, reconnect_base: 1, reconnect_cap: 30}
    engine:  {type: log, midi_device: null, osc_host: 127.0.0.1, osc_port: 57120}
    logging: {level: INFO}
"""

import argparse
import asyncio
import json
import logging
import os
import typing

import yaml

import jamrelay.connection
import jamrelay.engines
import jamrelay.relay
import jamrelay.scheduler
import jamrelay.sequence


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "jamrelay.yaml"
SEND_TIMEOUT = 10.0


def load_config (config_path: str = DEFAULT_CONFIG_PATH) -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		config = yaml.safe_load(f)

	if config is None:
		return {}

	if not isinstance(config, dict):
		raise ValueError(f"Config file {config_path} must contain a mapping")

	return config


def load_sequence (path: str) -> jamrelay.sequence.Sequence:

	"""Read a sequence from a JSON file."""

	with open(path, 'r') as f:
		data = json.load(f)

	return jamrelay.sequence.Sequence.from_dict(data)


def _section (config: dict, name: str) -> typing.Dict[str, typing.Any]:

	section = config.get(name) or {}

	if not isinstance(section, dict):
		raise ValueError(f"Config section {name!r} must be a mapping")

	return section


def _override (section: typing.Dict[str, typing.Any], **values: typing.Any) -> typing.Dict[str, typing.Any]:

	"""Return a copy of a config section with every non-None value applied."""

	merged = dict(section)
	merged.update({key: value for key, value in values.items() if value is not None})

	return merged


def _connection_from_config (client: typing.Dict[str, typing.Any]) -> jamrelay.connection.ConnectionManager:

	return jamrelay.connection.ConnectionManager(
		url = client.get('url', jamrelay.connection.DEFAULT_URL),
		ping_interval = float(client.get('ping_interval', jamrelay.connection.DEFAULT_PING_INTERVAL)),
		reconnect_base = float(client.get('reconnect_base', jamrelay.connection.DEFAULT_RECONNECT_BASE)),
		reconnect_cap = float(client.get('reconnect_cap', jamrelay.connection.DEFAULT_RECONNECT_CAP))
	)


async def run_relay (relay_config: typing.Dict[str, typing.Any]) -> None:

	server = jamrelay.relay.RelayServer(
		host = relay_config.get('host', jamrelay.relay.DEFAULT_HOST),
		port = int(relay_config.get('port', jamrelay.relay.DEFAULT_PORT)),
		path = relay_config.get('path', jamrelay.relay.DEFAULT_PATH),
		max_buffer = int(relay_config.get('max_buffer', jamrelay.relay.DEFAULT_MAX_BUFFER))
	)

	try:
		await server.serve_forever()
	finally:
		await server.stop()


async def run_client (client_config: typing.Dict[str, typing.Any], engine_config: typing.Dict[str, typing.Any]) -> None:

	engine = jamrelay.engines.create_engine(engine_config)
	engine.start()

	scheduler = jamrelay.scheduler.SequenceScheduler(engine)
	connection = _connection_from_config(client_config)
	connection.on_sequence(scheduler.play)
	connection.start()

	try:
		await asyncio.Event().wait()
	finally:
		scheduler.stop()
		await connection.stop()
		engine.close()


async def run_send (client_config: typing.Dict[str, typing.Any], sequence: jamrelay.sequence.Sequence) -> bool:

	connection = _connection_from_config(client_config)
	connection.start()

	try:
		await connection.wait_connected(timeout=SEND_TIMEOUT)
		sent = await connection.send_sequence(sequence)
	except asyncio.TimeoutError:
		logger.error(f"Could not connect to {connection.url} within {SEND_TIMEOUT:g}s")
		sent = False
	finally:
		await connection.stop()

	if sent:
		logger.info(f"Sent sequence ({sequence.event_count} events)")

	return sent


async def run_play (engine_config: typing.Dict[str, typing.Any], sequence: jamrelay.sequence.Sequence) -> bool:

	engine = jamrelay.engines.create_engine(engine_config)
	engine.start()

	scheduler = jamrelay.scheduler.SequenceScheduler(engine)

	try:
		return await scheduler.play(sequence)
	finally:
		scheduler.stop()
		engine.close()


def build_parser () -> argparse.ArgumentParser:

	parser = argparse.ArgumentParser(prog="jamrelay", description="Share and play musical sequences in real time")
	parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})")
	parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")

	commands = parser.add_subparsers(dest="command", required=True)

	relay = commands.add_parser("relay", help="Run the broadcast relay")
	relay.add_argument("--host", default=None, help=f"Bind address (default: {jamrelay.relay.DEFAULT_HOST})")
	relay.add_argument("--port", type=int, default=None, help=f"Port (default: {jamrelay.relay.DEFAULT_PORT})")
	relay.add_argument("--path", default=None, help=f"WebSocket path (default: {jamrelay.relay.DEFAULT_PATH})")

	client = commands.add_parser("client", help="Connect to a relay and play received sequences")
	client.add_argument("--url", default=None, help=f"Relay URL (default: {jamrelay.connection.DEFAULT_URL})")
	client.add_argument("--engine", choices=jamrelay.engines.ENGINE_TYPES, default=None, help="Sound engine (default: log)")
	client.add_argument("--midi-device", default=None, help="MIDI output device name")

	send = commands.add_parser("send", help="Send a sequence file to everyone on the relay")
	send.add_argument("file", help="Sequence JSON file")
	send.add_argument("--url", default=None, help=f"Relay URL (default: {jamrelay.connection.DEFAULT_URL})")

	play = commands.add_parser("play", help="Play a sequence file locally")
	play.add_argument("file", help="Sequence JSON file")
	play.add_argument("--engine", choices=jamrelay.engines.ENGINE_TYPES, default=None, help="Sound engine (default: log)")
	play.add_argument("--midi-device", default=None, help="MIDI output device name")

	commands.add_parser("schema", help="Print the JSON Schema of a sequence")

	return parser


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Main entry point for the jamrelay application.
	"""

	args = build_parser().parse_args(argv)

	config = load_config(args.config)
	level = args.log_level or _section(config, 'logging').get('level', 'INFO')

	logging.basicConfig(level=str(level).upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

	relay_config = _section(config, 'relay')
	client_config = _override(_section(config, 'client'), url=getattr(args, 'url', None))
	engine_config = _override(
		_section(config, 'engine'),
		type = getattr(args, 'engine', None),
		midi_device = getattr(args, 'midi_device', None)
	)

	try:

		if args.command == "relay":
			relay_config = _override(relay_config, host=args.host, port=args.port, path=args.path)
			asyncio.run(run_relay(relay_config))
			return 0

		if args.command == "client":
			asyncio.run(run_client(client_config, engine_config))
			return 0

		if args.command == "schema":
			print(json.dumps(jamrelay.sequence.json_schema(), indent=2))
			return 0

		sequence = load_sequence(args.file)

		if args.command == "send":
			return 0 if asyncio.run(run_send(client_config, sequence)) else 1

		return 0 if asyncio.run(run_play(engine_config, sequence)) else 1

	except KeyboardInterrupt:
		logger.info("Stopping...")
		return 0


if __name__ == "__main__":
	raise SystemExit(main())
