import asyncio
import json
import pathlib

import pytest

import jamrelay.__main__
import jamrelay.errors
import jamrelay.relay
import jamrelay.scheduler
import jamrelay.sequence


def test_load_config_missing_file_uses_defaults (tmp_path: pathlib.Path) -> None:

	assert jamrelay.__main__.load_config(str(tmp_path / "absent.yaml")) == {}


def test_load_config_reads_yaml (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "jamrelay.yaml"
	path.write_text("relay:\n  port: 4000\nengine:\n  type: osc\n  osc_port: 9000\n")

	config = jamrelay.__main__.load_config(str(path))

	assert config["relay"] == {"port": 4000}
	assert config["engine"]["type"] == "osc"


def test_load_config_empty_file (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "empty.yaml"
	path.write_text("")

	assert jamrelay.__main__.load_config(str(path)) == {}


def test_load_config_rejects_non_mapping (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "list.yaml"
	path.write_text("- one\n- two\n")

	with pytest.raises(ValueError):
		jamrelay.__main__.load_config(str(path))


def test_load_sequence (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "song.json"
	path.write_text(json.dumps({"bpm": 100, "piano": [{"note": "C4", "time": "0:0"}]}))

	sequence = jamrelay.__main__.load_sequence(str(path))

	assert sequence.bpm == 100
	assert sequence.piano[0].pitch == "C4"


def test_load_sequence_rejects_bad_schema (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "song.json"
	path.write_text(json.dumps({"drums": [{"piece": "Cowbell"}]}))

	with pytest.raises(jamrelay.errors.MalformedMessage):
		jamrelay.__main__.load_sequence(str(path))


def test_parser_subcommands () -> None:

	parser = jamrelay.__main__.build_parser()

	args = parser.parse_args(["relay", "--port", "4000"])
	assert (args.command, args.port, args.host) == ("relay", 4000, None)

	args = parser.parse_args(["--log-level", "DEBUG", "client", "--engine", "midi", "--midi-device", "IAC"])
	assert (args.command, args.engine, args.midi_device, args.log_level) == ("client", "midi", "IAC", "DEBUG")

	args = parser.parse_args(["send", "song.json", "--url", "ws://example:3002/ws"])
	assert (args.command, args.file, args.url) == ("send", "song.json", "ws://example:3002/ws")


def test_parser_accepts_schema () -> None:

	args = jamrelay.__main__.build_parser().parse_args(["schema"])

	assert args.command == "schema"


def test_main_schema_prints_json_schema (tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:

	"""The schema command prints a JSON Schema that tools can use to build sequences."""

	assert jamrelay.__main__.main(["--config", str(tmp_path / "none.yaml"), "schema"]) == 0

	schema = json.loads(capsys.readouterr().out)

	assert schema["title"] == "Sequence"
	assert set(schema["properties"]) == {"bpm", "piano", "guitar", "drums"}
	assert schema["properties"]["piano"]["items"]["required"] == ["note"]
	assert schema["properties"]["drums"]["items"]["properties"]["piece"]["enum"] == ["Kick", "Snare", "Hi-Hat", "Crash"]


def test_schema_example_parses () -> None:

	"""A payload built from the schema's field names is accepted by Sequence.from_dict."""

	schema = jamrelay.sequence.json_schema()
	piece = schema["properties"]["drums"]["items"]["properties"]["piece"]["enum"][0]

	sequence = jamrelay.sequence.Sequence.from_dict({
		"bpm": 100,
		"piano": [{"note": "C4", "time": "0:0", "duration": "4n", "velocity": 0.8}],
		"drums": [{"piece": piece, "time": 0}],
	})

	assert sequence.drums[0].piece == piece


def test_parser_rejects_unknown_engine () -> None:

	with pytest.raises(SystemExit):
		jamrelay.__main__.build_parser().parse_args(["play", "song.json", "--engine", "theremin"])


def test_override_skips_unset_flags () -> None:

	merged = jamrelay.__main__._override({"host": "0.0.0.0", "port": 3002}, host=None, port=4000)

	assert merged == {"host": "0.0.0.0", "port": 4000}


@pytest.mark.asyncio
async def test_run_play_with_log_engine (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Playing a file locally runs to completion on the log engine."""

	monkeypatch.setattr(jamrelay.scheduler, "RING_OUT_SECONDS", 0.05)

	sequence = jamrelay.sequence.Sequence.from_dict({"drums": [{"piece": "Kick", "time": 0}, {"piece": "Hi-Hat", "time": 0.02}]})

	assert await jamrelay.__main__.run_play({"type": "log"}, sequence) is True


@pytest.mark.asyncio
async def test_run_send_delivers_to_relay () -> None:

	"""The send command connects, forwards the sequence to the relay, and disconnects."""

	relay = jamrelay.relay.RelayServer(host="127.0.0.1", port=0)
	await relay.start()

	frames: list[str] = []
	relay.events.on("message", lambda sender_id, raw, recipients: frames.append(raw))

	sequence = jamrelay.sequence.Sequence.from_dict({"bpm": 90, "guitar": [{"note": "E2"}]})

	try:
		sent = await jamrelay.__main__.run_send({"url": f"ws://127.0.0.1:{relay.port}/ws"}, sequence)

		for _ in range(100):
			if frames:
				break
			await asyncio.sleep(0.01)

	finally:
		await relay.stop()

	assert sent is True
	assert json.loads(frames[0]) == {"type": "sequence", "data": sequence.to_dict()}


def test_main_play_exit_code (tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:

	monkeypatch.setattr(jamrelay.scheduler, "RING_OUT_SECONDS", 0.01)

	song = tmp_path / "song.json"
	song.write_text(json.dumps({"piano": [{"note": "C4", "time": 0, "duration": 0.01}]}))

	assert jamrelay.__main__.main(["--config", str(tmp_path / "none.yaml"), "play", str(song)]) == 0
