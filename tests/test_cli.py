"""The ``xdgm`` command."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from xdgm.cli import app as cli_module
from xdgm.cli import run_cli
from xdgm.cli.errors import CliError, build_error_payload, log_cli_error
from xdgm.monitor.registry import NodeRegistry
from xdgm.telemetry.decoder import TelemetrySnapshot
from tests.conftest import write_pyproject
from tests.helpers import ManualClock, node_key


@pytest.fixture(autouse=True)
def _no_project_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def test_run_cli_binds_and_prints_empty_summary(
    capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    log_path = tmp_path / "xdgm.log"

    result = run_cli(
        [
            "--host",
            "127.0.0.1",
            "--port",
            "0",
            "--duration",
            "0.05",
            "--log-output",
            str(log_path),
        ]
    )

    assert result == "No nodes reported telemetry."
    assert capsys.readouterr().out.strip() == result
    events = [json.loads(line).get("event") for line in log_path.read_text().splitlines()]
    assert "cli.listening" in events
    assert "cli.stopped" in events


def test_invalid_config_exits_with_usage_status(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    write_pyproject(tmp_path, "[tool.xdgm.monitor]\ncapacity = 0\n")

    with pytest.raises(SystemExit) as excinfo:
        run_cli(["--duration", "0", "--log-output", str(tmp_path / "out.log")])

    assert excinfo.value.code == 2
    assert "capacity" in capsys.readouterr().out


def test_bind_failure_exits_with_io_status(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def refuse(*_args, **_kwargs):
        raise OSError("address in use")

    monkeypatch.setattr(cli_module.AsyncTelemetryListener, "create", refuse)

    with pytest.raises(SystemExit) as excinfo:
        run_cli(
            ["--port", "0", "--duration", "0", "--log-output", str(tmp_path / "out.log")]
        )

    assert excinfo.value.code == 3


def test_command_line_overrides_file_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_pyproject(
        tmp_path,
        """
        [tool.xdgm.monitor]
        host = "127.0.0.1"
        port = 1
        layout = "legacy-v0"
        """,
    )
    seen = {}

    async def fake_run(monitor, settings, duration):
        seen["settings"] = settings
        seen["layout"] = monitor.layout
        seen["duration"] = duration

    monkeypatch.setattr(cli_module, "_run_monitor", fake_run)

    run_cli(
        [
            "--port",
            "0",
            "--layout",
            "xdgm-v1-extended",
            "--duration",
            "2",
            "--log-output",
            str(tmp_path / "out.log"),
        ]
    )

    assert seen["settings"].host == "127.0.0.1"
    assert seen["settings"].port == 0
    assert seen["layout"].value == "xdgm-v1-extended"
    assert seen["duration"] == 2.0


def test_format_node_summary_lists_nodes_in_slot_order() -> None:
    registry = NodeRegistry(clock=ManualClock(), encoder=lambda key: "n" + key.hex()[:6])
    for index in (3, 1):
        key = node_key(index)
        registry.upsert(key, TelemetrySnapshot(node_public_key=key, ledger_seq=100 + index))

    lines = cli_module.format_node_summary(registry).splitlines()

    assert len(lines) == 2
    assert lines[0].split() == ["0", "n" + node_key(3).hex()[:6], "SYNCED", "ledger", "103"]
    assert lines[1].split()[0] == "1"


def test_cli_error_payload_and_logging(caplog: pytest.LogCaptureFixture) -> None:
    error = CliError("bad input", category="usage", context={"path": Path("/tmp/x")})
    assert error.status_code == 2
    assert error.context == {"path": "/tmp/x"}
    assert build_error_payload("boom").status_code == 1

    with caplog.at_level(logging.ERROR, logger="xdgm.cli"):
        log_cli_error(error.payload)

    record = caplog.records[-1]
    assert record.event == "cli.error"
    assert record.category == "usage"
    assert error.payload.as_dict()["context"] == {"path": "/tmp/x"}
