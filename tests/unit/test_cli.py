"""Unit tests for the command-line entrypoint."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from golem_requestor import cli as cli_module
from golem_requestor.errors import BatchTimeout
from golem_requestor.execution import CommandExecuted, CommandStdOut, PollingBatch
from golem_requestor.rest.activity import Activity, ActivityApi, ActivityState
from golem_requestor.rest.market import Agreement, MarketApi


@pytest.fixture(autouse=True)
def _env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("YAGNA_APPKEY", "secret")
    monkeypatch.delenv("YAGNA_API_URL", raising=False)
    monkeypatch.delenv("YAGNA_ACTIVITY_URL", raising=False)
    monkeypatch.setattr(cli_module, "configure_logging", Mock())
    monkeypatch.setattr(cli_module, "ActivityApi", Mock(spec=ActivityApi))
    monkeypatch.setattr(cli_module, "MarketApi", Mock(spec=MarketApi))


def _fake_activity(monkeypatch: pytest.MonkeyPatch) -> Mock:
    activity = Mock(spec=Activity)
    monkeypatch.setattr(cli_module, "Activity", Mock(return_value=activity))
    return activity


def _script(tmp_path: Path) -> Path:
    path = tmp_path / "script.json"
    path.write_text(json.dumps([{"deploy": {}}, {"start": {}}]), encoding="utf-8")
    return path


def test_missing_app_key_is_a_config_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("YAGNA_APPKEY")

    assert cli_module.main(["state", "act-1"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_state_prints_json(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    activity = _fake_activity(monkeypatch)
    activity.state.return_value = ActivityState(state=["Ready", None])

    assert cli_module.main(["state", "act-1"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["state"] == ["Ready", None]
    cli_module.ActivityApi.assert_called_once_with(
        base_url="http://127.0.0.1:7465/activity-api/v1", app_key="secret", timeout=30.0
    )


def test_exec_prints_one_line_per_event(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    activity = _fake_activity(monkeypatch)
    batch = Mock(spec=PollingBatch)
    batch.id = "batch-1"
    batch.size = 2
    batch.events.return_value = iter(
        [
            CommandExecuted(index=0, success=True),
            CommandStdOut(index=1, output="hi"),
            CommandExecuted(index=1, success=True),
        ]
    )
    activity.send.return_value = batch

    code = cli_module.main(["exec", "act-1", "--script", str(_script(tmp_path)), "--stream"])

    assert code == 0
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert [line["kind"] for line in lines] == [
        "CommandExecuted",
        "CommandStdOut",
        "CommandExecuted",
    ]
    assert lines[1]["output"] == "hi"
    assert activity.send.call_args.kwargs["stream"] is True


def test_exec_fails_when_a_command_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    activity = _fake_activity(monkeypatch)
    batch = Mock(spec=PollingBatch)
    batch.id = "batch-1"
    batch.size = 1
    batch.events.return_value = iter([CommandExecuted(index=0, success=False, message="boom")])
    activity.send.return_value = batch

    assert cli_module.main(["exec", "act-1", "--script", str(_script(tmp_path))]) == 1


def test_exec_reports_batch_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    activity = _fake_activity(monkeypatch)
    activity.send.side_effect = BatchTimeout("batch-1")

    assert cli_module.main(["exec", "act-1", "--script", str(_script(tmp_path))]) == 1
    assert "batch-1" in capsys.readouterr().err
    cli_module.ActivityApi.return_value.close.assert_called_once_with()


def test_terminate_reports_already_gone(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    agreement = Mock(spec=Agreement)
    agreement.terminate.return_value = False
    monkeypatch.setattr(cli_module, "Agreement", Mock(return_value=agreement))

    assert cli_module.main(["terminate", "agr-1", "--message", "done"]) == 0

    agreement.terminate.assert_called_once_with({"message": "done"})
    assert "already terminated" in capsys.readouterr().out
