from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from splicer.cli import cli
from tests.helpers import make_answers

pytestmark = pytest.mark.unit


def _json_output(text: str) -> dict:
    """The JSON document printed after any log lines."""
    lines = text.splitlines()
    start = lines.index("{")
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.delenv("SPLICER_DB_URL", raising=False)
    return CliRunner()


def test_splice_array_file(runner: CliRunner, tmp_path: Path) -> None:
    path = tmp_path / "submission.json"
    path.write_text(json.dumps(make_answers({25: "AI"})), encoding="utf-8")

    result = runner.invoke(cli, ["splice", str(path)])

    assert result.exit_code == 0, result.output
    summary = _json_output(result.stdout)
    assert summary["new_identity"] is True
    assert [w["ledger"] for w in summary["written"]] == ["AI"]


def test_splice_object_from_stdin(runner: CliRunner) -> None:
    payload = {"answers": make_answers({31: "HPC"}), "response_row": 12}

    result = runner.invoke(cli, ["splice", "-"], input=json.dumps(payload))

    assert result.exit_code == 0, result.output
    summary = _json_output(result.stdout)
    assert [w["ledger"] for w in summary["written"]] == ["HPC"]


def test_splice_rejects_short_vector(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["splice", "-"], input=json.dumps(["a", "b"]))

    assert result.exit_code == 1


def test_splice_rejects_bad_json(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["splice", "-"], input="{oops")

    assert result.exit_code == 2


def test_show_routing(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["show-routing"])

    assert result.exit_code == 0
    table = _json_output(result.stdout)
    assert table["destinations"]["AI"]["start"] == 32
    assert table["negative_sentinel"] == "No"


def test_init_db_requires_database(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["init-db"])

    assert result.exit_code == 1


def test_serve_runs_uvicorn(runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    import uvicorn

    calls: list[tuple] = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    result = runner.invoke(cli, ["serve", "--port", "9001"])

    assert result.exit_code == 0, result.output
    assert calls[0][0] == "splicer.main:app"
    assert calls[0][1]["port"] == 9001
