"""Tests for the replay command line."""

import json
from pathlib import Path

import pytest

from servicedesk_notify.__main__ import main


@pytest.fixture
def config_args(tmp_path: Path) -> list[str]:
    return [
        "--defaults-file",
        str(tmp_path / "no-defaults.yaml"),
        "--config-file",
        str(tmp_path / "no-config.yaml"),
    ]


def _write(tmp_path: Path, name: str, doc: dict) -> str:
    path = tmp_path / name
    path.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")
    return str(path)


def test_dry_run_prints_detected_events(
    tmp_path: Path, config_args: list[str], capsys: pytest.CaptureFixture[str]
) -> None:
    before = _write(tmp_path, "before.json", {"title": "تسرب", "creatorId": "c1", "onLocation": False})
    after = _write(tmp_path, "after.json", {"title": "تسرب", "creatorId": "c1", "onLocation": True})

    exit_code = main([
        *config_args,
        "replay",
        "updated",
        "--id",
        "req1",
        "--before",
        before,
        "--after",
        after,
        "--dry-run",
    ])

    assert exit_code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["kind"] == "arrived_on_site"
    assert event["recipients"] == ["c1"]
    assert event["data"] == {"type": "serviceRequest", "id": "req1"}


def test_missing_document_argument_is_an_error(config_args: list[str]) -> None:
    assert main([*config_args, "replay", "created", "--id", "req1", "--dry-run"]) == 2


def test_unreadable_document_is_an_error(tmp_path: Path, config_args: list[str]) -> None:
    assert (
        main([
            *config_args,
            "replay",
            "announcement",
            "--id",
            "a1",
            "--document",
            str(tmp_path / "missing.json"),
            "--dry-run",
        ])
        == 2
    )
