from __future__ import annotations

import json
from pathlib import Path

import httpx
from typer.testing import CliRunner

from loop_backend import cli
from tests.support.twine_samples import COFFEE_SHOP_HTML, coffee_shop_json_bytes

runner = CliRunner()


def _write(tmp_path: Path, name: str, data: bytes) -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


def test_convert_prints_story_payload(tmp_path: Path) -> None:
    path = _write(tmp_path, "coffee.json", coffee_shop_json_bytes())

    result = runner.invoke(cli.app, ["convert", str(path), "--slug", "late-latte"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["slug"] == "late-latte"
    assert [node["type"] for node in payload["nodes"]] == ["NARRATIVE", "RESOLUTION"]
    assert payload["transitions"][0]["from"] == "start"


def test_validate_reports_node_types(tmp_path: Path) -> None:
    path = _write(tmp_path, "coffee.html", COFFEE_SHOP_HTML.encode("utf-8"))

    result = runner.invoke(cli.app, ["validate", str(path)])

    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["ok"] is True
    assert report["passages"] == 4
    assert report["nodeTypes"]["start"] == "DECISION"


def test_validate_fails_for_empty_story(tmp_path: Path) -> None:
    path = _write(tmp_path, "empty.json", json.dumps({"name": "Empty", "passages": []}).encode())

    result = runner.invoke(cli.app, ["validate", str(path)])

    assert result.exit_code == 1
    assert "must include passages" in result.stdout


def test_convert_fails_for_unparseable_export(tmp_path: Path) -> None:
    path = _write(tmp_path, "story.html", b"<html>nothing</html>")

    result = runner.invoke(cli.app, ["convert", str(path)])

    assert result.exit_code == 1


def test_upload_posts_multipart_with_token(tmp_path: Path, monkeypatch) -> None:
    path = _write(tmp_path, "coffee.json", coffee_shop_json_bytes())
    seen: dict = {}

    def _fake_request(method, endpoint, **kwargs):
        seen.update(method=method, endpoint=endpoint, **kwargs)
        return httpx.Response(201, json={"slug": "late-latte", "nodes": 2})

    monkeypatch.setattr(cli, "request", _fake_request)
    monkeypatch.setenv("LOOP_TOKEN", "tok")

    result = runner.invoke(cli.app, ["upload", str(path), "--slug", "late-latte"])

    assert result.exit_code == 0, result.output
    assert (seen["method"], seen["endpoint"]) == ("POST", "/creator/import")
    assert seen["headers"] == {"Authorization": "Bearer tok"}
    assert seen["files"]["twineFile"][0] == "coffee.json"
    assert json.loads(seen["data"]["overrides"]) == {"slug": "late-latte"}
    assert json.loads(result.stdout)["nodes"] == 2


def test_submit_exits_non_zero_on_http_error(monkeypatch) -> None:
    monkeypatch.setattr(
        cli,
        "request",
        lambda method, endpoint, **kwargs: httpx.Response(502, json={"detail": {"code": "NOTIFICATION_FAILED"}}),
    )
    monkeypatch.setenv("LOOP_TOKEN", "tok")

    result = runner.invoke(cli.app, ["submit", "coffee-shop-dilemma"])

    assert result.exit_code == 1


def test_remote_commands_need_a_token(monkeypatch) -> None:
    monkeypatch.delenv("LOOP_TOKEN", raising=False)
    result = runner.invoke(cli.app, ["submit", "coffee-shop-dilemma"])
    assert result.exit_code != 0
