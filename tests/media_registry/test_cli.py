"""Tests for the ``switchboard-media`` CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from Switchboard.MediaRegistry.cli import app


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store_env(tmp_path):
    return {"SWBD_STORAGE__ROOT_DIR": str(tmp_path / "cli-store")}


def test_ingest_local_file(runner, store_env, tmp_path):
    source = tmp_path / "hello.txt"
    source.write_text("hello")

    result = runner.invoke(app, ["ingest", str(source)], env=store_env)

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["filename"] == "hello.txt"
    assert data["profile"]["mediaType"] == "text/plain"
    assert data["content"] == "hello"
    assert "contentIsIncomplete" not in data
    assert list((tmp_path / "cli-store").iterdir()) == []


def test_ingest_keep_and_mediatype(runner, store_env, tmp_path):
    source = tmp_path / "notes.cmdi"
    source.write_text("<CMD/>")

    result = runner.invoke(
        app, ["ingest", str(source), "--mediatype", "application/x-cmdi+xml", "--keep"], env=store_env
    )

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["profile"] == {"mediaType": "application/x-cmdi+xml"}
    assert (tmp_path / "cli-store" / data["id"] / "notes.cmdi").exists()


def test_ingest_bad_identifier(runner, store_env):
    result = runner.invoke(app, ["ingest", "definitely not a link"], env=store_env)

    assert result.exit_code == 1


def test_validate_config(runner, tmp_path):
    good = tmp_path / "good.yaml"
    good.write_text("policy:\n  max_lifetime_s: 60\n")
    bad = tmp_path / "bad.yaml"
    bad.write_text("policy:\n  lifetime: 60\n")

    assert runner.invoke(app, ["validate-config", str(good)]).exit_code == 0
    assert runner.invoke(app, ["validate-config", str(bad)]).exit_code == 1


def test_schema(runner):
    result = runner.invoke(app, ["schema"])

    assert result.exit_code == 0
    assert "policy" in json.loads(result.stdout)["properties"]
