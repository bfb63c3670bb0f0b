# Copyright (c) 2025 Trae AI. All rights reserved.

import json
import pytest
import yaml
from typer.testing import CliRunner
from cloudshelf.cli.main import app
from cloudshelf.infrastructure.db.database import Database
from cloudshelf.infrastructure.db.repository import CatalogStore

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "database_path": str(tmp_path / "cli.db"),
        "media_extensions": [".mkv"],
        "scan_interval_minutes": 0,
    }))
    return str(path)

@pytest.fixture
def movies_dir(tmp_path):
    root = tmp_path / "movies"
    root.mkdir()
    (root / "Alien.1979.mkv").write_text("x")
    (root / "Heat.1995.mkv").write_text("x")
    return root


def _store(tmp_path):
    return CatalogStore(Database(tmp_path / "cli.db"))


def test_missing_config_exits(tmp_path):
    result = runner.invoke(app, ["list", "--config-path", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1

def test_add_library_and_scan(tmp_path, config_file, movies_dir):
    result = runner.invoke(app, ["library", "add", "Movies", "movies", str(movies_dir), "--config-path", config_file])
    assert result.exit_code == 0, result.output

    # No TMDB key configured, so items keep their parsed titles
    result = runner.invoke(app, ["scan", "--config-path", config_file])
    assert result.exit_code == 0, result.output

    titles = sorted(i.title for i in _store(tmp_path).media.get_all())
    assert titles == ["Alien", "Heat"]

def test_export_and_import(tmp_path, config_file, movies_dir):
    runner.invoke(app, ["library", "add", "Movies", "movies", str(movies_dir), "--config-path", config_file])
    runner.invoke(app, ["scan", "--config-path", config_file])
    out = tmp_path / "snapshot.json"

    result = runner.invoke(app, ["export", str(out), "--config-path", config_file])
    assert result.exit_code == 0, result.output
    snapshot = json.loads(out.read_text())
    assert len(snapshot["media_items"]) == 2

    result = runner.invoke(app, ["import", str(out), "--config-path", config_file])
    assert result.exit_code == 0, result.output

def test_progress_command(tmp_path, config_file):
    result = runner.invoke(app, ["progress", "item1", "120", "1000", "--config-path", config_file])
    assert result.exit_code == 0, result.output
    assert _store(tmp_path).progress.get("item1").position == 120
