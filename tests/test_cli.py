# tests/test_cli.py

import json

import pytest

import cli


@pytest.fixture
def run(service_config, tmp_path, monkeypatch):
    """Invoke the CLI against a config rooted in tmp_path"""
    config_path = tmp_path / "config.yaml"
    service_config.save(str(config_path))
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    def _run(*argv):
        return cli.main_cli(["-c", str(config_path)] + list(argv))
    return _run


@pytest.fixture
def image_file(tmp_path, image_bytes):
    def _make(name, seed):
        path = tmp_path / name
        path.write_bytes(image_bytes(seed))
        return str(path)
    return _make


def test_ingest_and_query(run, image_file, capsys):
    cat = image_file("cat.png", 1)
    assert run("ingest", "zoo", cat) == 0
    assert run("ingest", "zoo", image_file("dog.png", 2)) == 0
    capsys.readouterr()

    assert run("query", "zoo", cat, "-k", "2", "-o", "json") == 0
    results = json.loads(capsys.readouterr().out)

    assert [r["identifier"] for r in results] == ["cat.png", "dog.png"]
    assert results[0]["rank"] == 1


def test_metrics_file(run, image_file, tmp_path):
    cat = image_file("cat.png", 1)
    metrics = tmp_path / "metrics.json"

    assert run("--metrics", str(metrics), "ingest", "zoo", cat) == 0

    timings = json.loads(metrics.read_text())
    assert [m["operation"] for m in timings] == ["ingest"]


def test_ingest_with_name(run, image_file, capsys):
    assert run("ingest", "zoo", image_file("upload.png", 1), "--name", "renamed.png") == 0
    assert "renamed.png" in capsys.readouterr().out


def test_errors_exit_nonzero(run, image_file, capsys):
    assert run("query", "missing", image_file("cat.png", 1)) == 1
    assert "not found" in capsys.readouterr().err

    assert run("ingest", "zoo", image_file("cat.png", 1), "--name", "../x.png") == 1


def test_remove(run, image_file, capsys):
    run("ingest", "zoo", image_file("cat.png", 1))

    assert run("remove", "zoo", "cat.png") == 0
    assert run("remove", "zoo", "cat.png") == 1


def test_projects_and_cache(run, image_file, capsys):
    run("ingest", "zoo", image_file("cat.png", 1))
    run("ingest", "farm", image_file("cow.png", 2))
    capsys.readouterr()

    assert run("projects") == 0
    out = capsys.readouterr().out
    assert "farm: 1 images" in out
    assert "zoo: 1 images" in out

    assert run("cache", "prune") == 0
    assert "Pruned 0" in capsys.readouterr().out


def test_duplicates_report(run, image_file, tmp_path, capsys):
    cat = image_file("cat.png", 1)
    run("ingest", "zoo", cat)
    report = tmp_path / "report.html"

    assert run("duplicates", "zoo", cat, "-r", str(report)) == 0
    assert "cat.png" in capsys.readouterr().out
    assert report.exists()


def test_no_command_prints_help(run, capsys):
    assert run() == 0
    assert "usage" in capsys.readouterr().out
