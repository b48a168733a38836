import asyncio

import pytest

import cli


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kw: 20)


def test_snapshot_from_markdown_file(tmp_path):
    p = tmp_path / "notes.md"
    p.write_text("# Title\n\nFirst para.\n## Sub\nSecond para.\n#hashtag line\n", encoding="utf-8")
    snap = cli.snapshot_from_file(p)
    assert [n.tag for n in snap.root.children] == ["h1", "p", "h2", "p", "p"]
    assert snap.url.startswith("file://")
    assert snap.title == "notes"


def test_json_notes_store(tmp_path):
    p = tmp_path / "notes.json"
    p.write_text('{"n1": {"name": "A", "content": "a"}}', encoding="utf-8")
    store = cli.JsonNotesStore(p)
    assert asyncio.run(store.get("notes")) == {"n1": {"name": "A", "content": "a"}}
    assert asyncio.run(store.get("other")) is None


def test_verbose_and_quiet_conflict():
    assert cli.main(["--verbose", "--quiet", "ask", "q", "--pill", "x"]) == 2


def test_remote_endpoint_refused_offline(tmp_path, capsys):
    code = cli.main(
        ["--config", str(tmp_path / "none.yaml"), "ask", "q", "--pill", "x", "--endpoint", "http://gpu.example.com:11434"]
    )
    assert code == 2
    assert "Offline mode" in capsys.readouterr().err


def test_bad_config_is_reported(tmp_path, capsys):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("retrieval:\n  topM: -1\n", encoding="utf-8")
    assert cli.main(["--config", str(cfg), "ask", "q", "--pill", "x"]) == 2
    assert "config error" in capsys.readouterr().err
