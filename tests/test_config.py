import textwrap

import pytest

from integrasync.core.config import load_config


def _isolate(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return (str(tmp_path / "integrasync.yml"),)


def test_defaults_and_run_id_generated(tmp_path, monkeypatch):
    cfg = load_config(files=_isolate(tmp_path, monkeypatch))
    assert cfg.scheduler.interval_sec == 2.0
    assert cfg.app.concurrency == 4
    assert cfg.remote.verify_tls is True
    assert cfg.tree.path == "./board.json"
    assert cfg.status.error_marker == "\U0001F534"
    assert cfg.logging.console_level == "INFO"
    rid1 = cfg.run_id
    rid2 = cfg.run_id
    assert isinstance(rid1, str) and len(rid1) >= 8
    assert rid1 == rid2


def test_file_then_env_then_cli_precedence(tmp_path, monkeypatch):
    files = _isolate(tmp_path, monkeypatch)
    (tmp_path / "integrasync.yml").write_text(textwrap.dedent("""
      tree:
        path: "file-board.json"
      remote:
        token: "FILE"
        retries: 5
      logging:
        console_level: "WARNING"
      scheduler:
        interval_sec: 7
    """), encoding="utf-8")

    monkeypatch.setenv("ISYNC_REMOTE__VERIFY_TLS", "false")
    monkeypatch.setenv("ISYNC_REMOTE__RETRIES", "3")
    monkeypatch.setenv("ISYNC_TREE__PATH", "env-board.json")

    cfg = load_config({"tree": {"path": "cli-board.json"}}, files=files)

    assert cfg.tree.path == "cli-board.json"
    assert cfg.remote.verify_tls is False
    assert cfg.remote.retries == 3
    assert cfg.remote.token == "FILE"
    assert cfg.logging.console_level == "WARNING"
    assert cfg.scheduler.interval_sec == 7.0


def test_env_interpolation_and_dotenv(tmp_path, monkeypatch):
    files = _isolate(tmp_path, monkeypatch)
    (tmp_path / "integrasync.yml").write_text('remote:\n  token: "${DIRECTORY_TOKEN}"\n', encoding="utf-8")
    (tmp_path / ".env").write_text("DIRECTORY_TOKEN=from-dotenv\nISYNC_APP__CONCURRENCY=9\n", encoding="utf-8")
    monkeypatch.delenv("DIRECTORY_TOKEN", raising=False)
    monkeypatch.setenv("ISYNC_APP__CONCURRENCY", "2")

    cfg = load_config(files=files)

    assert cfg.remote.token == "from-dotenv"
    # real environment wins over .env
    assert cfg.app.concurrency == 2
    monkeypatch.delenv("DIRECTORY_TOKEN")


def test_validation_lists_every_problem(tmp_path, monkeypatch):
    files = _isolate(tmp_path, monkeypatch)
    with pytest.raises(ValueError) as exc:
        load_config(
            {
                "tree": {"path": ""},
                "app": {"concurrency": 0},
                "scheduler": {"interval_sec": -1},
                "remote": {"retries": -2},
                "status": {"error_marker": "ERROR"},
            },
            files=files,
        )
    msg = str(exc.value)
    for key in ("tree.path", "app.concurrency", "scheduler.interval_sec", "remote.retries", "status.error_marker"):
        assert key in msg


def test_non_mapping_yaml_is_rejected(tmp_path, monkeypatch):
    files = _isolate(tmp_path, monkeypatch)
    (tmp_path / "integrasync.yml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(files=files)
