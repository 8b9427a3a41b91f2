from __future__ import annotations

from pathlib import Path

import pytest

from tweetchat.config import load_config


def test_missing_file_uses_defaults(tmp_path: Path):
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg["storage"]["backend"] == "disk"
    assert cfg["llm"]["history_window"] == 4
    assert cfg["auth"]["tokens"] == {}


def test_file_values_merge_over_defaults(tmp_path: Path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "storage:\n  backend: s3\n  bucket: tweets\nauth:\n  tokens:\n    abc: u1\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg["storage"]["backend"] == "s3"
    assert cfg["storage"]["bucket"] == "tweets"
    # untouched keys in the same section survive the merge
    assert cfg["storage"]["data_dir"] == "data"
    assert cfg["auth"]["tokens"] == {"abc": "u1"}


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "env.yaml"
    path.write_text("llm:\n  model_name: gemini-test\n", encoding="utf-8")
    monkeypatch.setenv("TWEETCHAT_CONFIG", str(path))
    assert load_config()["llm"]["model_name"] == "gemini-test"


def test_prefixed_env_overrides_are_coerced(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TWEETCHAT__LLM__HISTORY_WINDOW", "6")
    monkeypatch.setenv("TWEETCHAT__LLM__TEMPERATURE", "0.3")
    monkeypatch.setenv("TWEETCHAT__SERVER__DEBUG", "true")
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg["llm"]["history_window"] == 6
    assert cfg["llm"]["temperature"] == 0.3
    assert cfg["server"]["debug"] is True


def test_conventional_env_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GEMINI_API_KEY", "key-123")
    monkeypatch.setenv("S3_BUCKET_NAME", "bucket-x")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg["llm"]["api_key"] == "key-123"
    assert cfg["storage"]["bucket"] == "bucket-x"
    assert cfg["storage"]["region"] == "eu-west-1"


def test_non_mapping_file_is_rejected(tmp_path: Path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_config(str(path))


def test_shipped_default_config_loads():
    root = Path(__file__).resolve().parent.parent
    cfg = load_config(str(root / "config" / "default.yaml"))
    assert cfg["auth"]["tokens"]["dev-token"] == "dev_user"
