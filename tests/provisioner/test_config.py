from __future__ import annotations

from pathlib import Path

import pytest

from provisioner.config import AppConfig, MissingConfigError


# ---- Env cleanup ----
@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for k in ("RUNNER_CFG_PAT", "RUNNER_GHE_HOSTNAME"):
        monkeypatch.delenv(k, raising=False)
    # keep ./provisioner.yaml lookups away from the repo checkout
    monkeypatch.chdir(tmp_path)


def _write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


# ---- 1) Defaults mirror the stock runner script ----
def test_defaults() -> None:
    cfg = AppConfig.from_yaml()
    assert cfg.paths.runner_dir == Path("runner")
    assert cfg.github.api_base == "https://api.github.com"
    assert cfg.supervise.ready_text == "Listening for Jobs"
    assert cfg.supervise.not_ready_timeout_sec == 3600.0
    assert cfg.supervise.ready_timeout_sec == 5.0
    assert cfg.runner.ephemeral is True
    assert cfg.runner.name


# ---- 2) YAML values load into nested sections ----
def test_yaml_values(tmp_path: Path) -> None:
    cfg = AppConfig.from_yaml(
        _write_yaml(
            tmp_path / "config.yaml",
            """\
paths:
  work_dir: /srv/ci
  runner_dir_name: runner-a
runner:
  scope: octo-org/octo-repo
  labels: gpu,linux
  disable_update: true
supervise:
  ready_text: "Listening for (Jobs|Work)"
  ready_regex: true
  ready_timeout_sec: 10
""",
        )
    )
    assert cfg.paths.runner_dir == Path("/srv/ci/runner-a")
    assert cfg.runner.scope == "octo-org/octo-repo"
    assert cfg.runner.labels == "gpu,linux"
    assert cfg.runner.disable_update is True
    assert cfg.supervise.ready_regex is True
    assert cfg.supervise.ready_timeout_sec == 10.0


# ---- 3) ./provisioner.yaml is picked up without an explicit path ----
def test_yaml_search_path(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "provisioner.yaml", "runner:\n  name: build-01\n")
    assert AppConfig.from_yaml().runner.name == "build-01"


def test_explicit_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AppConfig.from_yaml(tmp_path / "nope.yaml")


def test_yaml_root_must_be_mapping(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="mapping"):
        AppConfig.from_yaml(_write_yaml(tmp_path / "config.yaml", "- a\n- b\n"))


# ---- 4) Lazy secret: PAT missing raises on access ----
def test_missing_pat_raises() -> None:
    cfg = AppConfig.from_yaml()
    with pytest.raises(MissingConfigError) as ei:
        _ = cfg.secrets.pat
    assert "RUNNER_CFG_PAT" in str(ei.value)


# ---- 5) Env overlay: PAT and GHE host ----
def test_env_overlay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RUNNER_CFG_PAT", "ghp_abc123")
    monkeypatch.setenv("RUNNER_GHE_HOSTNAME", "ghe.example.net")
    cfg = AppConfig.from_yaml()
    assert cfg.secrets.pat.get_secret_value() == "ghp_abc123"
    assert cfg.github.api_base == "https://ghe.example.net/api/v3"
    assert cfg.github.runner_url("octo-org") == "https://ghe.example.net/octo-org"


def test_runner_url_public() -> None:
    cfg = AppConfig.from_yaml()
    assert cfg.github.runner_url("octo-org/octo-repo") == "https://github.com/octo-org/octo-repo"


def test_timeouts_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        AppConfig.from_yaml(
            _write_yaml(tmp_path / "config.yaml", "supervise:\n  ready_timeout_sec: 0\n")
        )
