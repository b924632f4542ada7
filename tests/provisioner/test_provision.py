from __future__ import annotations

import getpass
import io
import shutil
import tarfile
from pathlib import Path
from typing import Any

import pytest
from pydantic import SecretStr

import provisioner.provision as provision_module
from provisioner.config import AppConfig, MissingConfigError
from provisioner.errors import ProvisionError
from provisioner.github.client import ReleaseInfo
from provisioner.installer.platform import RunnerPlatform
from provisioner.provision import Provisioner


CONFIG_SH = b'#!/bin/sh\necho "$@" > .configured\n'


def _tarball(path: Path, run_sh: bytes) -> None:
    with tarfile.open(path, mode="w:gz") as tar:
        for name, data in (("config.sh", CONFIG_SH), ("run.sh", run_sh)):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))


class FakeGitHubClient:
    calls: list[tuple[str, Any]] = []

    def __init__(self, session: Any, settings: Any, log_event: Any) -> None:
        self._settings = settings

    async def fetch_registration_token(self, scope: str, credential: SecretStr) -> str:
        self.calls.append(("token", (scope, credential.get_secret_value())))
        return "REG-TOKEN"

    async def fetch_latest_release(self, runner_platform: RunnerPlatform) -> ReleaseInfo:
        self.calls.append(("release", runner_platform))
        filename = f"actions-runner-{runner_platform.slug}-2.316.1.tar.gz"
        return ReleaseInfo(
            tag="v2.316.1",
            version="2.316.1",
            filename=filename,
            download_url=f"https://example.invalid/{filename}",
        )


def _config(tmp_path: Path, **supervise: Any) -> AppConfig:
    cfg = AppConfig.model_validate(
        {
            "paths": {"work_dir": str(tmp_path)},
            "runner": {
                "scope": "octo-org/octo-repo",
                "name": "build-01",
                "svc_user": getpass.getuser(),
            },
            "supervise": {"ready_timeout_sec": 0.3, "not_ready_timeout_sec": 2.0, **supervise},
        }
    )
    cfg.secrets.pat_raw = SecretStr("ghp_test")
    return cfg


@pytest.fixture
def patched(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, bytes]:
    """Replace network collaborators; `run_sh` selects the runner script in the archive."""
    state: dict[str, bytes] = {"run_sh": b"#!/bin/sh\necho 'Listening for Jobs'\n"}
    FakeGitHubClient.calls = []

    async def fake_download(session: Any, url: str, dest: Path, log_event: Any, **_: Any) -> Path:
        source = tmp_path / "source.tar.gz"
        _tarball(source, state["run_sh"])
        shutil.copy(source, dest)
        return dest

    monkeypatch.setattr(provision_module, "GitHubClient", FakeGitHubClient)
    monkeypatch.setattr(provision_module, "download_archive", fake_download)
    monkeypatch.setattr(
        provision_module, "detect_platform", lambda: RunnerPlatform(os="linux", arch="x64")
    )
    return state


async def test_provision_end_to_end(tmp_path: Path, patched: dict[str, bytes]) -> None:
    echoed: list[str] = []

    code = await Provisioner(_config(tmp_path), echo=echoed.append).run()

    assert code == 0
    assert echoed == ["Listening for Jobs"]
    assert FakeGitHubClient.calls[0] == ("token", ("octo-org/octo-repo", "ghp_test"))
    configured = (tmp_path / "runner" / ".configured").read_text(encoding="utf-8").strip()
    assert configured == (
        "--unattended --url https://github.com/octo-org/octo-repo --token REG-TOKEN "
        "--name build-01 --ephemeral"
    )
    assert (tmp_path / "actions-runner-linux-x64-2.316.1.tar.gz").exists()


async def test_provision_runner_never_ready(tmp_path: Path, patched: dict[str, bytes]) -> None:
    patched["run_sh"] = b"#!/bin/sh\necho 'Connecting'\necho 'An error occurred'\nexit 1\n"
    echoed: list[str] = []

    code = await Provisioner(_config(tmp_path), echo=echoed.append).run()

    assert code == 1
    assert echoed == ["Connecting", "An error occurred"]


async def test_provision_follows_runner_exit_code(
    tmp_path: Path, patched: dict[str, bytes]
) -> None:
    patched["run_sh"] = (
        b"#!/bin/sh\necho 'Listening for Jobs'\nsleep 1\necho 'Running job: build'\nexit 7\n"
    )
    echoed: list[str] = []

    code = await Provisioner(_config(tmp_path), echo=echoed.append).run()

    assert code == 7
    assert echoed == ["Listening for Jobs", "Running job: build"]


def test_validate_requires_scope(tmp_path: Path) -> None:
    cfg = _config(tmp_path)
    cfg.runner.scope = None
    with pytest.raises(ProvisionError, match="scope"):
        Provisioner(cfg).validate()


def test_validate_requires_pat(tmp_path: Path) -> None:
    cfg = _config(tmp_path)
    cfg.secrets.pat_raw = None
    with pytest.raises(MissingConfigError, match="RUNNER_CFG_PAT"):
        Provisioner(cfg).validate()


def test_validate_refuses_existing_runner_dir(tmp_path: Path) -> None:
    (tmp_path / "runner").mkdir()
    with pytest.raises(ProvisionError, match="Runner already exists"):
        Provisioner(_config(tmp_path)).validate()


async def test_existing_runner_dir_fails_before_any_request(
    tmp_path: Path, patched: dict[str, bytes]
) -> None:
    (tmp_path / "runner").mkdir()
    with pytest.raises(ProvisionError, match="Runner already exists"):
        await Provisioner(_config(tmp_path)).run()
    assert FakeGitHubClient.calls == []
