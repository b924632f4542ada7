from __future__ import annotations

import getpass
import os
import socket
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingConfigError(RuntimeError):
    """Raised on the first access to a critical config value when it is missing."""


class Paths(BaseModel):
    # archive is downloaded here and the runner directory is created under it
    work_dir: Path = Field(default=Path("."))
    runner_dir_name: str = Field(default="runner")

    @property
    def runner_dir(self) -> Path:
        return self.work_dir / self.runner_dir_name


class GitHubSettings(BaseModel):
    api_url: str = Field(default="https://api.github.com")
    web_url: str = Field(default="https://github.com")
    # GitHub Enterprise Server hostname, e.g. my.ghe.deployment.net
    ghe_hostname: str | None = Field(default=None)
    # runner releases are always taken from github.com
    release_api_url: str = Field(
        default="https://api.github.com/repos/actions/runner/releases/latest"
    )
    release_download_url: str = Field(
        default="https://github.com/actions/runner/releases/download"
    )
    request_timeout_sec: float = Field(default=30.0)

    @property
    def api_base(self) -> str:
        if self.ghe_hostname:
            return f"https://{self.ghe_hostname}/api/v3"
        return self.api_url.rstrip("/")

    def runner_url(self, scope: str) -> str:
        if self.ghe_hostname:
            return f"https://{self.ghe_hostname}/{scope}"
        return f"{self.web_url.rstrip('/')}/{scope}"


class RunnerSettings(BaseModel):
    """Options handed to the runner's unattended configuration."""

    # :owner/:repo or :organization
    scope: str | None = Field(default=None)
    name: str = Field(default_factory=socket.gethostname)
    group: str | None = Field(default=None)
    # comma separated
    labels: str | None = Field(default=None)
    svc_user: str = Field(default_factory=getpass.getuser)
    replace: bool = Field(default=False)
    disable_update: bool = Field(default=False)
    ephemeral: bool = Field(default=True)


class SuperviseSettings(BaseModel):
    ready_text: str = Field(default="Listening for Jobs")
    # treat ready_text as a regular expression
    ready_regex: bool = Field(default=False)
    not_ready_timeout_sec: float = Field(default=3600.0, gt=0)
    ready_timeout_sec: float = Field(default=5.0, gt=0)
    merge_stderr: bool = Field(default=False)
    terminate_on_timeout: bool = Field(default=True)
    stop_timeout_sec: float = Field(default=15.0)
    kill_timeout_sec: float = Field(default=2.0)
    max_line_len: int = Field(default=4000)


class Secrets(BaseModel):
    """
    Holds secrets; values are optional at construction time and validated lazily on access.
    Filled from env explicitly in AppConfig.from_yaml().
    """

    pat_raw: SecretStr | None = Field(default=None)

    @property
    def pat(self) -> SecretStr:
        if self.pat_raw is None:
            raise MissingConfigError("RUNNER_CFG_PAT must be set before calling")
        return self.pat_raw


class AppConfig(BaseSettings):
    """
    Main application settings.

    Source of truth:
      1) YAML file (structured config)
      2) Env overrides for secrets and the GHE host, merged explicitly in from_yaml()
      3) CLI options, applied by the caller on top
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    paths: Paths = Field(default_factory=Paths)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    supervise: SuperviseSettings = Field(default_factory=SuperviseSettings)
    secrets: Secrets = Field(default_factory=Secrets)

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """
        Load config from YAML, then overlay flat env values.
        Search order if path is not provided:
          ./provisioner.yaml
          /etc/runner-provisioner/config.yaml
        """
        candidates: list[Path] = []
        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")
            candidates.append(path)
        else:
            candidates.extend(
                [Path("provisioner.yaml"), Path("/etc/runner-provisioner/config.yaml")]
            )

        raw: dict[str, object] = {}
        for p in candidates:
            if p.exists():
                loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
                if not isinstance(loaded, dict):
                    raise ValueError(f"YAML at {p} must define a mapping at the root")
                raw = loaded
                break

        cfg = cls.model_validate(raw)

        def _get_env(*names: str) -> str | None:
            for n in names:
                v = os.getenv(n)
                if v is not None and v != "":
                    return v
            return None

        pat = _get_env("RUNNER_CFG_PAT")
        if pat is not None:
            cfg.secrets.pat_raw = SecretStr(pat)

        ghe = _get_env("RUNNER_GHE_HOSTNAME")
        if ghe is not None:
            cfg.github.ghe_hostname = ghe

        return cfg


__all__ = [
    "AppConfig",
    "GitHubSettings",
    "MissingConfigError",
    "Paths",
    "RunnerSettings",
    "Secrets",
    "SuperviseSettings",
]
