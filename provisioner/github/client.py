"""
GitHub REST calls needed to register a self-hosted runner.

Only two endpoints are used: the scope's registration-token endpoint and the
latest release of actions/runner. Everything is a single request with one
JSON field pulled out of the body; failures become ProvisionError.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import aiohttp
from pydantic import SecretStr
from structlog.typing import FilteringBoundLogger

from provisioner.config import GitHubSettings
from provisioner.errors import ProvisionError
from provisioner.installer.platform import RunnerPlatform


USER_AGENT = "runner-provisioner/0.1.0"
ACCEPT = "application/vnd.github.everest-preview+json"


@dataclass(slots=True, frozen=True)
class RunnerScope:
    """`owner/repo` for a repository runner, `org` for an organization runner"""

    scope: str

    def __post_init__(self) -> None:
        parts = self.scope.strip("/").split("/")
        if not self.scope.strip("/") or any(not p for p in parts) or len(parts) > 2:
            raise ProvisionError(f"Invalid runner scope: {self.scope!r}")

    @property
    def kind(self) -> str:
        return "repos" if "/" in self.scope.strip("/") else "orgs"

    @property
    def path(self) -> str:
        return f"{self.kind}/{self.scope.strip('/')}"


@dataclass(slots=True, frozen=True)
class ReleaseInfo:
    tag: str
    version: str
    filename: str
    download_url: str


class GitHubClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: GitHubSettings,
        log_event: FilteringBoundLogger,
    ) -> None:
        self._session = session
        self._settings = settings
        self._log = log_event
        self._timeout = aiohttp.ClientTimeout(total=settings.request_timeout_sec)

    async def _request_json(
        self, method: str, url: str, *, credential: SecretStr | None = None
    ) -> Any:
        headers = {"Accept": ACCEPT, "User-Agent": USER_AGENT}
        if credential is not None:
            headers["Authorization"] = f"token {credential.get_secret_value()}"

        try:
            async with self._session.request(
                method, url, headers=headers, timeout=self._timeout
            ) as resp:
                if resp.status == 401:
                    raise ProvisionError("Invalid RUNNER_CFG_PAT (401 Unauthorized).")
                if resp.status == 404:
                    raise ProvisionError(
                        f"Resource not found at {url} (404). Check permissions or scope."
                    )
                if resp.status >= 400:
                    raise ProvisionError(f"GitHub API error: {resp.status} {resp.reason}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:  # noqa: UP041
            raise ProvisionError(f"Network error connecting to GitHub: {exc!r}") from exc
        except ValueError as exc:
            raise ProvisionError(f"Invalid API response from {url}: {exc}") from exc

    async def fetch_registration_token(
        self, scope: str, credential: SecretStr, *, api_base: str | None = None
    ) -> str:
        runner_scope = RunnerScope(scope)
        base = (api_base or self._settings.api_base).rstrip("/")
        url = f"{base}/{runner_scope.path}/actions/runners/registration-token"

        self._log.info("github.token_request", scope=runner_scope.scope, kind=runner_scope.kind)
        data = await self._request_json("POST", url, credential=credential)

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or token in ("", "null"):
            raise ProvisionError("Failed to get a token")

        self._log.info("github.token_received", scope=runner_scope.scope)
        return token

    async def fetch_latest_release(self, runner_platform: RunnerPlatform) -> ReleaseInfo:
        data = await self._request_json("GET", self._settings.release_api_url)

        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not isinstance(tag, str) or not tag:
            raise ProvisionError("Latest runner release has no tag_name")

        version = tag[1:] if tag.startswith("v") else tag
        filename = f"actions-runner-{runner_platform.slug}-{version}.tar.gz"
        download_url = f"{self._settings.release_download_url.rstrip('/')}/{tag}/{filename}"

        self._log.info("github.latest_release", tag=tag, platform=runner_platform.slug)
        return ReleaseInfo(tag=tag, version=version, filename=filename, download_url=download_url)


__all__ = ["GitHubClient", "ReleaseInfo", "RunnerScope"]
