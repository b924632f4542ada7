from __future__ import annotations

import aiohttp
from structlog.typing import FilteringBoundLogger

from provisioner.config import AppConfig
from provisioner.errors import ProvisionError
from provisioner.github.client import GitHubClient
from provisioner.installer.archive import download_archive, extract_archive
from provisioner.installer.configure import chown_runner_dir, configure_runner, make_runner_dir
from provisioner.installer.platform import detect_platform
from provisioner.logger import get_logger
from provisioner.supervisor import Echo, echo_stdout, from_text, supervise


class Provisioner:
    """
    Registers, installs and starts one self-hosted runner.

    validate -> runner dir -> token -> download -> extract -> configure ->
    supervise ./run.sh -> follow it until exit
    """

    def __init__(self, config: AppConfig, echo: Echo = echo_stdout) -> None:
        self._config = config
        self._echo = echo
        self.log_event: FilteringBoundLogger = get_logger("provision")
        self.log_proc: FilteringBoundLogger = get_logger("proc.event")

    def validate(self) -> str:
        scope = self._config.runner.scope
        if not scope:
            raise ProvisionError("Supply the runner scope (owner/repo or org)")
        # lazy failure if the PAT is missing
        _ = self._config.secrets.pat
        if self._config.paths.runner_dir.exists():
            raise ProvisionError(
                "Runner already exists. Use a different directory or delete "
                f"{self._config.paths.runner_dir}"
            )
        return scope

    async def run(self) -> int:
        """Returns the runner's exit code; 1 when it never became ready."""
        cfg = self._config
        scope = self.validate()
        runner_dir = cfg.paths.runner_dir
        runner_url = cfg.github.runner_url(scope)
        runner_platform = detect_platform()

        self.log_event.info(
            "provision.started", scope=scope, url=runner_url, platform=runner_platform.slug
        )

        await make_runner_dir(runner_dir, cfg.runner.svc_user, self.log_event)

        async with aiohttp.ClientSession() as session:
            client = GitHubClient(session, cfg.github, self.log_event)
            token = await client.fetch_registration_token(scope, cfg.secrets.pat)
            release = await client.fetch_latest_release(runner_platform)
            archive = await download_archive(
                session,
                release.download_url,
                cfg.paths.work_dir / release.filename,
                self.log_event,
                sock_read_timeout_sec=cfg.github.request_timeout_sec,
            )

        await extract_archive(archive, runner_dir, self.log_event)
        await chown_runner_dir(runner_dir, cfg.runner.svc_user, self.log_event)

        run_command = await configure_runner(
            runner_dir, runner_url, token, cfg.runner, self.log_event
        )

        settings = cfg.supervise
        self.log_event.info("provision.starting_runner", name=cfg.runner.name)
        result = await supervise(
            run_command,
            from_text(settings.ready_text, regex=settings.ready_regex),
            settings.not_ready_timeout_sec,
            settings.ready_timeout_sec,
            echo=self._echo,
            log_event=self.log_proc,
            merge_stderr=settings.merge_stderr,
            terminate_on_timeout=settings.terminate_on_timeout,
            stop_timeout_sec=settings.stop_timeout_sec,
            kill_timeout_sec=settings.kill_timeout_sec,
            max_line_len=settings.max_line_len,
        )

        if not result.is_ok:
            self.log_event.error(
                "provision.runner_not_ready", reason=result.end_reason, lines=result.lines
            )
            return 1

        self.log_event.info("provision.runner_ready", name=cfg.runner.name, pid=result.handle.pid)
        return await result.handle.follow(self._echo, self.log_proc)
